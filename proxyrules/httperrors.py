"""Errors reported by the control API."""

from __future__ import annotations


class HTTPError(Exception):
    """An API error carrying a message for the client."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message

    def to_json(self) -> dict[str, str]:
        return {"message": self.message}


ERR_UNAUTHORIZED = HTTPError("Unauthorized")
ERR_BAD_REQUEST = HTTPError("Body invalid")
ERR_FORBIDDEN = HTTPError("Forbidden")
ERR_NOT_FOUND = HTTPError("Resource not found")
ERR_REQUEST_TIMEOUT = HTTPError("Timeout")