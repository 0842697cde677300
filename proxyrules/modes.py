"""Routing mode of the tunnel and DNS enhanced mode."""

from __future__ import annotations

from enum import Enum


class Mode(Enum):
    """How the tunnel picks an outbound proxy."""

    GLOBAL = "Global"
    RULE = "Rule"
    DIRECT = "Direct"

    @classmethod
    def parse(cls, text: str) -> "Mode":
        """Mode named by ``text``; raises ValueError for unknown names."""
        try:
            return cls(text)
        except ValueError:
            raise ValueError("invalid mode") from None

    def __str__(self) -> str:
        return self.value


class EnhancedMode(Enum):
    """How the DNS server maps answers back to hosts."""

    NORMAL = "normal"
    FAKEIP = "fake-ip"
    MAPPING = "redir-host"

    @classmethod
    def parse(cls, text: str) -> "EnhancedMode":
        """Enhanced mode named by ``text``; raises ValueError for unknown names."""
        try:
            return cls(text)
        except ValueError:
            raise ValueError("invalid mode") from None

    def __str__(self) -> str:
        return self.value