"""Listen addresses of the local proxy servers."""

from __future__ import annotations


def _split_host_port(addr: str) -> tuple[str, str]:
    if addr.startswith("["):
        end = addr.find("]")
        if end < 0 or addr[end + 1:end + 2] != ":":
            raise ValueError(f"invalid address: {addr}")
        return addr[1:end], addr[end + 2:]
    host, sep, port = addr.rpartition(":")
    if not sep or ":" in host:
        raise ValueError(f"invalid address: {addr}")
    return host, port


def gen_addr(host: str, port: int, allow_lan: bool) -> str:
    """Listen address for ``port``; loopback only unless LAN access is allowed."""
    if allow_lan:
        if host == "*":
            return f":{port}"
        return f"{host}:{port}"
    return f"[::1]:{port}"


def port_is_zero(addr: str) -> bool:
    """True when ``addr`` has no usable port, meaning the listener is off."""
    try:
        _, port = _split_host_port(addr)
    except ValueError:
        return True
    return port in ("", "0")


def port_of(addr: str) -> int:
    """Port number of ``addr``, or 0 when it has none."""
    try:
        _, port = _split_host_port(addr)
        return int(port)
    except ValueError:
        return 0