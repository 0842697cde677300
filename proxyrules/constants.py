"""Core value types shared across the package: adapter and rule kinds,
connection metadata, proxy chains and the configuration home directory."""

from __future__ import annotations

import ipaddress
import os
from dataclasses import dataclass
from enum import Enum, IntEnum
from pathlib import Path
from typing import Optional, Union

NAME = "proxyrules"
VERSION = "unknown version"
BUILD_TIME = "unknown time"

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class AdapterType(Enum):
    """Kind of an outbound adapter."""

    DIRECT = "Direct"
    FALLBACK = "Fallback"
    REJECT = "Reject"
    SELECTOR = "Selector"
    SHADOWSOCKS = "Shadowsocks"
    SNELL = "Snell"
    SOCKS5 = "Socks5"
    HTTP = "Http"
    URL_TEST = "URLTest"
    VMESS = "Vmess"
    LOAD_BALANCE = "LoadBalance"

    def __str__(self) -> str:
        return self.value


class RuleType(Enum):
    """Kind of a routing rule."""

    DOMAIN = "Domain"
    DOMAIN_SUFFIX = "DomainSuffix"
    DOMAIN_KEYWORD = "DomainKeyword"
    GEOIP = "GEOIP"
    IPCIDR = "IPCIDR"
    SRC_IPCIDR = "SrcIPCIDR"
    SRC_PORT = "SrcPort"
    DST_PORT = "DstPort"
    MATCH = "MATCH"

    def __str__(self) -> str:
        return self.value


class NetWork(Enum):
    """Transport of a connection."""

    TCP = "tcp"
    UDP = "udp"

    def __str__(self) -> str:
        return self.value


class ConnType(Enum):
    """Inbound listener that accepted a connection."""

    HTTP = "HTTP"
    SOCKS = "SOCKS"
    REDIR = "REDIR"

    def __str__(self) -> str:
        return self.value


class AddrType(IntEnum):
    """SOCKS address types."""

    IPV4 = 1
    DOMAIN_NAME = 3
    IPV6 = 4


class Chain(list):
    """Names of the adapters a connection passed through, innermost first."""

    def __str__(self) -> str:
        if not self:
            return ""
        if len(self) == 1:
            return self[0]
        return f"{self[-1]}[{self[0]}]"


def _join_host_port(host: str, port: str) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


@dataclass
class Metadata:
    """Address information of one proxied connection."""

    network: NetWork = NetWork.TCP
    conn_type: ConnType = ConnType.HTTP
    src_ip: Optional[IPAddress] = None
    dst_ip: Optional[IPAddress] = None
    src_port: str = ""
    dst_port: str = ""
    addr_type: int = 0
    host: str = ""

    def remote_address(self) -> str:
        """Destination as host:port, bracketing IPv6 literals."""
        return _join_host_port(str(self), self.dst_port)

    def valid(self) -> bool:
        """True when a destination host or IP is known."""
        return self.host != "" or self.dst_ip is not None

    def __str__(self) -> str:
        if self.host:
            return self.host
        if self.dst_ip is not None:
            return str(self.dst_ip)
        return "<nil>"


@dataclass(frozen=True)
class HomePath:
    """Locations of files inside the configuration directory."""

    root: str

    def home_dir(self) -> str:
        return self.root

    def config(self) -> str:
        return os.path.join(self.root, "config.yaml")

    def mmdb(self) -> str:
        return os.path.join(self.root, "Country.mmdb")


def default_home_path() -> HomePath:
    """The configuration directory under the user's home, or the cwd."""
    try:
        base = str(Path.home())
    except (RuntimeError, KeyError):
        base = os.getcwd()
    return HomePath(os.path.join(base, ".config", NAME))


_path = default_home_path()


def get_path() -> HomePath:
    """The configuration directory currently in use."""
    return _path


def set_home_dir(root: str) -> None:
    """Use ``root`` as the configuration directory."""
    global _path
    _path = HomePath(root)