"""Routing rules that pick an outbound adapter for a connection."""

from __future__ import annotations

import ipaddress
import re
from abc import ABC, abstractmethod
from typing import Callable, Optional, Union

from .constants import AddrType, IPAddress, Metadata, RuleType

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]
CountryLookup = Callable[[IPAddress], Optional[str]]

_INTEGER = re.compile(r"[+-]?[0-9]+")


class Rule(ABC):
    """A condition on connection metadata that names an adapter."""

    rule_type: RuleType

    def __init__(self, payload: str, adapter: str) -> None:
        self.payload = payload
        self.adapter = adapter

    @abstractmethod
    def is_match(self, metadata: Metadata) -> bool:
        """True when the connection described by ``metadata`` fits the rule."""

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(type={self.rule_type}, "
            f"payload={self.payload!r}, adapter={self.adapter!r})"
        )


def _is_domain(metadata: Metadata) -> bool:
    return metadata.addr_type == AddrType.DOMAIN_NAME


class Domain(Rule):
    """Matches one exact domain name."""

    rule_type = RuleType.DOMAIN

    def __init__(self, domain: str, adapter: str) -> None:
        super().__init__(domain.lower(), adapter)

    def is_match(self, metadata: Metadata) -> bool:
        return _is_domain(metadata) and metadata.host == self.payload


class DomainSuffix(Rule):
    """Matches a domain and all of its subdomains."""

    rule_type = RuleType.DOMAIN_SUFFIX

    def __init__(self, suffix: str, adapter: str) -> None:
        super().__init__(suffix.lower(), adapter)

    def is_match(self, metadata: Metadata) -> bool:
        if not _is_domain(metadata):
            return False
        host = metadata.host
        return host.endswith("." + self.payload) or host == self.payload


class DomainKeyword(Rule):
    """Matches any domain that contains a keyword."""

    rule_type = RuleType.DOMAIN_KEYWORD

    def __init__(self, keyword: str, adapter: str) -> None:
        super().__init__(keyword.lower(), adapter)

    def is_match(self, metadata: Metadata) -> bool:
        return _is_domain(metadata) and self.payload in metadata.host


class GeoIP(Rule):
    """Matches destination IPs located in a country.

    ``lookup`` maps an IP address to its ISO country code; without one no
    address can be located and the rule never matches.
    """

    rule_type = RuleType.GEOIP

    def __init__(
        self, country: str, adapter: str, lookup: Optional[CountryLookup] = None
    ) -> None:
        super().__init__(country, adapter)
        self.lookup = lookup

    def is_match(self, metadata: Metadata) -> bool:
        if metadata.dst_ip is None or self.lookup is None:
            return False
        return (self.lookup(metadata.dst_ip) or "") == self.payload


def _parse_cidr(text: str) -> IPNetwork:
    if "/" not in text:
        raise ValueError(f"invalid CIDR address: {text}")
    try:
        return ipaddress.ip_network(text, strict=False)
    except ValueError:
        raise ValueError(f"invalid CIDR address: {text}") from None


def _network_contains(network: IPNetwork, ip: IPAddress) -> bool:
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        if network.version == 4:
            ip = ip.ipv4_mapped
    if ip.version != network.version:
        return False
    return ip in network


class IPCIDR(Rule):
    """Matches destination (or source) IPs inside a network.

    Raises ValueError when ``cidr`` is not a network in CIDR notation.
    """

    def __init__(self, cidr: str, adapter: str, source: bool = False) -> None:
        self.network = _parse_cidr(cidr)
        self.source = source
        super().__init__(str(self.network), adapter)

    @property
    def rule_type(self) -> RuleType:  # type: ignore[override]
        return RuleType.SRC_IPCIDR if self.source else RuleType.IPCIDR

    def is_match(self, metadata: Metadata) -> bool:
        ip = metadata.src_ip if self.source else metadata.dst_ip
        return ip is not None and _network_contains(self.network, ip)


class Port(Rule):
    """Matches the destination (or source) port.

    Raises ValueError when ``port`` is not an integer.
    """

    def __init__(self, port: str, adapter: str, source: bool = False) -> None:
        if not _INTEGER.fullmatch(port):
            raise ValueError(f"invalid port: {port}")
        self.source = source
        super().__init__(port, adapter)

    @property
    def rule_type(self) -> RuleType:  # type: ignore[override]
        return RuleType.SRC_PORT if self.source else RuleType.DST_PORT

    def is_match(self, metadata: Metadata) -> bool:
        port = metadata.src_port if self.source else metadata.dst_port
        return port == self.payload


class Match(Rule):
    """Matches every connection."""

    rule_type = RuleType.MATCH

    def __init__(self, adapter: str) -> None:
        super().__init__("", adapter)

    def is_match(self, metadata: Metadata) -> bool:
        return True