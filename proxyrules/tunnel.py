"""Picks the outbound proxy for each connection from the routing rules."""

from __future__ import annotations

import ipaddress
import socket
import threading
from typing import Any, Callable, Mapping, Optional

from .constants import AddrType, IPAddress, Metadata, NetWork, RuleType
from .events import EventLog, default_log
from .modes import EnhancedMode, Mode
from .rules import Rule
from .traffic import Traffic

Resolver = Callable[[str], IPAddress]
ReverseLookup = Callable[[IPAddress], Optional[str]]


class TunnelError(Exception):
    """No outbound proxy could be chosen for a connection."""


def _system_resolve(host: str) -> IPAddress:
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        pass
    try:
        infos = socket.getaddrinfo(host, None)
    except socket.gaierror as exc:
        raise OSError(str(exc)) from exc
    if not infos:
        raise OSError("cannot found ip")
    return ipaddress.ip_address(infos[0][4][0].split("%", 1)[0])


def _supports_udp(proxy: Any) -> bool:
    support = getattr(proxy, "support_udp", True)
    return bool(support()) if callable(support) else bool(support)


class Tunnel:
    """Holds the rules and proxies and routes connection metadata through them.

    ``hosts`` maps static host names to addresses, ``resolver`` turns a host
    name into an address, and ``reverse_lookup`` maps an address handed out by
    the DNS server back to its host when ``enhanced_mode`` is fake-ip or
    redir-host.
    """

    def __init__(
        self,
        *,
        mode: Mode = Mode.RULE,
        hosts: Optional[Mapping[str, IPAddress]] = None,
        resolver: Optional[Resolver] = None,
        reverse_lookup: Optional[ReverseLookup] = None,
        enhanced_mode: EnhancedMode = EnhancedMode.NORMAL,
        ignore_resolve_fail: bool = False,
        log: Optional[EventLog] = None,
        traffic: Optional[Traffic] = None,
    ) -> None:
        self._lock = threading.RLock()
        self._rules: list[Rule] = []
        self._proxies: dict[str, Any] = {}
        self.mode = mode
        self.hosts: dict[str, IPAddress] = dict(hosts or {})
        self.resolver: Resolver = resolver or _system_resolve
        self.reverse_lookup = reverse_lookup
        self.enhanced_mode = enhanced_mode
        self.ignore_resolve_fail = ignore_resolve_fail
        self.log = log or default_log()
        self.traffic = traffic or Traffic()

    @property
    def rules(self) -> list[Rule]:
        with self._lock:
            return list(self._rules)

    @property
    def proxies(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._proxies)

    def update_rules(self, rules) -> None:
        with self._lock:
            self._rules = list(rules)

    def update_proxies(self, proxies: Mapping[str, Any]) -> None:
        with self._lock:
            self._proxies = dict(proxies)

    def update_experimental(self, ignore_resolve_fail: bool) -> None:
        with self._lock:
            self.ignore_resolve_fail = ignore_resolve_fail

    def _need_lookup_ip(self, metadata: Metadata) -> bool:
        return (
            self.reverse_lookup is not None
            and self.enhanced_mode in (EnhancedMode.MAPPING, EnhancedMode.FAKEIP)
            and metadata.host == ""
            and metadata.dst_ip is not None
        )

    def resolve_metadata(self, metadata: Metadata) -> tuple[Any, Optional[Rule]]:
        """The proxy for ``metadata`` and the rule that chose it, if any."""
        if self._need_lookup_ip(metadata):
            host = self.reverse_lookup(metadata.dst_ip)
            if host is not None:
                metadata.host = host
                metadata.addr_type = AddrType.DOMAIN_NAME
                if self.enhanced_mode is EnhancedMode.FAKEIP:
                    metadata.dst_ip = None

        if self.mode is Mode.DIRECT:
            return self.proxies.get("DIRECT"), None
        if self.mode is Mode.GLOBAL:
            return self.proxies.get("GLOBAL"), None
        return self.match(metadata)

    @staticmethod
    def _should_resolve_ip(rule: Rule, metadata: Metadata) -> bool:
        return (
            rule.rule_type in (RuleType.GEOIP, RuleType.IPCIDR)
            and metadata.host != ""
            and metadata.dst_ip is None
        )

    def match(self, metadata: Metadata) -> tuple[Any, Optional[Rule]]:
        """First rule that matches and whose proxy can carry the connection.

        Falls back to DIRECT with no rule. Raises TunnelError when a host
        cannot be resolved and resolve failures are not ignored.
        """
        with self._lock:
            resolved = False
            static = self.hosts.get(metadata.host)
            if static is not None:
                metadata.dst_ip = static
                resolved = True

            for rule in self._rules:
                if not resolved and self._should_resolve_ip(rule, metadata):
                    try:
                        ip = self.resolver(metadata.host)
                    except (OSError, ValueError) as exc:
                        if not self.ignore_resolve_fail:
                            raise TunnelError(
                                f"[DNS] resolve {metadata.host} error: {exc}"
                            ) from exc
                        self.log.debug("[DNS] resolve %s error: %s", metadata.host, exc)
                    else:
                        self.log.debug("[DNS] %s --> %s", metadata.host, ip)
                        metadata.dst_ip = ip
                    resolved = True

                if not rule.is_match(metadata):
                    continue
                adapter = self._proxies.get(rule.adapter)
                if adapter is None:
                    continue
                if metadata.network is NetWork.UDP and not _supports_udp(adapter):
                    self.log.debug("%s UDP is not supported", rule.adapter)
                    continue
                return adapter, rule

            return self._proxies.get("DIRECT"), None