"""Reading and validating the YAML configuration file."""

from __future__ import annotations

import errno
import ipaddress
import os
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Optional, Union
from urllib.parse import urlsplit

import yaml

from .constants import IPAddress, get_path
from .events import LogLevel
from .modes import EnhancedMode, Mode
from .rules import IPCIDR, Domain, DomainKeyword, DomainSuffix, GeoIP, Match, Port, Rule

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

_PROXY_TYPES = ("ss", "socks5", "http", "vmess", "snell")
_GROUP_TYPES = ("url-test", "select", "fallback", "load-balance")


class ConfigError(ValueError):
    """The configuration is malformed or inconsistent."""


@dataclass
class General:
    """Settings of the local listeners and the controller."""

    port: int = 0
    socks_port: int = 0
    redir_port: int = 0
    redir_bind_address: str = "*"
    authentication: list[str] = field(default_factory=list)
    allow_lan: bool = False
    bind_address: str = "*"
    mode: Mode = Mode.RULE
    log_level: LogLevel = LogLevel.INFO
    external_controller: str = ""
    external_ui: str = ""
    secret: str = ""


@dataclass(frozen=True)
class NameServer:
    """An upstream DNS server: transport ("" for UDP) and address."""

    net: str
    addr: str


@dataclass
class FallbackFilter:
    """When to prefer the fallback name servers."""

    geoip: bool = True
    ipcidr: list[IPNetwork] = field(default_factory=list)


@dataclass
class DNSConfig:
    """Settings of the built-in DNS server and resolver."""

    enable: bool = False
    ipv6: bool = False
    nameserver: list[NameServer] = field(default_factory=list)
    fallback: list[NameServer] = field(default_factory=list)
    fallback_filter: FallbackFilter = field(default_factory=FallbackFilter)
    listen: str = ""
    enhanced_mode: EnhancedMode = EnhancedMode.NORMAL
    fake_ip_range: Optional[IPNetwork] = None


@dataclass
class Experimental:
    """Experimental switches."""

    ignore_resolve_fail: bool = True


@dataclass(frozen=True)
class AuthUser:
    """A user allowed to use the local proxies."""

    user: str
    password: str


@dataclass
class Config:
    """A fully parsed configuration."""

    general: General
    dns: DNSConfig
    experimental: Experimental
    hosts: dict[str, IPAddress]
    rules: list[Rule]
    users: list[AuthUser]
    proxies: dict[str, str]


def _defaults() -> dict[str, Any]:
    return {
        "port": 0,
        "socks-port": 0,
        "redir-port": 0,
        "redir-bind-address": "*",
        "authentication": [],
        "allow-lan": False,
        "bind-address": "*",
        "mode": Mode.RULE,
        "log-level": LogLevel.INFO,
        "external-controller": "",
        "external-ui": "",
        "secret": "",
        "hosts": {},
        "dns": {
            "enable": False,
            "ipv6": False,
            "nameserver": [],
            "fallback": [],
            "fallback-filter": {"geoip": True, "ipcidr": []},
            "listen": "",
            "enhanced-mode": EnhancedMode.NORMAL,
            "fake-ip-range": "198.18.0.1/16",
        },
        "experimental": {"ignore-resolve-fail": True},
        "Proxy": [],
        "Proxy Group": [],
        "Rule": [],
    }


def _merge(base: dict, override: dict) -> dict:
    for key, value in override.items():
        if value is None:
            continue
        if isinstance(base.get(key), dict) and isinstance(value, dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def _enum(cls, value, key: str):
    if isinstance(value, cls):
        return value
    try:
        return cls.parse(str(value))
    except ValueError as exc:
        raise ConfigError(f"{key}: {exc}") from None


def _read_raw(path: str) -> bytes:
    # An empty or unreadable config.yaml falls back to config.yml.
    error: Optional[OSError] = None
    data = b""
    try:
        with open(path, "rb") as handle:
            data = handle.read()
    except OSError as exc:
        error = exc
    if error is None and data:
        return data
    root, ext = os.path.splitext(path)
    if ext != ".yaml":
        if error is not None:
            raise error
        return data
    alternative = root + ".yml"
    if os.path.exists(alternative):
        with open(alternative, "rb") as handle:
            return handle.read()
    return data


def read_config(path) -> dict[str, Any]:
    """Load the YAML file at ``path`` and fill in default values."""
    path = os.fspath(path)
    if not os.path.exists(path):
        raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), path)
    data = _read_raw(path)
    if not data:
        raise ConfigError(f"Configuration file {path} is empty")
    try:
        loaded = yaml.safe_load(data)
    except yaml.YAMLError as exc:
        raise ConfigError(str(exc)) from exc
    if loaded is None:
        loaded = {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"Configuration file {path} is not a mapping")

    raw = _merge(_defaults(), loaded)
    raw["mode"] = _enum(Mode, raw["mode"], "mode")
    raw["log-level"] = _enum(LogLevel, raw["log-level"], "log-level")
    if not isinstance(raw["dns"], dict):
        raise ConfigError("dns: must be a mapping")
    raw["dns"]["enhanced-mode"] = _enum(
        EnhancedMode, raw["dns"].get("enhanced-mode", EnhancedMode.NORMAL), "enhanced-mode"
    )
    return raw


def parse(path, home_dir: Optional[str] = None) -> Config:
    """Read and validate the configuration file at ``path``."""
    raw = read_config(path)
    experimental = Experimental(
        ignore_resolve_fail=bool(raw["experimental"].get("ignore-resolve-fail", True))
    )
    general = parse_general(raw, home_dir)
    proxies = parse_proxy_names(raw)
    rules = parse_rules(raw, proxies)
    dns = parse_dns(raw["dns"])
    hosts = parse_hosts(raw)
    users = parse_authentication(raw.get("authentication") or [])
    return Config(
        general=general,
        dns=dns,
        experimental=experimental,
        hosts=hosts,
        rules=rules,
        users=users,
        proxies=proxies,
    )


def parse_general(raw: dict, home_dir: Optional[str] = None) -> General:
    """The listener and controller settings of a raw configuration."""
    if home_dir is None:
        home_dir = get_path().home_dir()
    external_ui = str(raw.get("external-ui") or "")
    if external_ui:
        if not os.path.isabs(external_ui):
            external_ui = os.path.join(home_dir, external_ui)
        if not os.path.exists(external_ui):
            raise ConfigError(f"external-ui: {external_ui} not exist")

    return General(
        port=int(raw.get("port") or 0),
        socks_port=int(raw.get("socks-port") or 0),
        redir_port=int(raw.get("redir-port") or 0),
        redir_bind_address=str(raw.get("redir-bind-address", "*")),
        allow_lan=bool(raw.get("allow-lan", False)),
        bind_address=str(raw.get("bind-address", "*")),
        mode=_enum(Mode, raw.get("mode", Mode.RULE), "mode"),
        log_level=_enum(LogLevel, raw.get("log-level", LogLevel.INFO), "log-level"),
        external_controller=str(raw.get("external-controller") or ""),
        external_ui=external_ui,
        secret=str(raw.get("secret") or ""),
    )


def _name_of(mapping: Any) -> Optional[str]:
    if not isinstance(mapping, dict):
        return None
    name = mapping.get("name")
    if isinstance(name, bool) or name is None or isinstance(name, (dict, list)):
        return None
    return str(name)


def _group_option(mapping: Any) -> tuple[str, list[str]]:
    name = _name_of(mapping) or ""
    if not _name_of(mapping):
        raise ConfigError(f"ProxyGroup {name}: key 'name' missing")
    members = mapping.get("proxies")
    if not isinstance(members, list):
        raise ConfigError(f"ProxyGroup {name}: key 'proxies' missing")
    return name, [str(member) for member in members]


def parse_proxy_names(raw: dict) -> dict[str, str]:
    """Every outbound name mapped to its type, in configuration order.

    DIRECT and REJECT come first and GLOBAL, a selector over all the
    others, comes last.
    """
    proxies: dict[str, str] = {"DIRECT": "direct", "REJECT": "reject"}
    order = ["DIRECT", "REJECT"]

    for idx, mapping in enumerate(raw.get("Proxy") or []):
        proxy_type = mapping.get("type") if isinstance(mapping, dict) else None
        if not isinstance(proxy_type, str):
            raise ConfigError(f"Proxy {idx} missing type")
        if proxy_type not in _PROXY_TYPES:
            raise ConfigError(f"Unsupport proxy type: {proxy_type}")
        name = _name_of(mapping)
        if name is None:
            raise ConfigError(f"Proxy [{idx}]: key 'name' missing")
        if name in proxies:
            raise ConfigError(f"Proxy {name} is the duplicate name")
        proxies[name] = proxy_type
        order.append(name)

    groups = list(raw.get("Proxy Group") or [])
    for idx, mapping in enumerate(groups):
        name = _name_of(mapping)
        if name is None:
            raise ConfigError(f"ProxyGroup {idx}: missing name")
        order.append(name)

    for mapping in proxy_groups_dag_sort(groups):
        name, members = _group_option(mapping)
        group_type = mapping.get("type")
        if not isinstance(group_type, str):
            raise ConfigError(f"ProxyGroup {name}: missing type")
        if name in proxies:
            raise ConfigError(f"ProxyGroup {name}: the duplicate name")
        if group_type not in _GROUP_TYPES:
            raise ConfigError(f"Proxy {name}: cannot parse")
        missing = next((member for member in members if member not in proxies), None)
        if missing is not None:
            raise ConfigError(f"ProxyGroup {name}: '{missing}' not found")
        proxies[name] = group_type

    result = {name: proxies[name] for name in order}
    result["GLOBAL"] = "select"
    return result


def _trim(parts: list[str]) -> list[str]:
    return [part.strip(" ") for part in parts]


def _build_rule(kind: str, payload: str, target: str) -> Optional[Rule]:
    try:
        if kind == "DOMAIN":
            return Domain(payload, target)
        if kind == "DOMAIN-SUFFIX":
            return DomainSuffix(payload, target)
        if kind == "DOMAIN-KEYWORD":
            return DomainKeyword(payload, target)
        if kind == "GEOIP":
            return GeoIP(payload, target)
        if kind in ("IP-CIDR", "IP-CIDR6"):
            return IPCIDR(payload, target, False)
        if kind in ("SOURCE-IP-CIDR", "SRC-IP-CIDR"):
            return IPCIDR(payload, target, True)
        if kind == "SRC-PORT":
            return Port(payload, target, True)
        if kind == "DST-PORT":
            return Port(payload, target, False)
        if kind in ("MATCH", "FINAL"):
            return Match(target)
    except ValueError:
        return None
    return None


def parse_rules(raw: dict, proxies) -> list[Rule]:
    """The routing rules of a raw configuration, checked against ``proxies``."""
    rules: list[Rule] = []
    for idx, line in enumerate(raw.get("Rule") or []):
        line = str(line)
        parts = _trim(line.split(","))
        if len(parts) == 2:
            payload, target = "", parts[1]
        elif len(parts) == 3:
            payload, target = parts[1], parts[2]
        else:
            raise ConfigError(f"Rules[{idx}] [{line}] error: format invalid")

        if target not in proxies:
            raise ConfigError(f"Rules[{idx}] [{line}] error: proxy [{target}] not found")

        rule = _build_rule(parts[0], payload, target)
        if rule is None:
            raise ConfigError(f"Rules[{idx}] [{line}] error: payload invalid")
        rules.append(rule)
    return rules


def parse_hosts(raw: dict) -> dict[str, IPAddress]:
    """Static host entries mapped to their IP addresses."""
    hosts: dict[str, IPAddress] = {}
    for domain, ip_text in (raw.get("hosts") or {}).items():
        try:
            hosts[str(domain)] = ipaddress.ip_address(str(ip_text))
        except ValueError:
            raise ConfigError(f"{ip_text} is not a valid IP") from None
    return hosts


def _split_host_port(hostport: str) -> tuple[str, str]:
    def fail(reason: str) -> ConfigError:
        return ConfigError(f"address {hostport}: {reason}")

    colon = hostport.rfind(":")
    if colon < 0:
        raise fail("missing port in address")
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise fail("missing ']' in address")
        if end + 1 == len(hostport):
            raise fail("missing port in address")
        if end + 1 != colon:
            if hostport[end + 1] == ":":
                raise fail("too many colons in address")
            raise fail("missing port in address")
        host = hostport[1:end]
        if "[" in hostport[1:end] or "]" in hostport[end + 1:]:
            raise fail("unexpected bracket in address")
    else:
        host = hostport[:colon]
        if ":" in host:
            raise fail("too many colons in address")
        if "[" in host or "]" in host:
            raise fail("unexpected bracket in address")
    port = hostport[colon + 1:]
    if "[" in port or "]" in port:
        raise fail("unexpected bracket in address")
    return host, port


def _join_host_port(host: str, port: str) -> str:
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


def host_with_default_port(host: str, default_port: str) -> str:
    """``host`` as host:port, using ``default_port`` when none is given."""
    if ":" not in host:
        host += ":"
    hostname, port = _split_host_port(host)
    return _join_host_port(hostname, port or default_port)


def parse_name_servers(servers) -> list[NameServer]:
    """Name server URLs; a bare address means UDP."""
    result: list[NameServer] = []
    for idx, server in enumerate(servers or []):
        server = str(server)
        if "://" not in server:
            server = "udp://" + server
        try:
            parts = urlsplit(server)
            netloc = parts.netloc.rpartition("@")[2]
            if parts.scheme == "udp":
                net, addr = "", host_with_default_port(netloc, "53")
            elif parts.scheme == "tcp":
                net, addr = "tcp", host_with_default_port(netloc, "53")
            elif parts.scheme == "tls":
                net, addr = "tcp-tls", host_with_default_port(netloc, "853")
            elif parts.scheme == "https":
                path = parts.path
                if path and not path.startswith("/"):
                    path = "/" + path
                net, addr = "https", f"https://{netloc}{path}"
            else:
                raise ConfigError(f"DNS NameServer[{idx}] unsupport scheme: {parts.scheme}")
        except ConfigError as exc:
            if "unsupport scheme" in str(exc):
                raise
            raise ConfigError(f"DNS NameServer[{idx}] format error: {exc}") from None
        except ValueError as exc:
            raise ConfigError(f"DNS NameServer[{idx}] format error: {exc}") from None
        result.append(NameServer(net=net, addr=addr))
    return result


def _parse_cidr(text: str) -> IPNetwork:
    if "/" not in text:
        raise ConfigError(f"invalid CIDR address: {text}")
    try:
        return ipaddress.ip_network(text, strict=False)
    except ValueError:
        raise ConfigError(f"invalid CIDR address: {text}") from None


def parse_dns(raw_dns: dict) -> DNSConfig:
    """The DNS settings of a raw configuration."""
    enable = bool(raw_dns.get("enable", False))
    servers = raw_dns.get("nameserver") or []
    if enable and not servers:
        raise ConfigError("If DNS configuration is turned on, NameServer cannot be empty")

    enhanced_mode = _enum(
        EnhancedMode, raw_dns.get("enhanced-mode", EnhancedMode.NORMAL), "enhanced-mode"
    )
    config = DNSConfig(
        enable=enable,
        ipv6=bool(raw_dns.get("ipv6", False)),
        listen=str(raw_dns.get("listen") or ""),
        enhanced_mode=enhanced_mode,
        nameserver=parse_name_servers(servers),
        fallback=parse_name_servers(raw_dns.get("fallback") or []),
    )

    if enhanced_mode is EnhancedMode.FAKEIP:
        config.fake_ip_range = _parse_cidr(str(raw_dns.get("fake-ip-range", "198.18.0.1/16")))

    raw_filter = raw_dns.get("fallback-filter") or {}
    config.fallback_filter.geoip = bool(raw_filter.get("geoip", True))
    try:
        config.fallback_filter.ipcidr = [
            _parse_cidr(str(text)) for text in raw_filter.get("ipcidr") or []
        ]
    except ConfigError:
        config.fallback_filter.ipcidr = []
    return config


def parse_authentication(records) -> list[AuthUser]:
    """``user:password`` records; records without a colon are skipped."""
    users: list[AuthUser] = []
    for line in records:
        user, sep, secret = str(line).partition(":")
        if sep:
            users.append(AuthUser(user, secret))
    return users


@dataclass
class _Node:
    indegree: int = 0
    data: Optional[dict] = None
    members: list[str] = field(default_factory=list)
    outdegree: int = 0
    parents: list[str] = field(default_factory=list)


def proxy_groups_dag_sort(groups) -> list[dict]:
    """Proxy groups ordered so that each comes after the groups it uses.

    Raises ConfigError naming the groups involved when they form a loop.
    """
    graph: dict[str, _Node] = {}
    for mapping in groups:
        name, members = _group_option(mapping)
        node = graph.get(name)
        if node is not None:
            if node.data is not None:
                raise ConfigError(f"ProxyGroup {name}: duplicate group name")
            node.data = mapping
            node.members = members
        else:
            graph[name] = _Node(data=mapping, members=members)
        for member in members:
            if member in graph:
                graph[member].indegree += 1
            else:
                graph[member] = _Node(indegree=1)

    ordered: list[dict] = []
    pending = deque(name for name, node in graph.items() if node.indegree == 0)
    while pending:
        node = graph.pop(pending.popleft())
        if node.data is None:
            continue
        ordered.append(node.data)
        for member in node.members:
            child = graph[member]
            child.indegree -= 1
            if child.indegree == 0:
                pending.append(member)

    if not graph:
        ordered.reverse()
        return ordered

    for name, node in graph.items():
        if node.data is None:
            continue
        for member in node.members:
            node.outdegree += 1
            graph[member].parents.append(name)

    pending = deque(name for name, node in graph.items() if node.outdegree == 0)
    while pending:
        node = graph.pop(pending.popleft())
        for parent in node.parents:
            graph[parent].outdegree -= 1
            if graph[parent].outdegree == 0:
                pending.append(parent)

    loop = " ".join(graph)
    raise ConfigError(
        f"Loop is detected in ProxyGroup, please check following ProxyGroups: [{loop}]"
    )