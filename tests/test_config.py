import ipaddress

import pytest
import yaml

from proxyrules.config import (
    ConfigError,
    host_with_default_port,
    parse,
    parse_authentication,
    parse_dns,
    parse_general,
    parse_hosts,
    parse_name_servers,
    parse_proxy_names,
    parse_rules,
    proxy_groups_dag_sort,
    read_config,
)
from proxyrules.constants import RuleType
from proxyrules.events import LogLevel
from proxyrules.modes import EnhancedMode, Mode


def _write(tmp_path, name, data):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data))
    return path


PROXIES = {"DIRECT": "direct", "REJECT": "reject", "proxy": "ss", "GLOBAL": "select"}


def test_read_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_config(tmp_path / "config.yaml")


def test_read_config_empty_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    with pytest.raises(ConfigError, match="is empty"):
        read_config(path)


def test_read_config_falls_back_to_yml(tmp_path):
    (tmp_path / "config.yaml").write_text("")
    _write(tmp_path, "config.yml", {"port": 7890})
    raw = read_config(tmp_path / "config.yaml")
    assert raw["port"] == 7890


def test_read_config_defaults(tmp_path):
    path = _write(tmp_path, "config.yaml", {"port": 1})
    raw = read_config(path)
    assert raw["mode"] is Mode.RULE
    assert raw["log-level"] is LogLevel.INFO
    assert raw["bind-address"] == "*"
    assert raw["dns"]["fake-ip-range"] == "198.18.0.1/16"
    assert raw["dns"]["fallback-filter"]["geoip"] is True
    assert raw["experimental"]["ignore-resolve-fail"] is True


def test_read_config_merges_nested_dns(tmp_path):
    path = _write(tmp_path, "config.yaml", {"dns": {"enable": True, "enhanced-mode": "fake-ip"}})
    raw = read_config(path)
    assert raw["dns"]["enable"] is True
    assert raw["dns"]["enhanced-mode"] is EnhancedMode.FAKEIP
    assert raw["dns"]["fake-ip-range"] == "198.18.0.1/16"


def test_read_config_invalid_mode(tmp_path):
    path = _write(tmp_path, "config.yaml", {"mode": "Sometimes"})
    with pytest.raises(ConfigError, match="invalid mode"):
        read_config(path)


def test_parse_general_external_ui(tmp_path):
    (tmp_path / "ui").mkdir()
    general = parse_general({"external-ui": "ui", "port": 8080}, str(tmp_path))
    assert general.external_ui == str(tmp_path / "ui")
    assert general.port == 8080
    with pytest.raises(ConfigError, match="not exist"):
        parse_general({"external-ui": "missing"}, str(tmp_path))


def test_parse_proxy_names_order_and_global():
    raw = {
        "Proxy": [{"name": "ss1", "type": "ss"}, {"name": "http1", "type": "http"}],
        "Proxy Group": [
            {"name": "outer", "type": "select", "proxies": ["inner", "ss1"]},
            {"name": "inner", "type": "url-test", "proxies": ["http1"]},
        ],
    }
    proxies = parse_proxy_names(raw)
    assert list(proxies) == ["DIRECT", "REJECT", "ss1", "http1", "outer", "inner", "GLOBAL"]
    assert proxies["inner"] == "url-test"
    assert proxies["GLOBAL"] == "select"


@pytest.mark.parametrize(
    "raw, message",
    [
        ({"Proxy": [{"name": "a"}]}, "Proxy 0 missing type"),
        ({"Proxy": [{"name": "a", "type": "ftp"}]}, "Unsupport proxy type: ftp"),
        ({"Proxy": [{"name": "DIRECT", "type": "ss"}]}, "Proxy DIRECT is the duplicate name"),
        ({"Proxy Group": [{"type": "select", "proxies": []}]}, "ProxyGroup 0: missing name"),
        ({"Proxy Group": [{"name": "g", "proxies": ["DIRECT"]}]}, "ProxyGroup g: missing type"),
        (
            {"Proxy Group": [{"name": "g", "type": "select", "proxies": ["nope"]}]},
            "ProxyGroup g: 'nope' not found",
        ),
        (
            {"Proxy Group": [{"name": "g", "type": "weird", "proxies": ["DIRECT"]}]},
            "Proxy g: cannot parse",
        ),
    ],
)
def test_parse_proxy_names_errors(raw, message):
    with pytest.raises(ConfigError) as info:
        parse_proxy_names(raw)
    assert str(info.value) == message


def test_dag_sort_dependencies_first():
    outer = {"name": "outer", "type": "select", "proxies": ["inner", "DIRECT"]}
    inner = {"name": "inner", "type": "select", "proxies": ["DIRECT"]}
    assert proxy_groups_dag_sort([outer, inner]) == [inner, outer]


def test_dag_sort_detects_loop():
    groups = [
        {"name": "a", "type": "select", "proxies": ["b"]},
        {"name": "b", "type": "select", "proxies": ["a"]},
        {"name": "c", "type": "select", "proxies": ["a"]},
    ]
    with pytest.raises(ConfigError) as info:
        proxy_groups_dag_sort(groups)
    message = str(info.value)
    assert message.startswith("Loop is detected in ProxyGroup")
    loop = message[message.index("[") + 1 : message.index("]")].split()
    assert sorted(loop) == ["a", "b"]


def test_dag_sort_duplicate_group():
    groups = [
        {"name": "a", "type": "select", "proxies": ["DIRECT"]},
        {"name": "a", "type": "select", "proxies": ["DIRECT"]},
    ]
    with pytest.raises(ConfigError, match="duplicate group name"):
        proxy_groups_dag_sort(groups)


def test_parse_rules_kinds():
    raw = {
        "Rule": [
            "DOMAIN, Example.COM ,proxy",
            "DOMAIN-SUFFIX,example.com,proxy",
            "DOMAIN-KEYWORD,example,DIRECT",
            "GEOIP,CN,DIRECT",
            "IP-CIDR,10.0.0.0/8,DIRECT",
            "SRC-IP-CIDR,192.168.0.0/16,REJECT",
            "SRC-PORT,1234,DIRECT",
            "DST-PORT,443,proxy",
            "FINAL,proxy",
        ]
    }
    rules = parse_rules(raw, PROXIES)
    assert [rule.rule_type for rule in rules] == [
        RuleType.DOMAIN,
        RuleType.DOMAIN_SUFFIX,
        RuleType.DOMAIN_KEYWORD,
        RuleType.GEOIP,
        RuleType.IPCIDR,
        RuleType.SRC_IPCIDR,
        RuleType.SRC_PORT,
        RuleType.DST_PORT,
        RuleType.MATCH,
    ]
    assert rules[0].payload == "example.com"
    assert rules[0].adapter == "proxy"
    assert rules[-1].payload == ""


@pytest.mark.parametrize(
    "line, message",
    [
        ("DOMAIN", "Rules[0] [DOMAIN] error: format invalid"),
        ("DOMAIN,a,b,c", "Rules[0] [DOMAIN,a,b,c] error: format invalid"),
        ("DOMAIN,a.com,nowhere", "Rules[0] [DOMAIN,a.com,nowhere] error: proxy [nowhere] not found"),
        ("IP-CIDR,bad,DIRECT", "Rules[0] [IP-CIDR,bad,DIRECT] error: payload invalid"),
        ("DST-PORT,http,DIRECT", "Rules[0] [DST-PORT,http,DIRECT] error: payload invalid"),
        ("UNKNOWN,x,DIRECT", "Rules[0] [UNKNOWN,x,DIRECT] error: payload invalid"),
    ],
)
def test_parse_rules_errors(line, message):
    with pytest.raises(ConfigError) as info:
        parse_rules({"Rule": [line]}, PROXIES)
    assert str(info.value) == message


def test_parse_hosts():
    hosts = parse_hosts({"hosts": {"router.example.com": "192.168.1.1"}})
    assert hosts == {"router.example.com": ipaddress.ip_address("192.168.1.1")}
    with pytest.raises(ConfigError, match="is not a valid IP"):
        parse_hosts({"hosts": {"a.example.com": "nope"}})


def test_host_with_default_port():
    assert host_with_default_port("8.8.8.8", "53") == "8.8.8.8:53"
    assert host_with_default_port("8.8.8.8:5353", "53") == "8.8.8.8:5353"
    assert host_with_default_port("[::1]:53", "853") == "[::1]:53"
    with pytest.raises(ConfigError, match="too many colons"):
        host_with_default_port("::1", "53")


def test_parse_name_servers():
    servers = parse_name_servers(
        ["8.8.8.8", "tcp://1.1.1.1", "tls://dns.example.com", "https://dns.example.com/dns-query"]
    )
    assert [(s.net, s.addr) for s in servers] == [
        ("", "8.8.8.8:53"),
        ("tcp", "1.1.1.1:53"),
        ("tcp-tls", "dns.example.com:853"),
        ("https", "https://dns.example.com/dns-query"),
    ]


def test_parse_name_servers_bad_scheme():
    with pytest.raises(ConfigError, match=r"DNS NameServer\[1\] unsupport scheme: ftp"):
        parse_name_servers(["8.8.8.8", "ftp://1.1.1.1"])


def test_parse_dns_requires_nameserver():
    with pytest.raises(ConfigError, match="NameServer cannot be empty"):
        parse_dns({"enable": True})


def test_parse_dns_fake_ip_and_filters():
    dns = parse_dns(
        {
            "enable": True,
            "nameserver": ["8.8.8.8"],
            "enhanced-mode": "fake-ip",
            "fake-ip-range": "198.18.0.1/16",
            "fallback-filter": {"geoip": False, "ipcidr": ["240.0.0.0/4"]},
        }
    )
    assert dns.enhanced_mode is EnhancedMode.FAKEIP
    assert dns.fake_ip_range == ipaddress.ip_network("198.18.0.0/16")
    assert dns.fallback_filter.geoip is False
    assert dns.fallback_filter.ipcidr == [ipaddress.ip_network("240.0.0.0/4")]


def test_parse_dns_invalid_fallback_cidr_is_ignored():
    dns = parse_dns({"fallback-filter": {"ipcidr": ["10.0.0.0/8", "bad"]}})
    assert dns.fallback_filter.ipcidr == []
    assert dns.fake_ip_range is None


def test_parse_authentication():
    users = parse_authentication(["user:password", "broken", "other:a:b"])
    assert len(users) == 2
    assert users[0].user == "user"
    assert users[0].password == "password"
    assert users[1].password == "a:b"


def test_parse_full_config(tmp_path):
    path = _write(
        tmp_path,
        "config.yaml",
        {
            "port": 7890,
            "mode": "Global",
            "log-level": "debug",
            "authentication": ["user:password"],
            "hosts": {"router.example.com": "192.168.1.1"},
            "experimental": {"ignore-resolve-fail": False},
            "Proxy": [{"name": "ss1", "type": "ss"}],
            "Proxy Group": [{"name": "g", "type": "select", "proxies": ["ss1", "DIRECT"]}],
            "Rule": ["DOMAIN-SUFFIX,example.com,g", "MATCH,DIRECT"],
        },
    )
    config = parse(path, str(tmp_path))
    assert config.general.port == 7890
    assert config.general.mode is Mode.GLOBAL
    assert config.general.log_level is LogLevel.DEBUG
    assert config.experimental.ignore_resolve_fail is False
    assert list(config.proxies) == ["DIRECT", "REJECT", "ss1", "g", "GLOBAL"]
    assert [rule.adapter for rule in config.rules] == ["g", "DIRECT"]
    assert config.users[0].user == "user"
    assert config.dns.enable is False
    assert "router.example.com" in config.hosts