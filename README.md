# proxyrules

`proxyrules` reads a rule-based proxy configuration written in YAML,
checks it, and decides which outbound proxy a connection should take.

It covers:

- loading `config.yaml` and filling in defaults (`port`, `socks-port`,
  `redir-port`, `redir-bind-address`, `allow-lan`, `bind-address`,
  `mode`, `log-level`, `external-controller`, `external-ui`, `secret`);
  when `config.yaml` is empty or unreadable, `config.yml` next to it is
  read instead;
- validating the `Proxy` list (types `ss`, `socks5`, `http`, `vmess`,
  `snell`) and the `Proxy Group` list (types `url-test`, `select`,
  `fallback`, `load-balance`), including duplicate names, unknown
  members and reference loops between groups;
- parsing the `Rule` list: `DOMAIN`, `DOMAIN-SUFFIX`, `DOMAIN-KEYWORD`,
  `GEOIP`, `IP-CIDR`, `IP-CIDR6`, `SRC-IP-CIDR`, `SRC-PORT`, `DST-PORT`
  and `MATCH` (the older spellings `SOURCE-IP-CIDR` and `FINAL` are
  accepted too);
- the `hosts` table, the `dns` section (name servers over `udp://`,
  `tcp://`, `tls://` and `https://`, fallback filters, enhanced mode,
  fake-ip range) and the `authentication` list of `user:password`
  records;
- matching a connection against the rules in order, in `Rule`, `Global`
  or `Direct` mode.

## Installation

```
pip install .
```

## Command line

```
proxyrules            # use ~/.config/proxyrules as the home directory
proxyrules -d conf    # use ./conf as the home directory
proxyrules -v         # print the version and exit
```

On start the home directory is created when missing and an empty
`config.yaml` is created when missing. When `Country.mmdb` is missing
from the home directory, it is downloaded: the location of a `.tar.gz`
archive holding `GeoLite2-Country.mmdb` must be given in the
`PROXYRULES_MMDB_URL` environment variable, otherwise start-up fails.
The configuration is then parsed, a `Tunnel` is set up from it, and the
program waits until it receives SIGINT or SIGTERM. Any problem with the
home directory or the configuration is printed to standard error and the
program exits with status 1.

## Library use

```python
from proxyrules.config import parse, ConfigError

try:
    config = parse("/etc/proxy/config.yaml", "/etc/proxy")
except ConfigError as exc:
    print(f"bad configuration: {exc}")
```

`parse` returns a `Config` holding `general`, `dns`, `experimental`,
`hosts`, `rules`, `users` and `proxies`. `proxies` maps every outbound
name to its type: `DIRECT` and `REJECT` first, then the proxies and
groups in file order, and `GLOBAL` (a `select` group over all of them)
last. The individual steps are available too: `read_config`,
`parse_general`, `parse_proxy_names`, `parse_rules`, `parse_hosts`,
`parse_dns`, `parse_name_servers`, `host_with_default_port`,
`parse_authentication` and `proxy_groups_dag_sort`.

A `proxyrules.tunnel.Tunnel` routes connection metadata:

```python
from proxyrules.constants import AddrType, Metadata
from proxyrules.tunnel import Tunnel

tunnel = Tunnel(hosts=config.hosts,
                ignore_resolve_fail=config.experimental.ignore_resolve_fail)
tunnel.update_proxies(config.proxies)
tunnel.update_rules(config.rules)

proxy, rule = tunnel.match(
    Metadata(host="www.example.com", addr_type=AddrType.DOMAIN_NAME, dst_port="443")
)
```

`match` returns the proxy of the first rule that matches (skipping rules
whose proxy is unknown or, for UDP, does not support UDP) together with
that rule, or the `DIRECT` proxy and `None`. Before the first `GEOIP` or
`IP-CIDR` rule a host name without an IP is resolved, by the `hosts`
table or by the `resolver` callable (the system resolver by default); a
failed resolution raises `TunnelError` unless resolve failures are
ignored. `resolve_metadata` additionally honours the tunnel's `mode` and,
with a `reverse_lookup` and a fake-ip or redir-host `enhanced_mode`, maps
an IP back to its host first.

Other building blocks:

- `proxyrules.rules` – the rule classes (`Domain`, `DomainSuffix`,
  `DomainKeyword`, `GeoIP`, `IPCIDR`, `Port`, `Match`); `GeoIP` takes an
  optional `lookup` callable from IP to country code and never matches
  without one;
- `proxyrules.constants` – `Metadata`, `Chain`, `AdapterType`,
  `RuleType`, `NetWork`, `ConnType`, `AddrType` and the home directory
  helpers `HomePath`, `get_path`, `set_home_dir`;
- `proxyrules.modes` – `Mode` and `EnhancedMode` with their text forms;
- `proxyrules.events` – `LogLevel` and an `EventLog` that publishes each
  event to subscriber queues and to the `proxyrules` logger;
- `proxyrules.traffic` – `Traffic`, an up/down byte counter whose totals
  are those of the last closed interval, ticked by hand or by a
  background thread (`start`/`stop`, or use it as a context manager);
- `proxyrules.listener` – helpers for listener addresses (`gen_addr`,
  `port_is_zero`, `port_of`);
- `proxyrules.httperrors` – `HTTPError` and the predefined errors
  `ERR_UNAUTHORIZED`, `ERR_BAD_REQUEST`, `ERR_FORBIDDEN`,
  `ERR_NOT_FOUND`, `ERR_REQUEST_TIMEOUT`, each with `to_json`.

## What it does not do

The package decides routes; it does not carry traffic. It opens no HTTP,
SOCKS or redirect listeners, runs no DNS server and no control API, and
has no outbound proxy protocols: the proxies in a configuration are
checked and named but cannot be connected through. Country lookups for
`GEOIP` rules are not read from the `.mmdb` file; a lookup function has
to be supplied to `GeoIP` by the caller.

## Running the tests

```
pip install ".[test]"
pytest
```