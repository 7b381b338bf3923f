# apfsds

Client-side building blocks for an APFSDS proxy network. The package also has a
command-line tool for the daemon's management API.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Managing a daemon

The `apfsds-cli` command talks to the management API. It uses
`http://127.0.0.1:25348` unless you pass `--api`.

```
apfsds-cli stats
apfsds-cli user create alice --quota 1073741824
apfsds-cli user delete 42
apfsds-cli node register exit-1 203.0.113.5:25347 --weight 2.0
apfsds-cli --api http://10.0.0.1:25348 stats
```

- `stats` sends `GET /admin/stats`. It prints the active connections and the
  total bytes received and sent as a table. An HTTP error status, a failed
  request or a malformed response makes the command print `Error: ...` and exit
  with status 1.
- `user create USERNAME [--quota BYTES]` sends `POST /admin/users` with
  `{"username", "quota_bytes"}`.
- `user delete ID` sends `DELETE /admin/users/ID`.
- `node register NAME ENDPOINT [--weight W]` sends `POST /admin/nodes` with
  `{"name", "endpoint", "weight"}`. The weight defaults to 1.0.

The `user` and `node` commands print a success message on a 2xx answer. On any
other status they print `Error: <status>` to standard error, and the exit status
stays 0.

From Python, `apfsds.cli.main(argv)` runs the same commands and returns the exit
status. `build_parser()` returns the argument parser, and
`format_stats(SystemStats(...))` renders the table.

## Library

### Configuration: `apfsds.config`

`ClientConfig.load(path)`, `ClientConfig.loads(text)` and
`ClientConfig.from_dict(data)` read a TOML client configuration. Every key that
is left out takes its default. The sections are the following:

| Section       | Class               | Keys and defaults |
|---------------|---------------------|-------------------|
| `socks5`      | `Socks5Config`      | `bind = "127.0.0.1:1080"`, `auth = false` |
| `tun`         | `TunConfig`         | `device = "tun-apfsds"`, `address = "10.0.0.2/24"`, `mtu = 1500` |
| `connection`  | `ConnectionConfig`  | `pool_size = 6`, `endpoints = []`, `token_endpoint`, `reconnect_interval = [60, 180]`, `timeout = 30` |
| `security`    | `SecurityConfig`    | `credentials_path`, `client_sk`, `server_pk`, `hmac_secret` (all unset) |
| `emergency`   | `EmergencyConfig`   | `enabled = true`, `crate_name = "apfsds"`, `check_interval = 300` |
| `obfuscation` | `ObfuscationConfig` | `noise_ratio = 0.15`, `fake_json_enabled = true`, `sse_keepalive = true` |
| `dns`         | `DnsConfig`         | `enabled = true`, `bind = "127.0.0.1:53"` |

A value of the wrong type, an integer out of range, a bind address that is not
`IPv4:port` or `[IPv6]:port`, or invalid TOML raises `ConfigError`, which is a
subclass of `ValueError`.

### Tunnel DNS encoding: `apfsds.doh`

`DohQuery.a(domain)` and `DohQuery.aaaa(domain)` build queries. `to_bytes()`
encodes a query as one type byte (`0x01` or `0x1C`) followed by the domain.
`build_doh_response(addresses)` encodes a count byte and then a type byte and
the packed address for each record. `parse_doh_response(data)` decodes that
format back into `ipaddress` objects. It raises `NoResultsError` when no address
can be read.

```python
from ipaddress import ip_address
from apfsds.doh import DohQuery, build_doh_response, parse_doh_response

assert DohQuery.a("example.com").to_bytes() == b"\x01example.com"
answer = build_doh_response([ip_address("1.2.3.4")])
assert parse_doh_response(answer) == [ip_address("1.2.3.4")]
```

### TUN settings: `apfsds.tun`

`parse_cidr("10.0.0.2/24")` returns the address and the netmask, or `None` if
the text is malformed. `tun_settings(config)` builds a `TunSettings` from the
`tun` section. When the address cannot be parsed, it falls back to
`10.0.0.2/255.255.255.0`.

### Emergency mode: `apfsds.emergency`

`is_emergency_mode()`, `trigger_emergency()` and `reset_emergency()` manage a
process-wide flag.

`start_checker(config, fetch)` must be called inside a running event loop. It
starts a task that waits `check_interval` seconds between checks. At each check
it awaits `fetch(crate_name)` for the list of published versions, newest first,
each a mapping with a `yanked` flag. If the newest version is yanked, or there
are no versions, the task sets the flag, waits a random delay of up to an hour
and then ends the process. Errors from `fetch` are logged and the task carries
on. When `enabled` is false, the task returns at once.

You have to supply `fetch`; the package does not include a client for a package
index.

### SOCKS5 front end: `apfsds.socks5`

`run(config, connector=None)` listens on `socks5.bind` and serves SOCKS5 clients
until it is cancelled. It offers only the no-authentication method and only the
CONNECT command, with IPv4, IPv6 and domain-name targets.

For each request, the server resolves the target and awaits
`connector(address, port)` for an upstream `(StreamReader, StreamWriter)` pair.
By default it opens a direct TCP connection. Data is then relayed both ways.
The server sends these replies:

- `HOST_UNREACHABLE` if the target cannot be resolved.
- `CONNECTION_REFUSED` if the connector fails.
- `GENERAL_FAILURE` for a command other than CONNECT.

While emergency mode is active, connections are closed without an answer.

The steps are also available on their own: `negotiate`, `read_request`,
`parse_target`, `handle_connection` and `build_reply`. Protocol violations raise
`Socks5Error`.

## What this package does not do

- It has no encrypted tunnel transport. The SOCKS5 front end relays through
  whatever `connector` you give it, or connects directly.
- It has no local DNS server. `apfsds.doh` only encodes and decodes messages.
- It does not create or drive TUN devices. `apfsds.tun` only computes their
  settings.
- It has no command that starts the client itself. The only command is
  `apfsds-cli`, for the management API.