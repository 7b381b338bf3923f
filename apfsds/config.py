"""Client configuration loaded from TOML."""

from __future__ import annotations

import ipaddress
import tomllib
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

Converter = Callable[[Any, str], Any]


class ConfigError(ValueError):
    """Raised when configuration data is malformed."""


def _setting(default: Any = None, *, convert: Converter, factory: Callable[[], Any] | None = None) -> Any:
    metadata = {"convert": convert}
    if factory is not None:
        return field(default_factory=factory, metadata=metadata)
    return field(default=default, metadata=metadata)


def _as_bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"{name}: expected a boolean")
    return value


def _uint(bits: int) -> Converter:
    limit = 1 << bits

    def convert(value: Any, name: str) -> int:
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value < limit:
            raise ConfigError(f"{name}: expected an integer in 0..{limit - 1}")
        return value

    return convert


def _as_float(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{name}: expected a number")
    return float(value)


def _as_str(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"{name}: expected a string")
    return value


def _as_str_list(value: Any, name: str) -> list[str]:
    if not isinstance(value, list):
        raise ConfigError(f"{name}: expected an array of strings")
    return [_as_str(item, name) for item in value]


def _as_interval(value: Any, name: str) -> tuple[int, int]:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise ConfigError(f"{name}: expected an array of two integers")
    convert = _uint(64)
    low, high = (convert(item, name) for item in value)
    return (low, high)


def _as_socket_addr(value: Any, name: str) -> str:
    text = _as_str(value, name)
    host, sep, port = text.rpartition(":")
    if not sep or not port.isdigit() or int(port) > 0xFFFF:
        raise ConfigError(f"{name}: invalid socket address {text!r}")
    try:
        if host.startswith("[") and host.endswith("]"):
            ipaddress.IPv6Address(host[1:-1])
        else:
            ipaddress.IPv4Address(host)
    except ValueError as exc:
        raise ConfigError(f"{name}: invalid socket address {text!r}") from exc
    return text


def _build(cls: type, data: Any, name: str) -> Any:
    if not isinstance(data, Mapping):
        raise ConfigError(f"{name}: expected a table")
    values = {
        f.name: f.metadata["convert"](data[f.name], f"{name}.{f.name}")
        for f in fields(cls)
        if f.name in data
    }
    return cls(**values)


def _section(cls: type) -> Converter:
    return lambda value, name: _build(cls, value, name)


@dataclass
class Socks5Config:
    """SOCKS5 server settings."""

    bind: str = _setting("127.0.0.1:1080", convert=_as_socket_addr)
    auth: bool = _setting(False, convert=_as_bool)


@dataclass
class TunConfig:
    """TUN device settings."""

    device: str = _setting("tun-apfsds", convert=_as_str)
    address: str = _setting("10.0.0.2/24", convert=_as_str)
    mtu: int = _setting(1500, convert=_uint(16))


@dataclass
class ConnectionConfig:
    """Upstream connection pool settings."""

    pool_size: int = _setting(6, convert=_uint(64))
    endpoints: list[str] = _setting(convert=_as_str_list, factory=list)
    token_endpoint: str | None = _setting(None, convert=_as_str)
    reconnect_interval: tuple[int, int] = _setting((60, 180), convert=_as_interval)
    timeout: int = _setting(30, convert=_uint(64))


@dataclass
class SecurityConfig:
    """Credential and key settings."""

    credentials_path: str | None = _setting(None, convert=_as_str)
    client_sk: str | None = _setting(None, convert=_as_str)
    server_pk: str | None = _setting(None, convert=_as_str)
    hmac_secret: str | None = _setting(None, convert=_as_str)


@dataclass
class EmergencyConfig:
    """Emergency mode checker settings."""

    enabled: bool = _setting(True, convert=_as_bool)
    crate_name: str = _setting("apfsds", convert=_as_str)
    check_interval: int = _setting(300, convert=_uint(64))


@dataclass
class ObfuscationConfig:
    """Traffic obfuscation settings."""

    noise_ratio: float = _setting(0.15, convert=_as_float)
    fake_json_enabled: bool = _setting(True, convert=_as_bool)
    sse_keepalive: bool = _setting(True, convert=_as_bool)


@dataclass
class DnsConfig:
    """Local DNS server settings."""

    enabled: bool = _setting(True, convert=_as_bool)
    bind: str = _setting("127.0.0.1:53", convert=_as_socket_addr)


@dataclass
class ClientConfig:
    """Complete client configuration."""

    socks5: Socks5Config = _setting(convert=_section(Socks5Config), factory=Socks5Config)
    tun: TunConfig = _setting(convert=_section(TunConfig), factory=TunConfig)
    connection: ConnectionConfig = _setting(convert=_section(ConnectionConfig), factory=ConnectionConfig)
    security: SecurityConfig = _setting(convert=_section(SecurityConfig), factory=SecurityConfig)
    emergency: EmergencyConfig = _setting(convert=_section(EmergencyConfig), factory=EmergencyConfig)
    obfuscation: ObfuscationConfig = _setting(convert=_section(ObfuscationConfig), factory=ObfuscationConfig)
    dns: DnsConfig = _setting(convert=_section(DnsConfig), factory=DnsConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ClientConfig:
        """Build a configuration from parsed TOML data; missing keys take defaults."""
        return _build(cls, data, "config")

    @classmethod
    def loads(cls, text: str) -> ClientConfig:
        """Parse a configuration from TOML text."""
        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"invalid TOML: {exc}") from exc
        return cls.from_dict(data)

    @classmethod
    def load(cls, path: str | Path) -> ClientConfig:
        """Read and parse a TOML configuration file."""
        return cls.loads(Path(path).read_text(encoding="utf-8"))