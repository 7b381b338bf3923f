"""TUN device settings derived from the client configuration."""

from __future__ import annotations

from dataclasses import dataclass
from ipaddress import IPv4Address

from apfsds.config import ClientConfig

_FALLBACK_ADDRESS = IPv4Address("10.0.0.2")
_FALLBACK_NETMASK = IPv4Address("255.255.255.0")


@dataclass(frozen=True)
class TunSettings:
    """Parameters for bringing up a TUN device."""

    name: str = "apfsds0"
    address: IPv4Address = IPv4Address("10.0.0.1")
    netmask: IPv4Address = IPv4Address("255.255.255.0")
    mtu: int = 1500


def parse_cidr(cidr: str) -> tuple[IPv4Address, IPv4Address] | None:
    """Split "a.b.c.d/bits" into address and netmask, or None if malformed."""
    parts = cidr.split("/")
    if len(parts) != 2:
        return None
    address_text, bits_text = parts
    if not bits_text.isdigit():
        return None
    bits = int(bits_text)
    if bits > 32:
        return None
    try:
        address = IPv4Address(address_text)
    except ValueError:
        return None
    full = (1 << 32) - 1
    mask = full ^ ((1 << (32 - bits)) - 1)
    return address, IPv4Address(mask)


def tun_settings(config: ClientConfig) -> TunSettings:
    """Build device settings from the configuration, falling back on a bad address."""
    address, netmask = parse_cidr(config.tun.address) or (_FALLBACK_ADDRESS, _FALLBACK_NETMASK)
    return TunSettings(
        name=config.tun.device,
        address=address,
        netmask=netmask,
        mtu=config.tun.mtu,
    )