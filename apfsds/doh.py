"""Compact DNS query and response encoding carried over the tunnel."""

from __future__ import annotations

import ipaddress
from collections.abc import Iterable
from dataclasses import dataclass
from enum import IntEnum

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


class DohError(Exception):
    """Base class for DNS tunnel errors."""


class NoResultsError(DohError):
    """The response carried no usable address."""

    def __init__(self) -> None:
        super().__init__("No results")


class QueryType(IntEnum):
    """Record type, encoded as its DNS type number."""

    A = 0x01
    AAAA = 0x1C


_RECORDS: dict[int, tuple[int, type]] = {
    QueryType.A: (4, ipaddress.IPv4Address),
    QueryType.AAAA: (16, ipaddress.IPv6Address),
}


@dataclass(frozen=True)
class DohQuery:
    """A query for one domain and record type."""

    domain: str
    query_type: QueryType = QueryType.A

    @classmethod
    def a(cls, domain: str) -> DohQuery:
        """Query for IPv4 addresses."""
        return cls(domain, QueryType.A)

    @classmethod
    def aaaa(cls, domain: str) -> DohQuery:
        """Query for IPv6 addresses."""
        return cls(domain, QueryType.AAAA)

    def to_bytes(self) -> bytes:
        """Encode as one type byte followed by the domain."""
        return bytes([self.query_type]) + self.domain.encode()


def parse_doh_response(response: bytes) -> list[IPAddress]:
    """Decode a response: a count byte, then type byte and address per record."""
    if not response:
        raise NoResultsError()
    count = response[0]
    results: list[IPAddress] = []
    offset = 1
    for _ in range(count):
        if offset >= len(response):
            break
        record = _RECORDS.get(response[offset])
        offset += 1
        if record is None:
            break
        size, address_type = record
        chunk = response[offset:offset + size]
        if len(chunk) == size:
            results.append(address_type(chunk))
            offset += size
    if not results:
        raise NoResultsError()
    return results


def build_doh_response(addresses: Iterable[IPAddress | str]) -> bytes:
    """Encode resolved addresses in the response format."""
    parsed = [ipaddress.ip_address(address) for address in addresses]
    out = bytearray([len(parsed) & 0xFF])
    for address in parsed:
        out.append(QueryType.A if address.version == 4 else QueryType.AAAA)
        out += address.packed
    return bytes(out)