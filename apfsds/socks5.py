"""SOCKS5 CONNECT front end that relays client traffic to an upstream."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
from collections.abc import Awaitable, Callable
from enum import IntEnum

from apfsds.config import ClientConfig
from apfsds.emergency import is_emergency_mode

logger = logging.getLogger(__name__)

SOCKS5_VERSION = 0x05
AUTH_NO_AUTH = 0x00
AUTH_NO_ACCEPTABLE = 0xFF
CMD_CONNECT = 0x01
ATYP_IPV4 = 0x01
ATYP_DOMAIN = 0x03
ATYP_IPV6 = 0x04

_BUFFER_SIZE = 8192

Streams = tuple[asyncio.StreamReader, asyncio.StreamWriter]
Connector = Callable[[str, int], Awaitable[Streams]]


class Socks5Error(Exception):
    """A client broke the SOCKS5 protocol or asked for something unsupported."""


class Reply(IntEnum):
    """Reply codes sent in answer to a request."""

    SUCCESS = 0x00
    GENERAL_FAILURE = 0x01
    CONNECTION_NOT_ALLOWED = 0x02
    NETWORK_UNREACHABLE = 0x03
    HOST_UNREACHABLE = 0x04
    CONNECTION_REFUSED = 0x05


def build_reply(rep: int) -> bytes:
    """Encode a reply with the bound address 0.0.0.0:0."""
    return bytes([SOCKS5_VERSION, int(rep), 0x00, ATYP_IPV4, 0, 0, 0, 0, 0, 0])


async def _read_exact(reader: asyncio.StreamReader, size: int) -> bytes:
    try:
        return await reader.readexactly(size)
    except asyncio.IncompleteReadError as exc:
        raise Socks5Error("Connection closed in the middle of a message") from exc


async def _read_byte(reader: asyncio.StreamReader) -> int:
    return (await _read_exact(reader, 1))[0]


async def _send_reply(writer: asyncio.StreamWriter, rep: Reply) -> None:
    writer.write(build_reply(rep))
    await writer.drain()


async def parse_target(reader: asyncio.StreamReader, atyp: int) -> tuple[str, int]:
    """Read the destination address and port that follow the address type."""
    if atyp == ATYP_IPV4:
        host = str(ipaddress.IPv4Address(await _read_exact(reader, 4)))
    elif atyp == ATYP_IPV6:
        host = str(ipaddress.IPv6Address(await _read_exact(reader, 16)))
    elif atyp == ATYP_DOMAIN:
        length = await _read_byte(reader)
        raw = await _read_exact(reader, length)
        port = int.from_bytes(await _read_exact(reader, 2), "big")
        try:
            return raw.decode("utf-8"), port
        except UnicodeDecodeError as exc:
            raise Socks5Error("Domain name is not valid UTF-8") from exc
    else:
        raise Socks5Error(f"Unknown address type: {atyp}")
    port = int.from_bytes(await _read_exact(reader, 2), "big")
    return host, port


async def negotiate(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    """Run the method negotiation, accepting only the no-authentication method."""
    version = await _read_byte(reader)
    if version != SOCKS5_VERSION:
        raise Socks5Error(f"Invalid SOCKS version: {version}")
    nmethods = await _read_byte(reader)
    methods = await _read_exact(reader, nmethods)
    if AUTH_NO_AUTH not in methods:
        writer.write(bytes([SOCKS5_VERSION, AUTH_NO_ACCEPTABLE]))
        await writer.drain()
        raise Socks5Error("No acceptable auth method")
    writer.write(bytes([SOCKS5_VERSION, AUTH_NO_AUTH]))
    await writer.drain()


async def read_request(
    reader: asyncio.StreamReader, writer: asyncio.StreamWriter
) -> tuple[str, int]:
    """Read a CONNECT request and return its destination host and port."""
    version, cmd, _reserved, atyp = await _read_exact(reader, 4)
    if version != SOCKS5_VERSION:
        raise Socks5Error("Invalid version in request")
    if cmd != CMD_CONNECT:
        await _send_reply(writer, Reply.GENERAL_FAILURE)
        raise Socks5Error(f"Unsupported command: {cmd}")
    return await parse_target(reader, atyp)


async def _pump(source: asyncio.StreamReader, sink: asyncio.StreamWriter) -> None:
    while data := await source.read(_BUFFER_SIZE):
        sink.write(data)
        await sink.drain()


async def _relay(
    client_reader: asyncio.StreamReader,
    client_writer: asyncio.StreamWriter,
    upstream_reader: asyncio.StreamReader,
    upstream_writer: asyncio.StreamWriter,
) -> None:
    async def client_to_upstream() -> None:
        try:
            await _pump(client_reader, upstream_writer)
            if upstream_writer.can_write_eof():
                upstream_writer.write_eof()
        except OSError as exc:
            logger.error("Client read failed: %s", exc)

    sender = asyncio.create_task(client_to_upstream())
    try:
        await _pump(upstream_reader, client_writer)
    except OSError as exc:
        logger.error("Client write failed: %s", exc)
    finally:
        if not sender.done():
            sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)
        upstream_writer.close()
        try:
            await upstream_writer.wait_closed()
        except OSError:
            pass


async def handle_connection(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    connector: Connector | None = None,
) -> None:
    """Serve one client: negotiate, resolve the target, connect and relay.

    ``connector`` is awaited with the resolved address and port and returns the
    upstream stream pair; by default a direct TCP connection is opened.
    """
    try:
        if is_emergency_mode():
            logger.warning("Rejecting connection due to emergency mode")
            return

        await negotiate(reader, writer)
        host, port = await read_request(reader, writer)
        logger.debug("Request for %s:%d", host, port)

        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
        except OSError as exc:
            logger.error("DNS resolution failed for %s: %s", host, exc)
            await _send_reply(writer, Reply.HOST_UNREACHABLE)
            return
        if not infos:
            raise Socks5Error("No IP found for target")
        address, resolved_port = infos[0][4][:2]

        connect = connector or asyncio.open_connection
        logger.info("Tunneling connection to %s:%d", host, port)
        try:
            upstream_reader, upstream_writer = await connect(address, resolved_port)
        except Exception as exc:
            logger.error("Failed to connect upstream: %s", exc)
            await _send_reply(writer, Reply.CONNECTION_REFUSED)
            return

        await _send_reply(writer, Reply.SUCCESS)
        await _relay(reader, writer, upstream_reader, upstream_writer)
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass


def _split_bind(bind: str) -> tuple[str, int]:
    host, _, port = bind.rpartition(":")
    return host.strip("[]"), int(port)


async def run(config: ClientConfig, connector: Connector | None = None) -> None:
    """Listen on the configured address and serve clients until cancelled."""
    host, port = _split_bind(config.socks5.bind)

    async def on_client(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        logger.debug("New connection from %s", peer)
        try:
            await handle_connection(reader, writer, connector)
        except (Socks5Error, OSError) as exc:
            logger.error("Connection error from %s: %s", peer, exc)

    server = await asyncio.start_server(on_client, host, port)
    logger.info("SOCKS5 server listening on %s", config.socks5.bind)
    async with server:
        await server.serve_forever()