import asyncio
import ipaddress

import pytest

from apfsds.emergency import reset_emergency, trigger_emergency
from apfsds.socks5 import (
    Reply,
    Socks5Error,
    build_reply,
    handle_connection,
    negotiate,
    parse_target,
    read_request,
)


class FakeWriter:
    def __init__(self):
        self.data = bytearray()
        self.closed = False

    def write(self, data):
        self.data += data

    async def drain(self):
        pass

    def close(self):
        self.closed = True

    async def wait_closed(self):
        pass


def make_reader(data: bytes) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    reader.feed_eof()
    return reader


def test_build_reply_success_bytes():
    assert build_reply(Reply.SUCCESS) == bytes([0x05, 0x00, 0x00, 0x01, 0, 0, 0, 0, 0, 0])


@pytest.mark.parametrize("code", list(Reply))
def test_build_reply_carries_code(code):
    reply = build_reply(code)
    assert len(reply) == 10
    assert reply[0] == 0x05
    assert reply[1] == code
    assert reply[4:] == bytes(6)


@pytest.mark.asyncio
async def test_parse_target_ipv4():
    reader = make_reader(bytes([127, 0, 0, 1]) + (8080).to_bytes(2, "big"))
    assert await parse_target(reader, 0x01) == ("127.0.0.1", 8080)


@pytest.mark.asyncio
async def test_parse_target_domain():
    reader = make_reader(bytes([11]) + b"example.com" + (80).to_bytes(2, "big"))
    assert await parse_target(reader, 0x03) == ("example.com", 80)


@pytest.mark.asyncio
async def test_parse_target_ipv6():
    address = ipaddress.IPv6Address("2001:db8::1")
    reader = make_reader(address.packed + (443).to_bytes(2, "big"))
    assert await parse_target(reader, 0x04) == (str(address), 443)


@pytest.mark.asyncio
async def test_parse_target_unknown_type():
    with pytest.raises(Socks5Error, match="Unknown address type"):
        await parse_target(make_reader(b"\x00" * 8), 0x09)


@pytest.mark.asyncio
async def test_parse_target_truncated():
    with pytest.raises(Socks5Error):
        await parse_target(make_reader(bytes([10, 0])), 0x01)


@pytest.mark.asyncio
async def test_parse_target_bad_utf8_domain():
    reader = make_reader(bytes([2, 0xFF, 0xFE]) + (80).to_bytes(2, "big"))
    with pytest.raises(Socks5Error):
        await parse_target(reader, 0x03)


@pytest.mark.asyncio
async def test_negotiate_accepts_no_auth():
    writer = FakeWriter()
    await negotiate(make_reader(bytes([0x05, 0x02, 0x02, 0x00])), writer)
    assert bytes(writer.data) == bytes([0x05, 0x00])


@pytest.mark.asyncio
async def test_negotiate_rejects_without_no_auth():
    writer = FakeWriter()
    with pytest.raises(Socks5Error, match="No acceptable auth method"):
        await negotiate(make_reader(bytes([0x05, 0x01, 0x02])), writer)
    assert bytes(writer.data) == bytes([0x05, 0xFF])


@pytest.mark.asyncio
async def test_negotiate_rejects_wrong_version():
    writer = FakeWriter()
    with pytest.raises(Socks5Error, match="Invalid SOCKS version"):
        await negotiate(make_reader(bytes([0x04, 0x01, 0x00])), writer)
    assert bytes(writer.data) == b""


@pytest.mark.asyncio
async def test_read_request_returns_target():
    writer = FakeWriter()
    request = bytes([0x05, 0x01, 0x00, 0x03, 11]) + b"example.com" + (80).to_bytes(2, "big")
    assert await read_request(make_reader(request), writer) == ("example.com", 80)
    assert bytes(writer.data) == b""


@pytest.mark.asyncio
async def test_read_request_unsupported_command():
    writer = FakeWriter()
    request = bytes([0x05, 0x02, 0x00, 0x01, 127, 0, 0, 1, 0, 80])
    with pytest.raises(Socks5Error, match="Unsupported command"):
        await read_request(make_reader(request), writer)
    assert bytes(writer.data) == build_reply(Reply.GENERAL_FAILURE)


@pytest.mark.asyncio
async def test_read_request_wrong_version():
    with pytest.raises(Socks5Error, match="Invalid version in request"):
        await read_request(make_reader(bytes([0x04, 0x01, 0x00, 0x01])), FakeWriter())


@pytest.mark.asyncio
async def test_emergency_mode_rejects_connection():
    writer = FakeWriter()
    trigger_emergency()
    try:
        await handle_connection(make_reader(bytes([0x05, 0x01, 0x00])), writer)
    finally:
        reset_emergency()
    assert bytes(writer.data) == b""
    assert writer.closed


@pytest.mark.asyncio
async def test_connector_failure_sends_refused():
    async def failing(host, port):
        raise ConnectionRefusedError("upstream down")

    writer = FakeWriter()
    data = bytes([0x05, 0x01, 0x00, 0x05, 0x01, 0x00, 0x01, 127, 0, 0, 1, 0x23, 0x28])
    await handle_connection(make_reader(data), writer, failing)
    assert bytes(writer.data) == bytes([0x05, 0x00]) + build_reply(Reply.CONNECTION_REFUSED)
    assert writer.closed


@pytest.mark.asyncio
async def test_connector_receives_resolved_address():
    calls = []

    async def recording(host, port):
        calls.append((host, port))
        raise ConnectionRefusedError("stop here")

    writer = FakeWriter()
    data = bytes([0x05, 0x01, 0x00, 0x05, 0x01, 0x00, 0x01, 127, 0, 0, 1]) + (9000).to_bytes(2, "big")
    await handle_connection(make_reader(data), writer, recording)
    assert calls == [("127.0.0.1", 9000)]
    assert bytes(writer.data) == bytes([0x05, 0x00]) + build_reply(Reply.CONNECTION_REFUSED)


@pytest.mark.asyncio
async def test_resolution_failure_sends_host_unreachable(monkeypatch):
    loop = asyncio.get_running_loop()

    async def failing_lookup(*args, **kwargs):
        raise OSError("lookup failed")

    monkeypatch.setattr(loop, "getaddrinfo", failing_lookup)
    writer = FakeWriter()
    request = bytes([0x05, 0x01, 0x00, 0x03, 11]) + b"example.com" + (80).to_bytes(2, "big")
    await handle_connection(make_reader(bytes([0x05, 0x01, 0x00]) + request), writer)
    assert bytes(writer.data) == bytes([0x05, 0x00]) + build_reply(Reply.HOST_UNREACHABLE)


@pytest.mark.asyncio
async def test_tunnel_relays_data_end_to_end():
    async def echo(reader, writer):
        while data := await reader.read(1024):
            writer.write(data)
            await writer.drain()
        writer.close()

    echo_server = await asyncio.start_server(echo, "127.0.0.1", 0)
    echo_port = echo_server.sockets[0].getsockname()[1]
    proxy = await asyncio.start_server(
        lambda r, w: handle_connection(r, w), "127.0.0.1", 0
    )
    proxy_port = proxy.sockets[0].getsockname()[1]

    async with echo_server, proxy:
        reader, writer = await asyncio.open_connection("127.0.0.1", proxy_port)
        writer.write(bytes([0x05, 0x01, 0x00]))
        await writer.drain()
        assert await asyncio.wait_for(reader.readexactly(2), 5) == bytes([0x05, 0x00])

        writer.write(bytes([0x05, 0x01, 0x00, 0x01, 127, 0, 0, 1]) + echo_port.to_bytes(2, "big"))
        await writer.drain()
        assert await asyncio.wait_for(reader.readexactly(10), 5) == build_reply(Reply.SUCCESS)

        payload = b"hello through the tunnel"
        writer.write(payload)
        await writer.drain()
        assert await asyncio.wait_for(reader.readexactly(len(payload)), 5) == payload

        writer.write_eof()
        assert await asyncio.wait_for(reader.read(), 5) == b""
        writer.close()
        await writer.wait_closed()