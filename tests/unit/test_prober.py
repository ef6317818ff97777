import asyncio
import socket

import httpx
import pytest
from websockets.datastructures import Headers
from websockets.exceptions import InvalidStatus
from websockets.http11 import Response

from uptime_archive.services.checker import Prober
from uptime_archive.services.endpoints import EndpointSpec
from uptime_archive.storage.models import State, to_epoch_ms
from tests.mocks.archive_factory import NOW


def _http_prober(handler):
    return Prober(
        client_factory=lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        user_agent="probe-test/1.0",
    )


def _http_spec(**fields):
    return EndpointSpec(name="api", url="https://api.example.com/health", **fields)


class FakeConnection:
    def __init__(self):
        self.closed = False

    async def close(self):
        self.closed = True


@pytest.mark.asyncio
async def test_http_up():
    seen = {}

    def handler(request):
        seen["ua"] = request.headers["user-agent"]
        seen["method"] = request.method
        return httpx.Response(200)

    reading = await _http_prober(handler).probe(_http_spec(method="head"), NOW)

    assert reading.state is State.UP
    assert reading.code == 200
    assert reading.service == "api"
    assert reading.timestamp == to_epoch_ms(NOW)
    assert reading.latency_ms is not None
    assert reading.error is None
    assert seen == {"ua": "probe-test/1.0", "method": "HEAD"}


@pytest.mark.asyncio
async def test_redirect_is_an_expected_code():
    prober = _http_prober(lambda request: httpx.Response(302, headers={"location": "https://elsewhere"}))
    reading = await prober.probe(_http_spec(), NOW)
    assert reading.state is State.UP
    assert reading.code == 302


@pytest.mark.asyncio
async def test_unexpected_code_is_down():
    reading = await _http_prober(lambda request: httpx.Response(503)).probe(_http_spec(), NOW)
    assert reading.state is State.DOWN
    assert reading.code == 503
    assert reading.error is None


@pytest.mark.asyncio
async def test_slow_response_is_degraded():
    async def handler(request):
        await asyncio.sleep(0.02)
        return httpx.Response(200)

    reading = await _http_prober(handler).probe(_http_spec(max_response_time_ms=1), NOW)
    assert reading.state is State.DEGRADED
    assert reading.latency_ms >= 1


@pytest.mark.asyncio
async def test_timeout_is_down():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    reading = await _http_prober(handler).probe(_http_spec(), NOW)
    assert reading.state is State.DOWN
    assert reading.error == "timeout"
    assert reading.code is None
    assert reading.latency_ms is None


@pytest.mark.asyncio
async def test_connection_error_is_down():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    reading = await _http_prober(handler).probe(_http_spec(), NOW)
    assert reading.state is State.DOWN
    assert reading.error == "connect_error"


@pytest.mark.asyncio
async def test_tcp_open_port():
    server = await asyncio.start_server(lambda reader, writer: writer.close(), "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        spec = EndpointSpec(name="db", url=f"tcp://127.0.0.1:{port}", type="tcp")
        reading = await Prober().probe(spec, NOW)
    finally:
        server.close()
        await server.wait_closed()

    assert reading.state is State.UP
    assert reading.code is None


@pytest.mark.asyncio
async def test_tcp_closed_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    spec = EndpointSpec(name="db", url=f"tcp://127.0.0.1:{port}", type="tcp", timeout=2000)

    reading = await Prober().probe(spec, NOW)

    assert reading.state is State.DOWN
    assert reading.error == "connect_error"


@pytest.mark.asyncio
async def test_ws_handshake():
    connection = FakeConnection()
    calls = []

    async def connect(url, open_timeout):
        calls.append((url, open_timeout))
        return connection

    spec = EndpointSpec(name="feed", url="wss://feed.example.com/stream", type="ws", timeout=3000)
    reading = await Prober(ws_connect=connect).probe(spec, NOW)

    assert reading.state is State.UP
    assert reading.code == 101
    assert connection.closed
    assert calls == [("wss://feed.example.com/stream", 3.0)]


@pytest.mark.asyncio
async def test_ws_rejected_upgrade():
    async def connect(url, open_timeout):
        raise InvalidStatus(Response(404, "Not Found", Headers()))

    spec = EndpointSpec(name="feed", url="ws://feed.example.com", type="ws")
    reading = await Prober(ws_connect=connect).probe(spec, NOW)

    assert reading.state is State.DOWN
    assert reading.code == 404


@pytest.mark.asyncio
async def test_ws_unreachable():
    async def connect(url, open_timeout):
        raise ConnectionRefusedError("refused")

    spec = EndpointSpec(name="feed", url="ws://feed.example.com", type="ws")
    reading = await Prober(ws_connect=connect).probe(spec, NOW)

    assert reading.state is State.DOWN
    assert reading.error == "connect_error"


@pytest.mark.asyncio
async def test_slow_body_is_bounded_by_timeout():
    async def trickle(reader, writer):
        await reader.readuntil(b"\r\n\r\n")
        writer.write(b"HTTP/1.1 200 OK\r\nContent-Length: 12\r\n\r\n")
        try:
            for _ in range(12):
                await asyncio.sleep(0.15)
                writer.write(b"x")
                await writer.drain()
        except ConnectionError:
            pass
        finally:
            writer.close()

    server = await asyncio.start_server(trickle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    spec = EndpointSpec(name="api", url=f"http://127.0.0.1:{port}/", timeout=300)
    loop = asyncio.get_running_loop()
    try:
        started = loop.time()
        reading = await Prober().probe(spec, NOW)
        elapsed = loop.time() - started
    finally:
        server.close()

    assert elapsed < 1.0
    assert reading.state is State.DOWN
    assert reading.error == "timeout"
    assert reading.latency_ms is None
