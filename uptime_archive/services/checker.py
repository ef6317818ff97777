from __future__ import annotations

import asyncio
import logging
import socket
from datetime import datetime
from typing import Any, Callable
from urllib.parse import urlsplit

import httpx
import websockets
from websockets.exceptions import InvalidStatus, WebSocketException

from uptime_archive.core.config import DEFAULT_USER_AGENT
from uptime_archive.core.exceptions import ConfigurationError
from uptime_archive.services.endpoints import CheckType, EndpointSpec
from uptime_archive.storage.models import Reading, State, to_epoch_ms

logger = logging.getLogger(__name__)

# status reported for a completed WebSocket opening handshake
WS_SWITCHING_PROTOCOLS = 101


class Prober:
    def __init__(
        self,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
        ws_connect: Callable[..., Any] | None = None,
        user_agent: str | None = None,
    ) -> None:
        self._client_factory = client_factory or (lambda: httpx.AsyncClient(follow_redirects=False))
        self._ws_connect = ws_connect or websockets.connect
        self._user_agent = user_agent or DEFAULT_USER_AGENT

    async def probe(self, spec: EndpointSpec, now: datetime) -> Reading:
        if spec.type is CheckType.HTTP:
            check = self._check_http
        elif spec.type is CheckType.TCP:
            check = self._check_tcp
        elif spec.type is CheckType.WS:
            check = self._check_ws
        else:  # pragma: no cover - enum is exhaustive
            raise ConfigurationError(f"unsupported check type {spec.type!r}")

        code: int | None = None
        error: str | None = None
        latency_ms: int | None = None
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            code = await check(spec)
            latency_ms = int((loop.time() - started) * 1000)
        except ConfigurationError:
            raise
        except (httpx.HTTPError, OSError, asyncio.TimeoutError, WebSocketException) as exc:
            error = _normalize_error(exc)
        except Exception as exc:  # pragma: no cover - unexpected
            logger.exception("probe failed unexpectedly", extra={"service": spec.name})
            error = _normalize_error(exc)

        state = _determine_state(spec, code, latency_ms, error)
        reading = Reading(
            timestamp=to_epoch_ms(now),
            service=spec.name,
            state=state,
            code=code,
            latency_ms=latency_ms,
            error=error,
        )
        logger.debug("probe finished", extra={"service": spec.name, "state": state.value, "code": code})
        return reading

    async def _check_http(self, spec: EndpointSpec) -> int | None:
        async with self._client_factory() as client:
            # httpx times each phase separately; wait_for bounds the whole exchange
            response = await asyncio.wait_for(
                client.request(
                    spec.method,
                    spec.url,
                    timeout=spec.timeout_seconds,
                    headers={"User-Agent": self._user_agent},
                ),
                timeout=spec.timeout_seconds,
            )
            return response.status_code

    async def _check_tcp(self, spec: EndpointSpec) -> int | None:
        parts = urlsplit(spec.url)
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(parts.hostname, parts.port),
            timeout=spec.timeout_seconds,
        )
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return None

    async def _check_ws(self, spec: EndpointSpec) -> int | None:
        try:
            connection = await asyncio.wait_for(
                self._ws_connect(spec.url, open_timeout=spec.timeout_seconds),
                timeout=spec.timeout_seconds,
            )
        except InvalidStatus as exc:
            # the server answered, just not with an upgrade
            return exc.response.status_code
        await connection.close()
        return WS_SWITCHING_PROTOCOLS


def _determine_state(
    spec: EndpointSpec, code: int | None, latency_ms: int | None, error: str | None
) -> State:
    if error is not None or latency_ms is None:
        return State.DOWN
    if spec.type is CheckType.HTTP and code not in spec.expected_codes:
        return State.DOWN
    if spec.type is CheckType.WS and code != WS_SWITCHING_PROTOCOLS:
        return State.DOWN
    if latency_ms > spec.max_response_time_ms:
        return State.DEGRADED
    return State.UP


def _normalize_error(exc: BaseException) -> str:
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
        return "timeout"
    if isinstance(exc, socket.gaierror):
        return "dns_error"
    if isinstance(exc, (httpx.ConnectError, ConnectionError)):
        return "connect_error"
    if isinstance(exc, httpx.TransportError):
        return exc.__class__.__name__.lower()
    return str(exc) or exc.__class__.__name__.lower()
