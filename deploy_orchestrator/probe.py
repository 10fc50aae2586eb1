import asyncio
import socket
import time
from urllib.parse import urlsplit

import httpx

from .models import ErrorKind, ProbeKind, ProbeOutcome
from .logger import get_logger

_DNS_MESSAGES = (
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "getaddrinfo failed",
    "no address associated",
)


def parse_tcp_target(target):
    """Split a "tcp://host:port" or "host:port" target into (host, port)"""
    parts = urlsplit(target if "://" in target else f"tcp://{target}")
    if not parts.hostname or parts.port is None:
        raise ValueError(f"TCP target must be host:port, got {target!r}")
    return parts.hostname, parts.port


def classify_error(exc):
    """Map a transport exception onto an ErrorKind"""
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ErrorKind.TIMEOUT

    # httpx wraps the socket error; walk the chain to find the root cause
    seen = exc
    while seen is not None:
        if isinstance(seen, socket.gaierror):
            return ErrorKind.DNS_FAIL
        if isinstance(seen, ConnectionRefusedError):
            return ErrorKind.CONN_REFUSED
        seen = seen.__cause__ or seen.__context__

    message = str(exc).lower()
    if any(m in message for m in _DNS_MESSAGES):
        return ErrorKind.DNS_FAIL
    if isinstance(exc, (httpx.ConnectError, ConnectionError)):
        return ErrorKind.CONN_REFUSED
    if isinstance(exc, (httpx.RemoteProtocolError, httpx.DecodingError)):
        return ErrorKind.BAD_RESPONSE
    return ErrorKind.TRANSPORT


class ProbeEngine:
    """Runs exactly one health probe and classifies the outcome. Never retries."""

    def __init__(self, transport=None):
        # transport is an httpx transport override, used to point probes at an in-process app
        self.transport = transport
        self.logger = get_logger("probe")

    async def probe(self, spec, connect_timeout_s, request_timeout_s):
        start = time.monotonic()
        try:
            if spec.kind == ProbeKind.TCP_CONNECT:
                outcome = await self._tcp_connect(spec, connect_timeout_s)
            else:
                outcome = await self._http_body(spec, connect_timeout_s, request_timeout_s)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            kind = classify_error(e)
            self.logger.debug(f"Probe {spec.target} failed with {kind.value}: {e!r}")
            outcome = ProbeOutcome(succeeded=False, error=kind, detail=str(e) or type(e).__name__)

        latency = time.monotonic() - start
        return ProbeOutcome(
            succeeded=outcome.succeeded,
            observed_latency_s=latency,
            error=outcome.error,
            detail=outcome.detail,
        )

    async def _http_body(self, spec, connect_timeout_s, request_timeout_s):
        timeout = httpx.Timeout(request_timeout_s, connect=connect_timeout_s)
        async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
            # Bound the whole exchange, not just each socket operation
            response = await asyncio.wait_for(client.get(spec.target), timeout=connect_timeout_s + request_timeout_s)

        body = response.text
        if spec.matches(body):
            return ProbeOutcome(succeeded=True, detail=f"HTTP {response.status_code}")

        self.logger.debug(f"Probe {spec.target} answered HTTP {response.status_code} without {spec.success_pattern!r}")
        return ProbeOutcome(
            succeeded=False,
            error=ErrorKind.BAD_RESPONSE,
            detail=f"HTTP {response.status_code}: pattern {spec.success_pattern!r} not found",
        )

    async def _tcp_connect(self, spec, connect_timeout_s):
        host, port = parse_tcp_target(spec.target)
        reader, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=connect_timeout_s)
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass  # Peer reset on close still means the connect succeeded
        return ProbeOutcome(succeeded=True, detail=f"connected to {host}:{port}")
