"""HTTP transport layer using httpx.

The executor talks to a ``Transport``: anything with an async
``send(request) -> RawResponse`` that raises ``TransportError`` when no
response could be obtained. ``HttpxTransport`` is the production
implementation.

Connection Pooling:
    One ``httpx.AsyncClient`` is kept per (tenant, pool type) and reused for
    every request with that key. Clients are created lazily and released by
    ``aclose()``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, Mapping, Optional, Protocol

import httpx

from tinker_runtime.exceptions import TransportError

logger = logging.getLogger(__name__)

__all__ = [
    "HttpPoolConfig",
    "HttpRequest",
    "RawResponse",
    "Transport",
    "HttpxTransport",
]


@dataclass
class HttpPoolConfig:
    """Configuration for HTTP connection pooling (async httpx).

    Attributes:
        max_connections: Maximum total connections in the pool
        max_keepalive_connections: Maximum idle connections to keep alive
        keepalive_expiry: Seconds before idle connections expire
        http2: Enable HTTP/2 support (requires h2 package)
    """

    max_connections: int = 100
    max_keepalive_connections: int = 20
    keepalive_expiry: float = 30.0
    http2: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "HttpPoolConfig":
        """Create from dictionary configuration."""
        if data is None:
            return cls()
        return cls(
            max_connections=data.get("max_connections", 100),
            max_keepalive_connections=data.get("max_keepalive_connections", 20),
            keepalive_expiry=data.get("keepalive_expiry", 30.0),
            http2=data.get("http2", False),
        )

    def limits(self) -> httpx.Limits:
        return httpx.Limits(
            max_connections=self.max_connections,
            max_keepalive_connections=self.max_keepalive_connections,
            keepalive_expiry=self.keepalive_expiry,
        )


@dataclass(frozen=True)
class HttpRequest:
    """One outbound attempt. ``pool_key`` selects the connection pool."""

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    timeout: Optional[float] = None
    pool_key: Hashable = None


@dataclass(frozen=True)
class RawResponse:
    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def is_success(self) -> bool:
        return 200 <= self.status < 300


class Transport(Protocol):
    async def send(self, request: HttpRequest) -> RawResponse:
        ...


@dataclass
class ConnectionMetrics:
    """Metrics for connection pool usage."""

    requests_made: int = 0
    clients_created: int = 0
    clients_reused: int = 0

    @property
    def reuse_ratio(self) -> float:
        if self.requests_made == 0:
            return 0.0
        return self.clients_reused / self.requests_made


class HttpxTransport:
    """Pooled httpx transport.

    Example:
        async with HttpxTransport() as transport:
            executor = RequestExecutor(transport)
            ...

    Args:
        pool_config: Pool limits applied to every client
        transport: Optional httpx transport (e.g. ``httpx.MockTransport``)
    """

    def __init__(
        self,
        pool_config: Optional[HttpPoolConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._pool_config = pool_config or HttpPoolConfig()
        self._transport = transport
        self._clients: Dict[Hashable, httpx.AsyncClient] = {}
        self._lock = asyncio.Lock()
        self.metrics = ConnectionMetrics()

    async def _get_client(self, pool_key: Hashable) -> httpx.AsyncClient:
        """Get or create the pooled client for ``pool_key``."""
        client = self._clients.get(pool_key)
        if client is not None:
            self.metrics.clients_reused += 1
            return client
        async with self._lock:
            client = self._clients.get(pool_key)
            if client is None:
                client = httpx.AsyncClient(
                    limits=self._pool_config.limits(),
                    http2=self._pool_config.http2,
                    transport=self._transport,
                )
                self._clients[pool_key] = client
                self.metrics.clients_created += 1
                logger.debug(
                    "Created pooled httpx client for %r with limits: max=%d, keepalive=%d",
                    pool_key,
                    self._pool_config.max_connections,
                    self._pool_config.max_keepalive_connections,
                )
            return client

    async def send(self, request: HttpRequest) -> RawResponse:
        client = await self._get_client(request.pool_key)
        self.metrics.requests_made += 1
        try:
            response = await client.request(
                request.method,
                request.url,
                headers=dict(request.headers),
                content=request.body,
                timeout=request.timeout,
            )
        except httpx.TimeoutException as exc:
            raise TransportError(f"Request timed out: {request.method} {request.url}", exc) from exc
        except httpx.HTTPError as exc:
            raise TransportError(
                f"Request failed: {request.method} {request.url}: {exc}", exc
            ) from exc
        return RawResponse(
            status=response.status_code,
            headers=dict(response.headers.items()),
            body=response.content,
        )

    @property
    def pool_count(self) -> int:
        return len(self._clients)

    async def aclose(self) -> None:
        """Close every pooled client and release connections."""
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            await client.aclose()
        if clients:
            logger.debug(
                "Closed %d pooled clients. Metrics: requests=%d, created=%d, reused=%d, reuse_ratio=%.2f",
                len(clients),
                self.metrics.requests_made,
                self.metrics.clients_created,
                self.metrics.clients_reused,
                self.metrics.reuse_ratio,
            )

    async def __aenter__(self) -> "HttpxTransport":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
