import httpx
import logging
from typing import Optional

from pyxis_library.config import settings

logger = logging.getLogger(__name__)

# Decide whether HTTP/2 is available (requires the 'h2' package)
try:
    import h2  # type: ignore  # noqa: F401
    _HTTP2_AVAILABLE = True
except ImportError:
    _HTTP2_AVAILABLE = False
    logger.debug("HTTP/2 disabled: 'h2' package is not installed.")


class CatalogHTTPClient:
    """Pooled async HTTP client used for catalog requests."""

    def __init__(self, timeout: Optional[float] = None, verify: Optional[bool] = None,
                 max_connections: int = 20, transport: Optional[httpx.AsyncBaseTransport] = None):
        # Keep-alive pool sized for a handful of concurrent page requests
        limits = httpx.Limits(
            max_keepalive_connections=max_connections,
            max_connections=max_connections,
            keepalive_expiry=30.0
        )
        request_timeout = timeout if timeout is not None else settings.catalog_timeout
        self._client = httpx.AsyncClient(
            limits=limits,
            timeout=httpx.Timeout(request_timeout),
            follow_redirects=True,
            verify=settings.catalog_verify_ssl if verify is None else verify,
            http2=_HTTP2_AVAILABLE and transport is None,
            transport=transport,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    async def get(self, url: str, **kwargs) -> httpx.Response:
        """Async GET over the shared connection pool."""
        return await self._client.get(url, **kwargs)

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
