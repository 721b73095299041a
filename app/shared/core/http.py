"""
Async HTTP Client Shared Infrastructure

One httpx.AsyncClient is shared by the GitHub, Google Directory and
Atlassian adapters. It is opened in the FastAPI lifespan and closed on
shutdown; adapters that run outside the app (tests, scripts) get a lazily
created client.
"""

import inspect
from typing import Optional
import httpx
import structlog

logger = structlog.get_logger()

_DEFAULT_TIMEOUT_SECONDS = 20.0
_USER_AGENT = "access-sync/0.1"

_client: Optional[httpx.AsyncClient] = None


def _build_client(timeout: Optional[float] = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        http2=True,
        timeout=httpx.Timeout(timeout or _DEFAULT_TIMEOUT_SECONDS, connect=10.0),
        limits=httpx.Limits(max_connections=50, max_keepalive_connections=10),
        headers={"User-Agent": _USER_AGENT},
    )


def get_http_client(timeout: Optional[float] = None) -> httpx.AsyncClient:
    """Returns the shared httpx.AsyncClient, creating it on first use."""
    global _client

    if _client is None:
        logger.warning(
            "http_client_lazy_initialized",
            msg="Client was not pre-initialized",
        )
        _client = _build_client(timeout)
    return _client


async def init_http_client() -> None:
    global _client
    if _client is not None:
        logger.warning("http_client_already_initialized")
        return

    _client = _build_client()
    logger.info("http_client_initialized", http2=True)


async def close_http_client() -> None:
    """Gracefully shuts down the shared client, flushing its connection pool."""
    global _client

    if _client is None:
        return

    close_result = _client.aclose()
    if inspect.isawaitable(close_result):
        await close_result
    _client = None
    logger.info("http_client_closed")
