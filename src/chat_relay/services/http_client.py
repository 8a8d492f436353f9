"""
Shared HTTP client with connection pooling for upstream communication.

Provides a long-lived httpx AsyncClient with proper connection pooling,
timeouts, and resource management. The same client serves the completion
relay and the auxiliary fetch tool, so TLS sessions to the upstream API
are reused across requests.

Pool sizes and timeouts come from RelaySettings (HTTP_MAX_CONNECTIONS,
HTTP_MAX_KEEPALIVE, HTTP_TIMEOUT_CONNECT, HTTP_TIMEOUT_READ,
HTTP_TIMEOUT_WRITE, HTTP_TIMEOUT_POOL).

Last Grunted: 10/19/2026 09:40:00 AM UTC
"""
from typing import Optional

import httpx
import structlog

from chat_relay.config import RelaySettings, get_settings

logger = structlog.get_logger(__name__)


# ============================================================================
# Client Configuration
# ============================================================================

def _create_limits(settings: RelaySettings) -> httpx.Limits:
    """
    Create connection pool limits configuration.

    Args:
        settings: Relay settings holding the pool sizes

    Returns:
        httpx.Limits: Configured connection limits

    Last Grunted: 10/19/2026 09:40:00 AM UTC
    """
    return httpx.Limits(
        max_connections=settings.http_max_connections,
        max_keepalive_connections=settings.http_max_keepalive,
        keepalive_expiry=5.0,  # Close idle connections after 5 seconds
    )


def _create_timeout(settings: RelaySettings) -> httpx.Timeout:
    """
    Create timeout configuration for HTTP requests.

    The read timeout bounds the gap between two stream chunks, not the
    whole completion.

    Args:
        settings: Relay settings holding the timeouts

    Returns:
        httpx.Timeout: Configured timeout settings

    Last Grunted: 10/19/2026 09:40:00 AM UTC
    """
    return httpx.Timeout(
        connect=settings.http_timeout_connect,
        read=settings.http_timeout_read,
        write=settings.http_timeout_write,
        pool=settings.http_timeout_pool,
    )


# ============================================================================
# Client Singleton
# ============================================================================

# Global client instance - initialized lazily
_client: Optional[httpx.AsyncClient] = None


async def get_client() -> httpx.AsyncClient:
    """
    Get the shared HTTP client instance.

    Creates the client on first call (lazy initialization). Used as a
    FastAPI dependency by the relay and tools routes; tests override it
    with a client on an httpx.MockTransport.

    Returns:
        httpx.AsyncClient: Shared client instance

    Note:
        Call close_client() during application shutdown to properly
        release all connections.

    Last Grunted: 10/19/2026 09:40:00 AM UTC
    """
    global _client

    if _client is None or _client.is_closed:
        settings = get_settings()
        logger.info(
            "http_client.init",
            max_connections=settings.http_max_connections,
            max_keepalive=settings.http_max_keepalive,
        )
        _client = httpx.AsyncClient(
            limits=_create_limits(settings),
            timeout=_create_timeout(settings),
            http2=True,
        )

    return _client


async def close_client() -> None:
    """
    Close the shared HTTP client and release all connections.

    Should be called during application shutdown to ensure clean
    resource cleanup.

    Last Grunted: 10/19/2026 09:40:00 AM UTC
    """
    global _client

    if _client is not None:
        logger.info("http_client.closing")
        await _client.aclose()
        _client = None
        logger.info("http_client.closed")
