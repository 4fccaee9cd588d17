"""
HTTP client helper with standardized timeout configuration.

Ensures all outbound CRM calls have explicit timeouts so a slow or hanging
CRM cannot block an inbound message indefinitely.
"""

import httpx

from app.core.config import settings


def get_httpx_timeout() -> httpx.Timeout:
    """
    Get standardized timeout configuration for HTTP clients.

    Returns:
        httpx.Timeout built from CRM_TIMEOUT_SECONDS / CRM_CONNECT_TIMEOUT_SECONDS
    """
    return httpx.Timeout(
        settings.crm_timeout_seconds,  # Default timeout for all operations
        connect=settings.crm_connect_timeout_seconds,  # Time to establish connection
        read=settings.crm_timeout_seconds,  # Time to read response
        write=settings.crm_connect_timeout_seconds,  # Time to write request
        pool=settings.crm_connect_timeout_seconds,  # Time to get connection from pool
    )


def create_httpx_client(transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """
    Create an httpx.AsyncClient with standardized timeout configuration.

    Args:
        transport: Optional transport (tests pass httpx.MockTransport)

    Returns:
        httpx.AsyncClient configured with appropriate timeouts
    """
    return httpx.AsyncClient(timeout=get_httpx_timeout(), transport=transport)
