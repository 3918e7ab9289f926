"""Outbound HTTP delivery of JSON payloads."""

import logging
import ssl
from pathlib import Path
from typing import Any, Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0

PostMessage = Callable[..., Awaitable[None]]


def load_cert_pool(ca_file: str | Path) -> ssl.SSLContext:
    """Build a TLS context trusting the certificates in ca_file."""
    path = Path(ca_file)
    if not path.exists():
        raise FileNotFoundError(f"CA file not found: {path}")
    return ssl.create_default_context(cafile=str(path))


async def post_message(
    url: str,
    payload: Any,
    proxy_url: str | None = None,
    cert_pool: ssl.SSLContext | None = None,
    timeout: float | None = DEFAULT_TIMEOUT,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    """POST payload as JSON to url.

    Raises httpx.HTTPError on connection failures, timeouts and non-2xx
    responses.
    """
    client_kwargs: dict[str, Any] = {
        "timeout": timeout,
        "verify": cert_pool if cert_pool is not None else True,
    }
    if transport is not None:
        client_kwargs["transport"] = transport
    elif proxy_url:
        client_kwargs["proxy"] = proxy_url

    async with httpx.AsyncClient(**client_kwargs) as client:
        response = await client.post(url, json=payload)
        response.raise_for_status()

    logger.debug(f"POST {url} returned {response.status_code}")
