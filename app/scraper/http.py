"""
Shared httpx plumbing for the vendor scraper and the provider adapters.

One AsyncClient is built at process start (see app.services.pricing_clients)
and passed into every client. The helpers here translate transport problems
into the pricing error taxonomy:

- timeout / connection error -> UpstreamUnavailable
- non-2xx status             -> UpstreamError(status, body)
- undecodable JSON body      -> UpstreamUnavailable

Nothing here retries. Fallback is the caller's decision.
"""

from typing import Any, Dict, Optional

import httpx
import structlog

from app.core.errors import UpstreamError, UpstreamUnavailable

logger = structlog.get_logger(__name__)


def build_http_client(timeout_seconds: float, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """Builds the process-wide client. `transport` is for tests."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_seconds),
        follow_redirects=True,
        transport=transport,
    )


async def send_get(
    client: httpx.AsyncClient,
    source: str,
    url: str,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> httpx.Response:
    """GET `url`, raising the taxonomy errors instead of httpx ones."""
    try:
        response = await client.get(url, params=params, headers=headers)
    except httpx.TimeoutException as e:
        logger.warning("Upstream timeout", source=source, url=url)
        raise UpstreamUnavailable(source, f"timed out fetching {url}") from e
    except httpx.HTTPError as e:
        logger.warning("Upstream transport error", source=source, url=url, error=str(e))
        raise UpstreamUnavailable(source, str(e) or type(e).__name__) from e

    if not response.is_success:
        logger.warning("Upstream error status", source=source, url=url, status=response.status_code)
        raise UpstreamError(source, response.status_code, response.text)

    return response


async def get_json(
    client: httpx.AsyncClient,
    source: str,
    url: str,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> Any:
    response = await send_get(client, source, url, params=params, headers=headers)
    try:
        return response.json()
    except ValueError as e:
        raise UpstreamUnavailable(source, f"invalid JSON from {url}") from e


def clean_params(params: Dict[str, Any]) -> Dict[str, Any]:
    """Drops empty query parameters (None or "")."""
    return {key: value for key, value in params.items() if value is not None and value != ""}
