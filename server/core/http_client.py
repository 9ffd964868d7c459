import logging
from typing import Any

import httpx

from core.config import settings
from core.errors import AdapterFetchError

logger = logging.getLogger(__name__)

_shared_http_client: httpx.AsyncClient | None = None

DEFAULT_HEADERS = {"Accept": "application/json"}


def _new_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.REQUEST_TIMEOUT_SECONDS),
        headers=DEFAULT_HEADERS,
    )


def get_http_client() -> httpx.AsyncClient:
    global _shared_http_client
    if _shared_http_client is None:
        _shared_http_client = _new_client()
    return _shared_http_client


def set_http_client(client: httpx.AsyncClient | None):
    """Replaces the shared client, e.g. with one backed by a mock transport."""
    global _shared_http_client
    _shared_http_client = client


async def init_http_client():
    global _shared_http_client
    if _shared_http_client is None:
        _shared_http_client = _new_client()


async def close_http_client():
    global _shared_http_client
    if _shared_http_client is not None:
        await _shared_http_client.aclose()
        _shared_http_client = None


async def request_json(
    url: str,
    *,
    source: str,
    method: str = "GET",
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    data: dict[str, Any] | None = None,
    client: httpx.AsyncClient | None = None,
) -> Any:
    """
    Performs a request and returns the decoded JSON body.

    Timeouts, transport errors, non-2xx responses and undecodable bodies are
    all translated into AdapterFetchError tagged with the calling source.
    """
    client = client or get_http_client()
    clean_params = (
        {k: v for k, v in params.items() if v is not None} if params else None
    )

    try:
        response = await client.request(
            method, url, params=clean_params, headers=headers, data=data
        )
    except httpx.TimeoutException as e:
        raise AdapterFetchError(source, f"Request timed out: {e}") from e
    except httpx.RequestError as e:
        raise AdapterFetchError(source, f"Network error: {e}") from e

    if response.status_code == 403:
        raise AdapterFetchError(source, "Access forbidden.", status_code=403)
    if response.status_code == 404:
        raise AdapterFetchError(source, "Resource not found.", status_code=404)
    if not response.is_success:
        logger.debug(f"{source} error body: {response.text[:200]}")
        raise AdapterFetchError(
            source,
            f"API error: {response.status_code} {response.reason_phrase}",
            status_code=response.status_code,
        )

    if not response.content or not response.content.strip():
        raise AdapterFetchError(source, "Empty response from server.")

    try:
        return response.json()
    except ValueError as e:
        raise AdapterFetchError(source, f"Invalid JSON response: {e}") from e
