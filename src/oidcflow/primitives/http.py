"""HTTP helpers shared by every pipeline stage.

Translates httpx transport failures and malformed bodies into the calling
stage's own error type so each stage surfaces a single exception family.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from oidcflow.models.errors import ErrorKind, OIDCError

logger = logging.getLogger(__name__)


async def send_request(
    http_client: httpx.AsyncClient,
    method: str,
    url: str,
    error_cls: type[OIDCError],
    *,
    timeout: float,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request, raising ``error_cls`` on timeout or transport failure.

    ``timeout`` and ``follow_redirects=False`` are applied per request, so an
    injected client's own defaults never override them.

    Raises:
        error_cls: with ``kind`` TIMEOUT or NETWORK
    """
    try:
        return await http_client.request(
            method, url, timeout=timeout, follow_redirects=False, **kwargs
        )
    except httpx.TimeoutException as e:
        logger.warning(f"{method} {url} timed out: {e}")
        raise error_cls(
            f"Request to {url} timed out", kind=ErrorKind.TIMEOUT, url=url
        ) from e
    except httpx.HTTPError as e:
        logger.warning(f"{method} {url} failed: {e}")
        raise error_cls(
            f"Network error contacting {url}: {e}", kind=ErrorKind.NETWORK, url=url
        ) from e


def parse_json_object(
    response: httpx.Response,
    url: str,
    error_cls: type[OIDCError],
) -> dict[str, Any]:
    """Parse a response body that must be a JSON object.

    Raises:
        error_cls: with ``kind`` JSON if the body is not a JSON object
    """
    try:
        data = response.json()
    except ValueError as e:
        raise error_cls(
            f"Malformed JSON from {url}: {e}",
            kind=ErrorKind.JSON,
            url=url,
            status_code=response.status_code,
            body=response.text,
        ) from e

    if not isinstance(data, dict):
        raise error_cls(
            f"Expected a JSON object from {url}, got {type(data).__name__}",
            kind=ErrorKind.JSON,
            url=url,
            status_code=response.status_code,
            body=response.text,
        )
    return data


def parse_oauth_error(response: httpx.Response) -> dict[str, Any] | None:
    """Return an RFC 6749 Section 5.2 error object, or None if the body is not one."""
    try:
        data = response.json()
    except ValueError:
        return None
    if not isinstance(data, dict) or not isinstance(data.get("error"), str):
        return None
    return data
