"""Shared ``httpx`` plumbing for the HTTP-backed service adapters.

Every request carries an explicit timeout and either returns decoded JSON or
raises the adapter's classified :class:`ServiceError` subclass. Requests are
never retried; operators retry by re-running the idempotent stage.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from scripts._provisioning_errors import ServiceError
from scripts._provisioning_settings import HTTP_TIMEOUT

logger = logging.getLogger(__name__)


def build_client(
    base_url: str,
    headers: dict[str, str] | None = None,
    *,
    timeout: float = HTTP_TIMEOUT,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    """Return a client bound to ``base_url`` with JSON defaults."""
    return httpx.Client(
        base_url=base_url,
        headers={"Accept": "application/json", **(headers or {})},
        timeout=timeout,
        transport=transport,
    )


def request_json(
    client: httpx.Client,
    method: str,
    path: str,
    *,
    error_cls: type[ServiceError],
    service: str,
    **kwargs: Any,
) -> Any:
    """Send a request and return the decoded JSON body.

    Parameters
    ----------
    client : httpx.Client
        Client bound to the service base URL.
    method, path : str
        HTTP method and path relative to the base URL.
    error_cls : type[ServiceError]
        Classified error raised on transport or HTTP failures.
    service : str
        Service name used in error messages.

    Returns
    -------
    Any
        Decoded JSON, or ``None`` for empty responses.
    """
    try:
        response = client.request(method, path, **kwargs)
    except httpx.HTTPError as exc:
        msg = f"{service} request {method} {path} failed: {exc}"
        raise error_cls(msg) from exc

    if response.is_error:
        msg = f"{service} API returned {response.status_code} for {method} {path}"
        logger.info(msg)
        raise error_cls(msg, status_code=response.status_code, detail=response.text)

    if response.status_code == 204 or not response.content:
        return None
    try:
        return response.json()
    except ValueError as exc:
        msg = f"{service} API returned invalid JSON for {method} {path}"
        raise error_cls(msg, status_code=response.status_code, detail=response.text) from exc


def data_items(payload: Any) -> list[dict[str, Any]]:
    """Return list items from a bare list or a ``{"data": [...]}`` envelope.

    Examples
    --------
    >>> data_items({"data": [{"id": 1}]})
    [{'id': 1}]
    >>> data_items(None)
    []
    """
    if isinstance(payload, dict):
        payload = payload.get("data")
    if not isinstance(payload, list):
        return []
    return [item for item in payload if isinstance(item, dict)]


__all__ = ["build_client", "data_items", "request_json"]
