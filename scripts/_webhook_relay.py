"""Svix webhook-relay adapter.

The identity provider fronts its outbound webhooks with a relay application.
Access starts from a dashboard URL that embeds a one-time token; this module
exchanges that token for an API token and manages the single endpoint the
pipeline needs.

Examples
--------
>>> relay_base_url("eu")
'https://api.eu.svix.com'
>>> relay_base_url(None)
'https://api.svix.com'
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

import httpx

from scripts._provisioning_errors import WebhookRelayError
from scripts._provisioning_http import build_client, data_items, request_json
from scripts._provisioning_models import RelayEndpoint, RelayTokenBundle

logger = logging.getLogger(__name__)

RELAY_URL = "https://api.svix.com"
RELAY_EU_URL = "https://api.eu.svix.com"
WEBHOOK_PATH = "/clerk-users-webhook"
EVENT_TYPES = (
    "user.created",
    "user.updated",
    "user.deleted",
    "paymentAttempt.updated",
)


def relay_base_url(region: str | None) -> str:
    """Return the relay API base URL for ``region``."""
    return RELAY_EU_URL if region == "eu" else RELAY_URL


def webhook_endpoint_url(site_url: str) -> str:
    """Append the webhook handler path to an HTTP-actions base URL.

    Examples
    --------
    >>> webhook_endpoint_url("https://brave-fox-123.convex.site/")
    'https://brave-fox-123.convex.site/clerk-users-webhook'
    """
    return f"{site_url.rstrip('/')}{WEBHOOK_PATH}"


class SvixAdapter:
    """Relay API client authenticated by an exchanged one-time token.

    Parameters
    ----------
    base_url
        Relay API base URL for the application's region.
    client
        Optional ``httpx.Client`` bound to ``base_url``.
    """

    def __init__(self, base_url: str = RELAY_URL, client: httpx.Client | None = None) -> None:
        self.base_url = base_url
        self._client = client or build_client(base_url)

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        return request_json(
            self._client,
            method,
            path,
            error_cls=WebhookRelayError,
            service="Svix",
            **kwargs,
        )

    def exchange_one_time_token(self, bundle: RelayTokenBundle) -> None:
        """Trade the one-time token for an API token used by later calls."""
        payload = self._request(
            "POST",
            "/api/v1/auth/one-time-token/",
            json={"oneTimeToken": bundle.one_time_token, "appId": bundle.app_id},
        )
        token = payload.get("token") if isinstance(payload, dict) else None
        if not token:
            msg = "Svix token exchange returned no token"
            raise WebhookRelayError(msg)
        self._client.headers["Authorization"] = f"Bearer {token}"

    def list_endpoints(self, app_id: str) -> list[RelayEndpoint]:
        """Return every endpoint of ``app_id``, following pagination."""
        endpoints: list[RelayEndpoint] = []
        params: dict[str, str] = {}
        while True:
            payload = self._request("GET", f"/api/v1/app/{app_id}/endpoint/", params=params)
            endpoints.extend(
                RelayEndpoint(endpoint_id=str(item.get("id")), url=str(item.get("url")))
                for item in data_items(payload)
            )
            iterator = payload.get("iterator") if isinstance(payload, dict) else None
            done = payload.get("done", True) if isinstance(payload, dict) else True
            if done or not iterator:
                return endpoints
            params = {"iterator": str(iterator)}

    def create_endpoint(
        self,
        app_id: str,
        url: str,
        description: str,
        filter_types: Iterable[str] = EVENT_TYPES,
    ) -> RelayEndpoint:
        payload = self._request(
            "POST",
            f"/api/v1/app/{app_id}/endpoint/",
            json={
                "url": url,
                "description": description,
                "filterTypes": list(filter_types),
            },
        )
        if not isinstance(payload, dict) or not payload.get("id"):
            msg = "Svix endpoint creation returned no id"
            raise WebhookRelayError(msg)
        return RelayEndpoint(endpoint_id=str(payload["id"]), url=str(payload.get("url") or url))

    def get_endpoint_secret(self, app_id: str, endpoint_id: str) -> str:
        payload = self._request("GET", f"/api/v1/app/{app_id}/endpoint/{endpoint_id}/secret/")
        key = payload.get("key") if isinstance(payload, dict) else None
        if not key:
            msg = "Svix returned no signing secret"
            raise WebhookRelayError(msg)
        return str(key)

    def ensure_endpoint(
        self,
        app_id: str,
        url: str,
        description: str,
    ) -> tuple[RelayEndpoint, bool]:
        """Reuse the endpoint registered for ``url`` or create it.

        Returns
        -------
        tuple[RelayEndpoint, bool]
            The endpoint and whether it was created by this call.
        """
        for endpoint in self.list_endpoints(app_id):
            if endpoint.url == url:
                return endpoint, False
        return self.create_endpoint(app_id, url, description), True


__all__ = [
    "EVENT_TYPES",
    "SvixAdapter",
    "WEBHOOK_PATH",
    "relay_base_url",
    "webhook_endpoint_url",
]
