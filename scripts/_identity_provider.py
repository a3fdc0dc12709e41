"""Clerk identity-provider adapter.

A thin facade over the Clerk Backend API covering the handful of operations
the pipeline needs: temporary (claimable) application creation, JWT
templates, domains, a credential check, and the Svix webhook bootstrap calls.

Examples
--------
>>> frontend_api_url_from_publishable_key("pk_test_Y2xlcmsuZXhhbXBsZS5jb20k")
'https://clerk.example.com'
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from scripts._output_parsing import decode_base64_text
from scripts._provisioning_errors import IdentityProviderError
from scripts._provisioning_http import build_client, data_items, request_json
from scripts._provisioning_models import AccountlessApplication

logger = logging.getLogger(__name__)

CLERK_API_URL = "https://api.clerk.com/v1"
JWT_TEMPLATE_NAME = "convex"
JWT_TEMPLATE_CLAIMS = {"aud": "convex"}
JWT_TEMPLATE_LIFETIME = 60
DEFAULT_ACCOUNTS_SUFFIX = ".clerk.accounts.dev"


def frontend_api_url_from_publishable_key(publishable_key: str) -> str | None:
    """Decode the frontend API URL embedded in a publishable key.

    The segment after the last ``_`` is base64 of the frontend API host
    followed by ``$``. A bare instance name without any dot gets the
    development accounts suffix appended.

    Examples
    --------
    >>> frontend_api_url_from_publishable_key("pk_test_aGFwcHktb3R0ZXItMTIk")
    'https://happy-otter-12.clerk.accounts.dev'
    >>> frontend_api_url_from_publishable_key("pk_test_!!!") is None
    True
    """
    encoded = publishable_key.rsplit("_", 1)[-1]
    decoded = decode_base64_text(encoded)
    if decoded is None:
        return None
    host = decoded.strip().removesuffix("$")
    if not host or any(char.isspace() for char in host) or "/" in host:
        return None
    if "." in host:
        return f"https://{host}"
    return f"https://{host}{DEFAULT_ACCOUNTS_SUFFIX}"


@dataclass(frozen=True, slots=True)
class KeyValidation:
    """Outcome of publishable/secret key prefix validation."""

    error: str | None
    hint: str | None
    key_type: str


def validate_key_prefixes(
    publishable_key: str,
    secret_key: str,
    *,
    require_prod: bool = False,
) -> KeyValidation:
    """Check key prefixes, accepting development keys unless ``require_prod``.

    Examples
    --------
    >>> validate_key_prefixes("pk_live_x", "sk_live_y").key_type
    'production'
    >>> validate_key_prefixes("pk_test_x", "sk_test_y", require_prod=True).error
    'invalid_pk'
    """
    pk_prefixes = ("pk_live_",) if require_prod else ("pk_test_", "pk_live_")
    sk_prefixes = ("sk_live_",) if require_prod else ("sk_test_", "sk_live_")
    key_type = "production" if publishable_key.startswith("pk_live_") else "development"

    if not publishable_key.startswith(pk_prefixes):
        hint = (
            "Publishable key must start with pk_live_ for production"
            if require_prod
            else "Publishable key must start with pk_test_ or pk_live_"
        )
        return KeyValidation("invalid_pk", hint, key_type)
    if not secret_key.startswith(sk_prefixes):
        hint = (
            "Secret key must start with sk_live_ for production"
            if require_prod
            else "Secret key must start with sk_test_ or sk_live_"
        )
        return KeyValidation("invalid_sk", hint, key_type)
    return KeyValidation(None, None, key_type)


class ClerkAdapter:
    """Clerk Backend API client.

    Parameters
    ----------
    secret_key
        Instance secret key; empty for the unauthenticated accountless call.
    client
        Optional preconfigured ``httpx.Client`` (tests inject a mock
        transport through this).
    """

    def __init__(self, secret_key: str = "", client: httpx.Client | None = None) -> None:
        headers = {"Authorization": f"Bearer {secret_key}"} if secret_key else {}
        self._client = client or build_client(CLERK_API_URL, headers)
        if client is not None and secret_key:
            self._client.headers["Authorization"] = f"Bearer {secret_key}"

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        return request_json(
            self._client,
            method,
            path,
            error_cls=IdentityProviderError,
            service="Clerk",
            **kwargs,
        )

    def create_accountless_application(self) -> AccountlessApplication:
        """Provision a temporary application that can be claimed later."""
        payload = self._request("POST", "/accountless_applications")
        if not isinstance(payload, dict):
            msg = "Clerk returned an unexpected accountless application payload"
            raise IdentityProviderError(msg)
        publishable_key = payload.get("publishable_key")
        secret_key = payload.get("secret_key")
        if not publishable_key or not secret_key:
            msg = "Clerk accountless application is missing its keys"
            raise IdentityProviderError(msg)
        return AccountlessApplication(
            publishable_key=str(publishable_key),
            secret_key=str(secret_key),
            claim_url=payload.get("claim_url"),
            api_keys_url=payload.get("api_keys_url"),
        )

    def list_jwt_templates(self) -> list[dict[str, Any]]:
        return data_items(self._request("GET", "/jwt_templates"))

    def create_jwt_template(
        self,
        name: str,
        claims: dict[str, Any],
        lifetime: int,
    ) -> dict[str, Any]:
        payload = self._request(
            "POST",
            "/jwt_templates",
            json={"name": name, "claims": claims, "lifetime": lifetime},
        )
        return payload if isinstance(payload, dict) else {}

    def ensure_jwt_template(self, name: str = JWT_TEMPLATE_NAME) -> bool:
        """Create the named JWT template unless one exists.

        Names are compared case-insensitively. Returns ``True`` when the
        template was created.
        """
        wanted = name.lower()
        for template in self.list_jwt_templates():
            if str(template.get("name") or "").lower() == wanted:
                return False
        self.create_jwt_template(name, dict(JWT_TEMPLATE_CLAIMS), JWT_TEMPLATE_LIFETIME)
        return True

    def list_domains(self) -> list[dict[str, Any]]:
        return data_items(self._request("GET", "/domains"))

    def frontend_api_url_from_domains(self) -> str | None:
        """Return the frontend API URL of the primary domain, if any."""
        domains = self.list_domains()
        if not domains:
            return None
        primary = next(
            (domain for domain in domains if not domain.get("is_satellite")),
            domains[0],
        )
        frontend_api_url = primary.get("frontend_api_url")
        if frontend_api_url:
            return str(frontend_api_url)
        name = primary.get("name")
        return f"https://{name}" if name else None

    def count_users(self) -> int:
        """Return the user count; used to prove the secret key works."""
        payload = self._request("GET", "/users/count")
        if isinstance(payload, dict):
            return int(payload.get("total_count") or 0)
        return int(payload or 0)

    def create_svix_app(self) -> None:
        self._request("POST", "/webhooks/svix")

    def generate_svix_auth_url(self) -> str:
        """Return the relay dashboard URL carrying a one-time token."""
        payload = self._request("POST", "/webhooks/svix_url")
        url = payload.get("svix_url") if isinstance(payload, dict) else None
        if not url:
            msg = "Clerk did not return a Svix dashboard URL"
            raise IdentityProviderError(msg)
        return str(url)


__all__ = [
    "CLERK_API_URL",
    "ClerkAdapter",
    "JWT_TEMPLATE_NAME",
    "KeyValidation",
    "frontend_api_url_from_publishable_key",
    "validate_key_prefixes",
]
