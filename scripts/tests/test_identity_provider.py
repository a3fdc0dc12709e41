"""Tests for the Clerk adapter and key helpers."""

from __future__ import annotations

import base64
import json
from collections.abc import Callable

import httpx
import pytest

from scripts._identity_provider import (
    CLERK_API_URL,
    ClerkAdapter,
    frontend_api_url_from_publishable_key,
    validate_key_prefixes,
)
from scripts._provisioning_errors import IdentityProviderError
from scripts._provisioning_http import build_client

type Handler = Callable[[httpx.Request], httpx.Response]


def _adapter(handler: Handler, secret_key: str = "sk_test_abc") -> ClerkAdapter:
    client = build_client(CLERK_API_URL, transport=httpx.MockTransport(handler))
    return ClerkAdapter(secret_key, client)


def _pk(host: str, prefix: str = "pk_test_") -> str:
    return prefix + base64.b64encode(f"{host}$".encode()).decode().rstrip("=")


def test_frontend_url_for_bare_instance_name() -> None:
    assert (
        frontend_api_url_from_publishable_key(_pk("happy-otter-12"))
        == "https://happy-otter-12.clerk.accounts.dev"
    ), "Bare instance names get the accounts suffix"


def test_frontend_url_for_full_host() -> None:
    assert (
        frontend_api_url_from_publishable_key(_pk("clerk.shop.example.com", "pk_live_"))
        == "https://clerk.shop.example.com"
    ), "Hosts with a dot are used as-is"


def test_frontend_url_rejects_garbage() -> None:
    assert frontend_api_url_from_publishable_key("pk_test_@@@") is None, "Undecodable key"


@pytest.mark.parametrize(
    ("pk", "sk", "require_prod", "error"),
    [
        ("pk_test_a", "sk_test_b", False, None),
        ("pk_live_a", "sk_live_b", True, None),
        ("bad", "sk_test_b", False, "invalid_pk"),
        ("pk_test_a", "bad", False, "invalid_sk"),
        ("pk_live_a", "sk_test_b", True, "invalid_sk"),
    ],
)
def test_validate_key_prefixes(pk: str, sk: str, require_prod: bool, error: str | None) -> None:
    assert validate_key_prefixes(pk, sk, require_prod=require_prod).error == error, (
        f"Unexpected validation outcome for {pk}/{sk}"
    )


def test_requests_carry_bearer_secret_key() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"total_count": 7})

    assert _adapter(handler).count_users() == 7, "User count should be read"
    assert seen[0].headers["Authorization"] == "Bearer sk_test_abc", "Bearer auth expected"
    assert seen[0].url.path == "/v1/users/count", "Count endpoint expected"


def test_create_accountless_application() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST", "Accountless creation is a POST"
        assert "Authorization" not in request.headers, "Accountless call is unauthenticated"
        return httpx.Response(
            200,
            json={
                "publishable_key": "pk_test_x",
                "secret_key": "sk_test_y",
                "claim_url": "https://dashboard.clerk.com/claim?t=1",
                "api_keys_url": "https://dashboard.clerk.com/keys",
            },
        )

    app = _adapter(handler, secret_key="").create_accountless_application()
    assert app.publishable_key == "pk_test_x", "Publishable key returned"
    assert app.secret_key == "sk_test_y", "Secret key returned"
    assert app.claim_url == "https://dashboard.clerk.com/claim?t=1", "Claim URL returned"


def test_create_accountless_application_requires_keys() -> None:
    adapter = _adapter(lambda request: httpx.Response(200, json={"claim_url": "x"}), "")
    with pytest.raises(IdentityProviderError, match="missing its keys"):
        adapter.create_accountless_application()


def test_ensure_jwt_template_skips_existing_case_insensitively() -> None:
    posts: list[dict[str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            posts.append(json.loads(request.content))
            return httpx.Response(200, json={"id": "jtmp_1"})
        return httpx.Response(200, json=[{"name": "Convex"}])

    assert _adapter(handler).ensure_jwt_template("convex") is False, "Existing template kept"
    assert posts == [], "No template should be created"


def test_ensure_jwt_template_creates_missing() -> None:
    posts: list[dict[str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            posts.append(json.loads(request.content))
            return httpx.Response(200, json={"id": "jtmp_1"})
        return httpx.Response(200, json={"data": [{"name": "other"}]})

    assert _adapter(handler).ensure_jwt_template("convex") is True, "Template created"
    assert posts == [
        {"name": "convex", "claims": {"aud": "convex"}, "lifetime": 60}
    ], "Template payload should carry the convex audience"


def test_frontend_api_url_from_domains_prefers_primary() -> None:
    domains = [
        {"name": "sat.example.com", "is_satellite": True},
        {"name": "example.com", "frontend_api_url": "https://clerk.example.com"},
    ]
    adapter = _adapter(lambda request: httpx.Response(200, json={"data": domains}))
    assert adapter.frontend_api_url_from_domains() == "https://clerk.example.com", (
        "Primary domain URL expected"
    )


def test_frontend_api_url_from_domains_empty() -> None:
    adapter = _adapter(lambda request: httpx.Response(200, json=[]))
    assert adapter.frontend_api_url_from_domains() is None, "No domains yields None"


def test_http_errors_are_classified() -> None:
    adapter = _adapter(lambda request: httpx.Response(401, text="unauthorized"))
    with pytest.raises(IdentityProviderError) as excinfo:
        adapter.count_users()
    assert excinfo.value.status_code == 401, "Status should be kept"
    assert excinfo.value.is_auth_failure, "401 is an auth failure"
    assert excinfo.value.detail == "unauthorized", "Body kept as detail"


def test_transport_errors_have_no_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(IdentityProviderError) as excinfo:
        _adapter(handler).create_svix_app()
    assert excinfo.value.status_code is None, "Transport failures carry no status"


def test_generate_svix_auth_url() -> None:
    adapter = _adapter(
        lambda request: httpx.Response(200, json={"svix_url": "https://app.svix.com/x#key=abc"})
    )
    assert adapter.generate_svix_auth_url() == "https://app.svix.com/x#key=abc", "URL returned"


def test_close_releases_client() -> None:
    client = build_client(CLERK_API_URL, transport=httpx.MockTransport(lambda _: httpx.Response(200)))
    ClerkAdapter("sk_test_abc", client).close()
    assert client.is_closed, "close should release the HTTP client"
