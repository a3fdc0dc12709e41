"""Tests for the Convex adapter."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from scripts._backend_platform import (
    CONVEX_API_URL,
    ConvexAdapter,
    dev_deployment_name,
    http_actions_url,
    is_valid_deploy_key,
    production_urls_from_deploy_key,
)
from scripts._process_gateway import CommandContext
from scripts._provisioning_errors import BackendPlatformError
from scripts._provisioning_http import build_client
from scripts.tests._fakes import command_result


class RecordingRunner:
    """Command runner returning canned results and recording invocations."""

    def __init__(self, *results) -> None:
        self.results = list(results) or [command_result()]
        self.calls: list[tuple[tuple[str, ...], CommandContext | None]] = []

    def __call__(self, command: str, *args: str, context: CommandContext | None = None):
        self.calls.append(((command, *args), context))
        return self.results.pop(0) if len(self.results) > 1 else self.results[0]


def test_deploy_key_helpers() -> None:
    assert is_valid_deploy_key("prod:brave-fox-123|abc"), "prod key with separator is valid"
    assert not is_valid_deploy_key("prod:brave-fox-123"), "Separator is required"
    assert production_urls_from_deploy_key("prod:brave-fox-123|abc") == (
        "https://brave-fox-123.convex.cloud",
        "https://brave-fox-123.convex.site",
    ), "URLs derived from the deployment name"
    assert http_actions_url("https://a.convex.cloud") == "https://a.convex.site"
    assert dev_deployment_name("dev:happy-otter-1") == "happy-otter-1"


def test_login_status_merges_output(settings) -> None:
    runner = RecordingRunner(command_result("", "Logged in as me\n"))
    adapter = ConvexAdapter(settings, runner)
    output = adapter.login_status()
    assert adapter.is_logged_in(output), "Marker on stderr still counts"
    (argv, context), = runner.calls
    assert argv == ("npx", "convex", "login", "status"), "Expected login status call"
    assert context is not None and context.cwd == settings.root_dir, "CLI runs from the root"


def test_create_dev_project_passes_team_and_project(settings) -> None:
    runner = RecordingRunner()
    ConvexAdapter(settings, runner).create_dev_project("acme", "my-app")
    (argv, _), = runner.calls
    assert "--team=acme" in argv, "Team flag expected"
    assert "--project=my-app" in argv, "Project flag expected"
    assert "--configure=new" in argv, "Non-interactive configure expected"


def test_create_dev_project_failure_carries_output(settings) -> None:
    runner = RecordingRunner(command_result("partial", "Error: boom", 1))
    with pytest.raises(BackendPlatformError) as excinfo:
        ConvexAdapter(settings, runner).create_dev_project("acme", "my-app")
    assert "Error: boom" in excinfo.value.detail, "Detail should carry CLI output"


def test_set_env_with_deploy_key_uses_environment(settings) -> None:
    runner = RecordingRunner()
    ConvexAdapter(settings, runner).set_env("ADMIN_EMAIL", "a@b.c", deploy_key="prod:x|y")
    (argv, context), = runner.calls
    assert argv[-4:] == ("env", "set", "ADMIN_EMAIL", "a@b.c"), "env set call expected"
    assert context is not None and context.env == {"CONVEX_DEPLOY_KEY": "prod:x|y"}, (
        "Deploy key travels in the environment"
    )


def test_set_env_failure_raises(settings) -> None:
    runner = RecordingRunner(command_result("", "not authorized", 1))
    with pytest.raises(BackendPlatformError, match="ADMIN_EMAIL"):
        ConvexAdapter(settings, runner).set_env("ADMIN_EMAIL", "a@b.c")


def test_read_access_token(settings) -> None:
    adapter = ConvexAdapter(settings, RecordingRunner())
    assert adapter.read_access_token() is None, "Missing file means not logged in"

    path: Path = settings.convex_config_path
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps({"accessToken": "tok"}), encoding="utf-8")
    assert adapter.read_access_token() == "tok", "Token read from the login file"

    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(BackendPlatformError, match="Could not parse"):
        adapter.read_access_token()


def _api_adapter(settings, handler) -> ConvexAdapter:
    client = build_client(CONVEX_API_URL, transport=httpx.MockTransport(handler))
    return ConvexAdapter(settings, RecordingRunner(), client)


def test_management_api_headers_and_deploy_key(settings) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"deployKey": "prod:brave-fox|secret"})

    key = _api_adapter(settings, handler).create_deploy_key("brave-fox", "tok")
    assert key == "prod:brave-fox|secret", "deployKey field accepted"
    request = seen[0]
    assert request.url.path == "/api/deployments/brave-fox/create_deploy_key", "Endpoint path"
    assert request.headers["Authorization"] == "Bearer tok", "Bearer token expected"
    assert request.headers["Convex-Client"] == "deploy-script", "Client header expected"
    assert json.loads(request.content) == {"name": "Production - auto-generated"}


def test_create_deploy_key_without_key_fails(settings) -> None:
    adapter = _api_adapter(settings, lambda request: httpx.Response(200, json={}))
    with pytest.raises(BackendPlatformError, match="No deploy key"):
        adapter.create_deploy_key("brave-fox", "tok")


def test_management_api_auth_failure(settings) -> None:
    adapter = _api_adapter(settings, lambda request: httpx.Response(401, text="expired"))
    with pytest.raises(BackendPlatformError) as excinfo:
        adapter.get_deployment("happy-otter", "tok")
    assert excinfo.value.is_auth_failure, "401 should be an auth failure"


def test_list_project_deployments(settings) -> None:
    deployments = [{"name": "a", "deploymentType": "dev"}, "junk"]
    adapter = _api_adapter(settings, lambda request: httpx.Response(200, json=deployments))
    assert adapter.list_project_deployments("42", "tok") == [
        {"name": "a", "deploymentType": "dev"}
    ], "Only mapping items are kept"
