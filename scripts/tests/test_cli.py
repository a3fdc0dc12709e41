"""End-to-end tests for the setup and deploy command entrypoints."""

from __future__ import annotations

import base64
import json

import pytest

from cyclopts import App
from scripts import deploy_project, setup_project
from scripts._config_store import MemoryConfigStore
from scripts._provisioning_models import AccountlessApplication, ProvisioningSession

PK = "pk_test_" + base64.b64encode(b"happy-otter-12$").decode().rstrip("=")


def _invoke(app: App, *tokens: str) -> int:
    """Parse ``tokens`` with the real CLI and return the exit code."""
    try:
        result = app(list(tokens))
    except SystemExit as exc:
        return int(exc.code or 0)
    return int(result or 0)


@pytest.fixture
def store() -> MemoryConfigStore:
    return MemoryConfigStore()


@pytest.fixture
def wired(monkeypatch: pytest.MonkeyPatch, fakes, settings, store):
    """Point both entrypoints at the recording fakes."""
    monkeypatch.setattr(setup_project, "build_context", lambda _settings: fakes.context(settings, store))
    monkeypatch.setattr(deploy_project, "build_context", lambda _settings: fakes.context(settings, store))
    monkeypatch.setenv("PROVISION_LOG_LEVEL", "ERROR")
    return fakes


@pytest.fixture
def sessions(monkeypatch: pytest.MonkeyPatch, wired) -> list[ProvisioningSession]:
    """Capture the sessions the entrypoints build instead of running them."""
    captured: list[ProvisioningSession] = []

    def record(_runner, session: ProvisioningSession) -> int:
        captured.append(session)
        return 0

    monkeypatch.setattr(setup_project, "run_and_emit", record)
    monkeypatch.setattr(deploy_project, "run_and_emit", record)
    return captured


def test_init_without_keys_creates_accountless_application(
    wired, store, capsys: pytest.CaptureFixture[str]
) -> None:
    wired.identity.accountless = AccountlessApplication(
        publishable_key=PK,
        secret_key="sk_test_generated",
        claim_url="https://dashboard.clerk.com/claim/abc",
    )
    code = _invoke(setup_project.app, "init", "--site-name=Shop", "--admin-email=me@example.com")
    payload = json.loads(capsys.readouterr().out)

    assert code == 0, "init should exit zero"
    assert payload["success"] is True, "init should succeed"
    assert payload["claimUrl"] == "https://dashboard.clerk.com/claim/abc", "Claim URL printed"
    assert "create_accountless_application" in wired.identity.calls, "Omitted keys trigger provisioning"
    assert store.get_value("CLERK_SECRET_KEY") == "sk_test_generated", "Generated key stored"
    assert store.get_value("ADMIN_EMAIL") == "me@example.com", "Store updated"


def test_init_omitted_required_flag_exits_one(wired, store, capsys: pytest.CaptureFixture[str]) -> None:
    code = _invoke(setup_project.app, "init", "--site-name=Shop")
    captured = capsys.readouterr()
    payload = json.loads(captured.err)

    assert code == 1, "Usage errors exit non-zero"
    assert captured.out == "", "stdout stays empty"
    assert payload["error"] == "missing_arguments", "Usage tag reported"
    assert payload["missing"] == ["admin-email"], "Missing flag reported"
    assert wired.adapter_calls == 0, "No collaborator touched"
    assert store.read() == "", "Store untouched"


def test_omitted_optional_flags_are_absent_from_session(sessions) -> None:
    assert _invoke(setup_project.app, "init", "--site-name=Shop", "--admin-email=a@b.c") == 0
    assert sessions[0].flags == {"site-name": "Shop", "admin-email": "a@b.c"}, (
        "Only given flags reach the session"
    )


def test_require_prod_without_value_is_true(sessions) -> None:
    code = _invoke(
        deploy_project.app,
        "validate-keys",
        "--clerk-pk=pk_live_x",
        "--clerk-sk=sk_live_y",
        "--require-prod",
    )
    assert code == 0, "Flags parsed"
    assert sessions[0].flags == {
        "clerk-pk": "pk_live_x",
        "clerk-sk": "sk_live_y",
        "require-prod": "true",
    }, "Bare boolean flag becomes true"


def test_detect_port_prints_port(wired, capsys: pytest.CaptureFixture[str]) -> None:
    assert _invoke(setup_project.app, "detect-port") == 0, "detect-port exits zero"
    payload = json.loads(capsys.readouterr().out)
    assert isinstance(payload["port"], int), "Port is numeric"


def test_convex_setup_failure_still_exits_zero(wired, capsys: pytest.CaptureFixture[str]) -> None:
    wired.backend.status_output = "Not logged in"
    assert _invoke(setup_project.app, "convex-setup", "--project-name=Shop") == 0, "Failures exit zero"
    payload = json.loads(capsys.readouterr().out)
    assert payload["error"] == "not_logged_in", "Failure printed to stdout"


def test_validate_keys_require_prod_rejects_dev_keys(wired, capsys: pytest.CaptureFixture[str]) -> None:
    code = _invoke(
        deploy_project.app,
        "validate-keys",
        "--clerk-pk=pk_test_x",
        "--clerk-sk=sk_test_y",
        "--require-prod",
    )
    payload = json.loads(capsys.readouterr().out)
    assert code == 0, "Validation failures exit zero"
    assert payload["error"] == "invalid_pk", "require-prod enforced"


def test_validate_keys_accepts_dev_keys_by_default(wired, capsys: pytest.CaptureFixture[str]) -> None:
    _invoke(deploy_project.app, "validate-keys", "--clerk-pk=pk_test_x", "--clerk-sk=sk_test_y")
    payload = json.loads(capsys.readouterr().out)
    assert payload["success"] is True, "Dev keys accepted"


def test_write_summary_defaults_unset_flags(wired, settings, capsys: pytest.CaptureFixture[str]) -> None:
    code = _invoke(
        deploy_project.app,
        "write-summary",
        "--site-name=Shop",
        "--completed-steps=GitHub repo,Vercel deploy",
        "--google-oauth=configured",
    )
    payload = json.loads(capsys.readouterr().out)
    content = settings.summary_path.read_text(encoding="utf-8")

    assert code == 0, "write-summary exits zero"
    assert payload["path"] == "docs/DEPLOYMENT.md", "Relative path reported"
    assert "**Site:** Shop" in content, "Site rendered"
    assert "- [x] GitHub repo" in content, "Completed steps rendered"
    assert "| GitHub Repo | (not configured) |" in content, "Unset flag falls back to default"
    assert "Parameter" not in content, "No CLI metadata leaks into the document"


def test_vercel_env_missing_arguments(wired, capsys: pytest.CaptureFixture[str]) -> None:
    code = _invoke(deploy_project.app, "vercel-env", "--clerk-pk=pk_live_x")
    payload = json.loads(capsys.readouterr().err)
    assert code == 1, "Usage errors exit non-zero"
    assert payload["missing"] == ["clerk-sk", "deploy-key", "frontend-api-url", "site-name"]
    assert payload["hint"].startswith("Usage: deploy_project.py vercel-env"), "Usage line"
    assert wired.adapter_calls == 0, "No collaborator touched"


def test_check_tools(wired, capsys: pytest.CaptureFixture[str]) -> None:
    assert _invoke(deploy_project.app, "check-tools") == 0, "check-tools exits zero"
    payload = json.loads(capsys.readouterr().out)
    assert payload["installed"] == ["node", "git", "gh", "vercel"], "All tools found"
