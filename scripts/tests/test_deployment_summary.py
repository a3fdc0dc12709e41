"""Tests for result emission and the deployment summary document."""

from __future__ import annotations

import io
import json
from datetime import UTC, datetime, timedelta, timezone

from scripts._deployment_summary import (
    emit_result,
    facts_from_session,
    render_deployment_summary,
    usage_error_payload,
)
from scripts._provisioning_errors import MissingArgumentsError
from scripts._provisioning_models import DeploymentFacts, ProvisioningSession, StageResult

NOW = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)


def test_emit_result_writes_single_json_document() -> None:
    stream = io.StringIO()
    emit_result(StageResult.ok(["a"], {"port": 3001}), stream)
    assert json.loads(stream.getvalue()) == {"success": True, "steps": ["a"], "port": 3001}
    assert stream.getvalue().endswith("}\n"), "Document ends with a newline"


def test_usage_error_payload() -> None:
    error = MissingArgumentsError("configure", ["clerk-sk", "admin-email"], "configure --clerk-sk=...")
    assert usage_error_payload(error) == {
        "success": False,
        "error": "missing_arguments",
        "message": "Missing required arguments: --clerk-sk, --admin-email",
        "missing": ["clerk-sk", "admin-email"],
        "hint": "Usage: configure --clerk-sk=...",
    }, "Usage payload shape"


def test_facts_from_session_defaults_and_lists() -> None:
    session = ProvisioningSession(
        "write-summary",
        {"site-name": "Shop", "completed-steps": "a, b,,c", "vercel-url": " "},
    )
    facts = facts_from_session(session)
    assert facts.site_name == "Shop", "Flag used"
    assert facts.app_url == "(not yet deployed)", "Blank flag falls back to default"
    assert facts.completed_steps == ("a", "b", "c"), "Comma list split and trimmed"
    assert facts.google_oauth == "skipped", "OAuth deferred by default"


def test_render_is_deterministic_and_uses_utc() -> None:
    facts = DeploymentFacts(site_name="Shop")
    local = NOW.astimezone(timezone(timedelta(hours=5)))
    assert render_deployment_summary(facts, NOW) == render_deployment_summary(facts, local), (
        "Rendering depends only on the instant"
    )


def test_render_deferred_oauth_sections() -> None:
    facts = DeploymentFacts(
        app_url="https://shop.vercel.app",
        completed_steps=("GitHub repo",),
        skipped_steps=("Custom domain",),
        convex_vars=("ADMIN_EMAIL",),
    )
    text = render_deployment_summary(facts, NOW)
    lines = text.splitlines()

    assert lines[0] == "# Production Deployment Summary", "Title first"
    assert "- [x] GitHub repo" in lines, "Completed step checked"
    assert "## Skipped / Deferred" in lines, "Skipped section present"
    assert "- [ ] Custom domain" in lines, "Skipped step unchecked"
    assert "**Convex Production:**" in lines, "Convex vars listed"
    assert "**Vercel Production:**" not in lines, "Empty var block omitted"
    assert "## Upgrade to Production Clerk" in lines, "Deferred OAuth adds upgrade section"
    assert not any(line.startswith("2. **Enable Billing**") for line in lines), "Billing hidden"
    assert "1. Visit your production URL: https://shop.vercel.app" in lines, "App URL echoed"
    assert (
        "- Events: user.created, user.updated, user.deleted, paymentAttempt.updated" in lines
    ), "Subscribed events listed"


def test_render_configured_oauth_sections() -> None:
    text = render_deployment_summary(DeploymentFacts(google_oauth="configured"), NOW)
    assert "## Upgrade to Production Clerk" not in text, "No upgrade section"
    assert "## Skipped / Deferred" not in text, "No skipped section without skipped steps"
    assert "2. **Enable Billing**: Clerk Dashboard (Production) → Billing → Connect Stripe" in text
    assert "| GitHub Repo | (not configured) |" in text, "Defaults rendered"
