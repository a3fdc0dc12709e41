"""Result emission and the Markdown deployment summary.

Standard output carries exactly one JSON document per invocation; usage
errors go to standard error. The deployment summary is a pure function of
:class:`DeploymentFacts` and a timestamp so it renders identically for the
same inputs.

Examples
--------
>>> facts = DeploymentFacts(site_name="Shop", completed_steps=("GitHub repo",))
>>> text = render_deployment_summary(facts, datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC))
>>> text.splitlines()[2]
'**Deployed:** 2026-01-02 03:04:05 UTC'
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import TextIO

from scripts._provisioning_errors import MissingArgumentsError
from scripts._provisioning_models import DeploymentFacts, ProvisioningSession, StageResult
from scripts._webhook_relay import EVENT_TYPES

logger = logging.getLogger(__name__)

DEFERRED_OAUTH_MODES = ("deferred", "skipped")


def emit_result(result: StageResult, stream: TextIO) -> None:
    """Write the result payload as indented JSON."""
    stream.write(json.dumps(result.to_payload(), indent=2))
    stream.write("\n")


def usage_error_payload(error: MissingArgumentsError) -> dict[str, object]:
    """Return the ``missing_arguments`` payload for ``error``.

    Examples
    --------
    >>> usage_error_payload(MissingArgumentsError("init", ["site-name"], "init --site-name=..."))["missing"]
    ['site-name']
    """
    return {
        "success": False,
        "error": MissingArgumentsError.tag,
        "message": str(error),
        "missing": list(error.missing),
        "hint": f"Usage: {error.usage}" if error.usage else str(error),
    }


def emit_usage_error(error: MissingArgumentsError, stream: TextIO) -> None:
    stream.write(json.dumps(usage_error_payload(error)))
    stream.write("\n")


def facts_from_session(session: ProvisioningSession) -> DeploymentFacts:
    """Collect summary facts from ``write-summary`` flags."""
    defaults = DeploymentFacts()
    return DeploymentFacts(
        app_url=session.flag("vercel-url", defaults.app_url),
        repo_url=session.flag("repo-url", defaults.repo_url),
        convex_prod_url=session.flag("convex-prod-url", defaults.convex_prod_url),
        convex_site_url=session.flag("convex-site-url", defaults.convex_site_url),
        frontend_api_url=session.flag("frontend-api-url", defaults.frontend_api_url),
        webhook_url=session.flag("webhook-url", defaults.webhook_url),
        site_name=session.flag("site-name", defaults.site_name),
        admin_email=session.flag("admin-email", defaults.admin_email),
        google_oauth=session.flag("google-oauth", defaults.google_oauth),
        completed_steps=tuple(session.list_flag("completed-steps")),
        skipped_steps=tuple(session.list_flag("skipped-steps")),
        convex_vars=tuple(session.list_flag("convex-vars")),
        vercel_vars=tuple(session.list_flag("vercel-vars")),
    )


def _format_timestamp(moment: datetime) -> str:
    return moment.astimezone(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")


def _variable_block(title: str, names: Sequence[str]) -> list[str]:
    if not names:
        return []
    return [f"**{title}:**", *(f"- `{name}`" for name in names), ""]


def render_deployment_summary(facts: DeploymentFacts, generated_at: datetime) -> str:
    """Render the deployment summary Markdown document."""
    oauth_deferred = facts.google_oauth in DEFERRED_OAUTH_MODES
    lines = [
        "# Production Deployment Summary",
        "",
        f"**Deployed:** {_format_timestamp(generated_at)}",
        f"**Site:** {facts.site_name}",
        f"**Admin:** {facts.admin_email}",
        "",
        "## Production URLs",
        "",
        "| Service | URL |",
        "|---------|-----|",
        f"| App | {facts.app_url} |",
        f"| GitHub Repo | {facts.repo_url} |",
        f"| Convex Cloud | {facts.convex_prod_url} |",
        f"| Convex HTTP Actions | {facts.convex_site_url} |",
        f"| Clerk Frontend API | {facts.frontend_api_url} |",
        "| Convex Dashboard | https://dashboard.convex.dev |",
        "| Clerk Dashboard | https://dashboard.clerk.com |",
        "",
        "## Completed Steps",
        "",
    ]
    lines.extend(f"- [x] {step}" for step in facts.completed_steps)

    if facts.skipped_steps:
        lines.extend(["", "## Skipped / Deferred", ""])
        lines.extend(f"- [ ] {step}" for step in facts.skipped_steps)

    lines.extend(["", "## Environment Variables Set", ""])
    lines.extend(_variable_block("Convex Production", facts.convex_vars))
    lines.extend(_variable_block("Vercel Production", facts.vercel_vars))

    lines.extend(
        [
            "## Webhook",
            "",
            f"- Endpoint: `{facts.webhook_url}`",
            f"- Events: {', '.join(EVENT_TYPES)}",
            "",
            "## Ongoing Deployments",
            "",
            "Future deployments happen automatically when you push to main:",
            "```bash",
            "git push origin main",
            "```",
            "Vercel auto-deploys on push, including Convex function updates "
            "(via `vercel.json` buildCommand).",
            "",
        ]
    )

    if oauth_deferred:
        lines.extend(
            [
                "## Upgrade to Production Clerk",
                "",
                "When you have a custom domain and are ready to remove the Clerk dev badge, run:",
                "```bash",
                "/deploy-to-prod",
                "```",
                "",
                "This will walk you through:",
                "- Creating a Clerk production instance (requires a custom domain you own)",
                "- Swapping to production Clerk keys (pk_live_/sk_live_)",
                "- Setting up Google OAuth with your own credentials",
                "- Configuring Stripe billing via Clerk",
                "",
            ]
        )

    lines.extend(
        [
            "## Optional Next Steps",
            "",
            "1. **Custom Domain**: Vercel Dashboard → Settings → Domains → Add your domain",
        ]
    )
    if not oauth_deferred:
        lines.extend(
            [
                "2. **Enable Billing**: Clerk Dashboard (Production) → Billing → Connect Stripe",
                "3. **Create Subscription Plan**: Clerk Dashboard (Production) → Billing → Plans → Create",
                "4. **Go Live with Payments**: Toggle from Test Mode to Live Mode in Clerk Billing",
            ]
        )
    lines.extend(
        [
            "",
            "## Verify Your Deployment",
            "",
            f"1. Visit your production URL: {facts.app_url}",
            "2. Create a test account",
            "3. Check Convex Dashboard → Production → Data → users table",
            "4. User should appear (confirms webhook is working)",
            "",
        ]
    )
    return "\n".join(lines)


def write_deployment_summary(path: Path, content: str) -> Path:
    """Write ``content`` to ``path``, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    logger.info("Wrote deployment summary to %s", path)
    return path


__all__ = [
    "emit_result",
    "emit_usage_error",
    "facts_from_session",
    "render_deployment_summary",
    "usage_error_payload",
    "write_deployment_summary",
]
