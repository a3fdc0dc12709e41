"""Local bootstrap stages: identity, backend project, webhook, dev port.

Each handler takes the provisioning context and session, appends to the
session step log, and returns a :class:`StageResult` or raises
:class:`StageFailure` for recoverable outcomes.
"""

from __future__ import annotations

import logging
import socket
from contextlib import closing
from typing import Any

from scripts._backend_platform import http_actions_url
from scripts._config_store import contains_placeholder_marker
from scripts._env_propagation import propagate_env
from scripts._identity_provider import JWT_TEMPLATE_NAME, frontend_api_url_from_publishable_key
from scripts._output_parsing import parse_team_list, slugify_project_name
from scripts._provisioning_errors import ServiceError, StageFailure
from scripts._provisioning_models import CommandResult, ProvisioningSession, StageResult
from scripts._relay_bootstrap import bootstrap_webhook
from scripts._stage_runner import ProvisioningContext, StageSpec, verify_after_command
from scripts._webhook_relay import webhook_endpoint_url

logger = logging.getLogger(__name__)

BACKEND_KEYS = ("CONVEX_DEPLOYMENT", "NEXT_PUBLIC_CONVEX_URL")
SECRET_KEYS = ("CSRF_SECRET", "SESSION_SECRET")
REDIRECT_PATH = "/dashboard"
REDIRECT_KEYS = (
    "NEXT_PUBLIC_CLERK_SIGN_IN_FORCE_REDIRECT_URL",
    "NEXT_PUBLIC_CLERK_SIGN_UP_FORCE_REDIRECT_URL",
    "NEXT_PUBLIC_CLERK_SIGN_IN_FALLBACK_REDIRECT_URL",
    "NEXT_PUBLIC_CLERK_SIGN_UP_FALLBACK_REDIRECT_URL",
)
LOCAL_SITE_URL = "http://localhost:3000"
DEFAULT_DEV_PORT = 3000
LOOPBACK_HOST = "127.0.0.1"
MAX_PORT = 65535


def _error_detail(exc: ServiceError) -> str:
    return exc.detail or str(exc)


# init


def _clear_backend_placeholders(ctx: ProvisioningContext, session: ProvisioningSession) -> None:
    for key in BACKEND_KEYS:
        value = ctx.store.get_value(key)
        if value and contains_placeholder_marker(value):
            ctx.store.set_value(key, "")
            session.steps.append(f"Cleared placeholder for {key}")


def _resolve_frontend_api_url(
    identity: Any,
    publishable_key: str,
    session: ProvisioningSession,
) -> str | None:
    frontend_api_url = frontend_api_url_from_publishable_key(publishable_key)
    if frontend_api_url:
        session.steps.append(f"Derived Frontend API URL: {frontend_api_url}")
        return frontend_api_url
    try:
        frontend_api_url = identity.frontend_api_url_from_domains()
    except ServiceError as exc:
        session.steps.append(f"Warning: Could not determine Frontend API URL: {exc}")
        return None
    if frontend_api_url:
        session.steps.append(f"Got Frontend API URL from domains: {frontend_api_url}")
    else:
        session.steps.append("Warning: Could not determine Frontend API URL")
    return frontend_api_url


def run_init(ctx: ProvisioningContext, session: ProvisioningSession) -> StageResult:
    """Bootstrap identity keys, local secrets and redirect settings."""
    store = ctx.store
    steps = session.steps
    site_name = session.flag("site-name") or ""
    admin_email = session.flag("admin-email") or ""
    publishable_key = session.flag("clerk-pk")
    secret_key = session.flag("clerk-sk")
    env_vars_set: list[str] = []

    store.ensure_exists()
    steps.append(f"Ensured {ctx.settings.relative(ctx.settings.env_file)} exists")
    _clear_backend_placeholders(ctx, session)

    reused = [store.ensure_secret(key)[1] for key in SECRET_KEYS]
    if all(reused):
        steps.append("Reused existing CSRF_SECRET and SESSION_SECRET")
    else:
        steps.append("Generated CSRF_SECRET and SESSION_SECRET")
    env_vars_set.extend(SECRET_KEYS)

    store.set_value("NEXT_PUBLIC_SITE_NAME", site_name)
    steps.append(f"Set NEXT_PUBLIC_SITE_NAME={site_name}")
    store.set_value("ADMIN_EMAIL", admin_email)
    steps.append(f"Set ADMIN_EMAIL={admin_email}")
    env_vars_set.extend(["NEXT_PUBLIC_SITE_NAME", "ADMIN_EMAIL"])

    claim_url: str | None = None
    api_keys_url: str | None = None
    if not publishable_key or not secret_key:
        try:
            with closing(ctx.identity_provider("")) as bootstrap:
                application = bootstrap.create_accountless_application()
        except ServiceError as exc:
            raise StageFailure(
                "accountless_failed",
                hint="You may need to provide --clerk-pk and --clerk-sk instead",
                detail=_error_detail(exc),
            ) from exc
        publishable_key = application.publishable_key
        secret_key = application.secret_key
        claim_url = application.claim_url
        api_keys_url = application.api_keys_url
        steps.append("Created Clerk accountless application")
    else:
        steps.append("Using provided Clerk API keys")

    store.set_value("NEXT_PUBLIC_CLERK_PUBLISHABLE_KEY", publishable_key)
    store.set_value("CLERK_SECRET_KEY", secret_key)
    env_vars_set.extend(["NEXT_PUBLIC_CLERK_PUBLISHABLE_KEY", "CLERK_SECRET_KEY"])

    with closing(ctx.identity_provider(secret_key)) as identity:
        frontend_api_url = _resolve_frontend_api_url(identity, publishable_key, session)
        if frontend_api_url:
            store.set_value("NEXT_PUBLIC_CLERK_FRONTEND_API_URL", frontend_api_url)
            env_vars_set.append("NEXT_PUBLIC_CLERK_FRONTEND_API_URL")

        try:
            if identity.ensure_jwt_template(JWT_TEMPLATE_NAME):
                steps.append(f'Created JWT template "{JWT_TEMPLATE_NAME}"')
            else:
                steps.append(f'JWT template "{JWT_TEMPLATE_NAME}" already exists, skipping')
        except ServiceError as exc:
            steps.append(
                f"Warning: JWT template creation failed: {exc}. You may need to create it "
                f"manually in Clerk Dashboard > JWT Templates > {JWT_TEMPLATE_NAME}"
            )

    for key in REDIRECT_KEYS:
        store.set_value(key, REDIRECT_PATH)
        env_vars_set.append(key)
    steps.append("Set Clerk redirect URLs")

    next_steps: list[str] = []
    if claim_url:
        next_steps.append(f"Claim your Clerk app at: {claim_url}")
    next_steps.append("Run: setup_project.py convex-setup --project-name=<name>")
    next_steps.append("Run: setup_project.py configure --clerk-sk=<key> --admin-email=<email>")

    return StageResult.ok(
        steps,
        {
            "claimUrl": claim_url,
            "apiKeysUrl": api_keys_url,
            "frontendApiUrl": frontend_api_url,
            "envVarsSet": env_vars_set,
            "nextSteps": next_steps,
        },
    )


# convex-setup


def _select_team(session: ProvisioningSession, status_output: str) -> str | StageResult:
    teams = parse_team_list(status_output)
    if not teams:
        raise StageFailure(
            "no_teams",
            hint="No Convex teams found. Create a team at https://dashboard.convex.dev first.",
        )
    requested = session.flag("team")
    if requested:
        return requested
    if len(teams) == 1:
        return teams[0].slug
    return StageResult(
        success=False,
        steps=session.steps.as_list(),
        fields={
            "needsTeamSelection": True,
            "teams": [team.to_mapping() for team in teams],
        },
        hint="Multiple teams found. Specify which team with --team=SLUG.",
    )


def run_convex_setup(ctx: ProvisioningContext, session: ProvisioningSession) -> StageResult:
    """Create or reuse the development backend deployment.

    The backend CLI sometimes exits non-zero after writing the deployment
    into the config store, so success is decided by re-reading the store.
    """
    store = ctx.store
    steps = session.steps
    backend = ctx.backend()

    deployment = store.get_configured("CONVEX_DEPLOYMENT")
    url = store.get_configured("NEXT_PUBLIC_CONVEX_URL")
    if deployment and url:
        try:
            backend.sync_dev()
        except ServiceError:
            steps.append("Existing configuration found but sync failed, proceeding with setup")
        else:
            steps.append("Convex already configured, synced successfully")
            return StageResult.ok(
                steps,
                {"deployment": deployment, "url": url, "alreadyConfigured": True},
            )

    status_output = backend.login_status()
    if not backend.is_logged_in(status_output):
        raise StageFailure(
            "not_logged_in",
            hint="Not logged in to Convex. Run: npx convex login",
            fields={"needsLogin": True},
        )
    steps.append("Convex login verified")

    team = _select_team(session, status_output)
    if isinstance(team, StageResult):
        return team
    steps.append(f"Selected team: {team}")

    project_name = session.flag("project-name") or ""
    project_slug = slugify_project_name(project_name)
    if not project_slug:
        raise StageFailure(
            "invalid_project_name",
            hint="Project name must contain at least one letter or digit",
        )
    steps.append(f"Project slug: {project_slug}")

    for key in BACKEND_KEYS:
        value = store.get_value(key)
        if value and contains_placeholder_marker(value):
            store.set_value(key, "")

    verification = verify_after_command(
        store,
        lambda: backend.create_dev_project(team, project_slug),
        BACKEND_KEYS,
    )
    if not verification.confirmed:
        if verification.error is not None:
            raise StageFailure(
                "deploy_failed",
                hint="Convex project creation failed. Try running manually: npx convex dev --once",
                detail=_error_detail(verification.error),
            )
        raise StageFailure(
            "env_not_updated",
            hint=(
                "Convex CLI ran but the config store was not updated with deployment info. "
                "Check it manually or re-run: npx convex dev --once"
            ),
        )

    if verification.error is not None:
        steps.append("Convex CLI exited with warnings but project was created successfully")
    else:
        steps.append("Convex project created and functions deployed")
        if isinstance(verification.outcome, CommandResult) and verification.outcome.lines():
            steps.append(f"CLI output: {verification.outcome.tail()}")

    values = verification.values or {}
    deployment = values["CONVEX_DEPLOYMENT"]
    url = values["NEXT_PUBLIC_CONVEX_URL"]
    steps.append(f"Deployment: {deployment}")
    steps.append(f"URL: {url}")

    if store.get_configured("NEXT_PUBLIC_SITE_URL") is None:
        store.set_value("NEXT_PUBLIC_SITE_URL", LOCAL_SITE_URL)
        steps.append(f"Set NEXT_PUBLIC_SITE_URL={LOCAL_SITE_URL}")

    return StageResult.ok(
        steps,
        {"deployment": deployment, "url": url, "alreadyConfigured": False},
    )


# configure


def run_configure(ctx: ProvisioningContext, session: ProvisioningSession) -> StageResult:
    """Wire the user-sync webhook and push settings into the dev backend."""
    store = ctx.store
    steps = session.steps
    secret_key = session.flag("clerk-sk") or ""
    admin_email = session.flag("admin-email") or ""

    convex_url = store.get_configured("NEXT_PUBLIC_CONVEX_URL")
    if convex_url is None:
        raise StageFailure(
            "missing_convex_url",
            hint="NEXT_PUBLIC_CONVEX_URL is not configured. Run: setup_project.py convex-setup first",
        )

    endpoint_url = webhook_endpoint_url(http_actions_url(convex_url))
    steps.append(f"Derived webhook endpoint URL: {endpoint_url}")
    frontend_api_url = store.get_configured("NEXT_PUBLIC_CLERK_FRONTEND_API_URL")

    with closing(ctx.identity_provider(secret_key)) as identity:
        outcome = bootstrap_webhook(identity, ctx.webhook_relay, endpoint_url, steps)

    variables: dict[str, str] = {}
    if outcome.webhook_secret:
        variables["CLERK_WEBHOOK_SECRET"] = outcome.webhook_secret
    if frontend_api_url:
        variables["NEXT_PUBLIC_CLERK_FRONTEND_API_URL"] = frontend_api_url
    variables["ADMIN_EMAIL"] = admin_email

    propagation = propagate_env(steps, ctx.backend().set_env, variables, label="Convex env var")
    manual_steps = list(outcome.manual_steps)
    manual_steps.extend(
        f"Set {key} in Convex Dashboard > Settings > Environment Variables"
        for key in propagation.failed
    )
    if not manual_steps:
        steps.append("All Convex environment variables set successfully")

    return StageResult.ok(
        steps,
        {
            "webhookConfigured": outcome.configured,
            "webhookUrl": endpoint_url,
            "convexEnvVarsSet": propagation.vars_set,
            "manualSteps": manual_steps,
        },
        manual_steps=manual_steps,
    )


# detect-port


def find_free_port(start: int = DEFAULT_DEV_PORT, host: str = LOOPBACK_HOST) -> int | None:
    """Return the first port from ``start`` that ``host`` can bind."""
    for port in range(start, MAX_PORT + 1):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            try:
                sock.bind((host, port))
            except OSError:
                continue
            return port
    return None


def run_detect_port(ctx: ProvisioningContext, session: ProvisioningSession) -> StageResult:
    """Report the first free local development port."""
    port = find_free_port()
    if port is None:
        raise StageFailure("no_free_port", hint=f"Free a port at or above {DEFAULT_DEV_PORT}")
    session.steps.append(f"Port {port} is free")
    return StageResult.ok(session.steps, {"port": port, "url": f"http://localhost:{port}"})


SETUP_STAGES = (
    StageSpec(
        "init",
        run_init,
        required=("site-name", "admin-email"),
        usage='setup_project.py init --site-name="My App" --admin-email=me@example.com '
        "[--clerk-pk=... --clerk-sk=...]",
    ),
    StageSpec(
        "convex-setup",
        run_convex_setup,
        required=("project-name",),
        usage='setup_project.py convex-setup --project-name="My App" [--team=SLUG]',
    ),
    StageSpec(
        "configure",
        run_configure,
        required=("clerk-sk", "admin-email"),
        usage="setup_project.py configure --clerk-sk=... --admin-email=me@example.com",
    ),
    StageSpec(
        "detect-port",
        run_detect_port,
        locks_store=False,
        usage="setup_project.py detect-port",
    ),
)


__all__ = [
    "SETUP_STAGES",
    "find_free_port",
    "run_configure",
    "run_convex_setup",
    "run_detect_port",
    "run_init",
]
