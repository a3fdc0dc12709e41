#!/usr/bin/env -S uv run python
# /// script
# requires-python = ">=3.13"
# dependencies = ["cyclopts>=2.9", "httpx>=0.27", "plumbum>=1.8"]
# ///
"""Promote a bootstrapped project to production.

The subcommands are idempotent stages run in roughly this order:
``check-tools``, ``github-setup``, ``convex-deploy-key``, ``validate-keys``,
``convex-deploy-functions``, ``prod-webhook``, ``convex-prod-env``,
``vercel-env``, ``vercel-deploy`` and ``write-summary``. ``vercel-env-dev``
and ``update-vercel-clerk-keys`` cover the dev-keys and key-swap paths.

Every subcommand prints a single JSON document to standard output.
"""

from __future__ import annotations

from typing import Annotated

from cyclopts import App, Parameter
from scripts._deploy_stages import DEPLOY_STAGES
from scripts._provisioning_models import ProvisioningSession
from scripts._provisioning_settings import configure_logging, resolve_settings
from scripts._stage_runner import StageRunner, build_context, run_and_emit

app = App(help="Promote a bootstrapped project to production.")


def _run(command: str, **parameters: object) -> int:
    configure_logging()
    session = ProvisioningSession.from_parameters(command, **parameters)
    runner = StageRunner(build_context(resolve_settings()), DEPLOY_STAGES)
    return run_and_emit(runner, session)


@app.command(name="check-tools")
def check_tools() -> int:
    """Report installed tool versions and GitHub CLI auth."""
    return _run("check-tools")


@app.command(name="github-setup")
def github_setup(repo_name: Annotated[str | None, Parameter()] = None) -> int:
    """Create a private GitHub repo and push the project to it."""
    return _run("github-setup", repo_name=repo_name)


@app.command(name="convex-deploy-key")
def convex_deploy_key() -> int:
    """Mint a production deploy key for the linked Convex project."""
    return _run("convex-deploy-key")


@app.command(name="validate-keys")
def validate_keys(
    clerk_pk: Annotated[str | None, Parameter()] = None,
    clerk_sk: Annotated[str | None, Parameter()] = None,
    deploy_key: Annotated[str | None, Parameter()] = None,
    require_prod: bool = False,
) -> int:
    """Check key prefixes and that the Clerk secret key is accepted."""
    return _run(
        "validate-keys",
        clerk_pk=clerk_pk,
        clerk_sk=clerk_sk,
        deploy_key=deploy_key,
        require_prod=require_prod,
    )


@app.command(name="convex-deploy-functions")
def convex_deploy_functions(deploy_key: Annotated[str | None, Parameter()] = None) -> int:
    """Deploy Convex functions to production."""
    return _run("convex-deploy-functions", deploy_key=deploy_key)


@app.command(name="prod-webhook")
def prod_webhook(
    clerk_sk: Annotated[str | None, Parameter()] = None,
    convex_site_url: Annotated[str | None, Parameter()] = None,
) -> int:
    """Create or reuse the production Clerk webhook."""
    return _run("prod-webhook", clerk_sk=clerk_sk, convex_site_url=convex_site_url)


@app.command(name="convex-prod-env")
def convex_prod_env(
    deploy_key: Annotated[str | None, Parameter()] = None,
    webhook_secret: Annotated[str | None, Parameter()] = None,
    frontend_api_url: Annotated[str | None, Parameter()] = None,
    admin_email: Annotated[str | None, Parameter()] = None,
) -> int:
    """Set production environment variables on Convex."""
    return _run(
        "convex-prod-env",
        deploy_key=deploy_key,
        webhook_secret=webhook_secret,
        frontend_api_url=frontend_api_url,
        admin_email=admin_email,
    )


@app.command(name="vercel-env-dev")
def vercel_env_dev() -> int:
    """Copy dev-instance values from ``.env.local`` to Vercel."""
    return _run("vercel-env-dev")


@app.command(name="vercel-env")
def vercel_env(
    clerk_pk: Annotated[str | None, Parameter()] = None,
    clerk_sk: Annotated[str | None, Parameter()] = None,
    deploy_key: Annotated[str | None, Parameter()] = None,
    frontend_api_url: Annotated[str | None, Parameter()] = None,
    site_name: Annotated[str | None, Parameter()] = None,
    convex_url: Annotated[str | None, Parameter()] = None,
    google_client_id: Annotated[str | None, Parameter()] = None,
    google_client_secret: Annotated[str | None, Parameter()] = None,
) -> int:
    """Set the production environment variables on Vercel."""
    return _run(
        "vercel-env",
        clerk_pk=clerk_pk,
        clerk_sk=clerk_sk,
        deploy_key=deploy_key,
        frontend_api_url=frontend_api_url,
        site_name=site_name,
        convex_url=convex_url,
        google_client_id=google_client_id,
        google_client_secret=google_client_secret,
    )


@app.command(name="vercel-deploy")
def vercel_deploy() -> int:
    """Run a production Vercel deployment."""
    return _run("vercel-deploy")


@app.command(name="write-summary")
def write_summary(
    vercel_url: Annotated[str | None, Parameter()] = None,
    repo_url: Annotated[str | None, Parameter()] = None,
    convex_prod_url: Annotated[str | None, Parameter()] = None,
    convex_site_url: Annotated[str | None, Parameter()] = None,
    frontend_api_url: Annotated[str | None, Parameter()] = None,
    webhook_url: Annotated[str | None, Parameter()] = None,
    site_name: Annotated[str | None, Parameter()] = None,
    admin_email: Annotated[str | None, Parameter()] = None,
    google_oauth: Annotated[str | None, Parameter()] = None,
    completed_steps: Annotated[str | None, Parameter()] = None,
    skipped_steps: Annotated[str | None, Parameter()] = None,
    convex_vars: Annotated[str | None, Parameter()] = None,
    vercel_vars: Annotated[str | None, Parameter()] = None,
) -> int:
    """Write the deployment summary Markdown document.

    List-valued options (``--completed-steps`` and friends) take
    comma-separated items.
    """
    return _run(
        "write-summary",
        vercel_url=vercel_url,
        repo_url=repo_url,
        convex_prod_url=convex_prod_url,
        convex_site_url=convex_site_url,
        frontend_api_url=frontend_api_url,
        webhook_url=webhook_url,
        site_name=site_name,
        admin_email=admin_email,
        google_oauth=google_oauth,
        completed_steps=completed_steps,
        skipped_steps=skipped_steps,
        convex_vars=convex_vars,
        vercel_vars=vercel_vars,
    )


@app.command(name="update-vercel-clerk-keys")
def update_vercel_clerk_keys(
    clerk_pk: Annotated[str | None, Parameter()] = None,
    clerk_sk: Annotated[str | None, Parameter()] = None,
    frontend_api_url: Annotated[str | None, Parameter()] = None,
) -> int:
    """Replace only the Clerk variables on Vercel."""
    return _run(
        "update-vercel-clerk-keys",
        clerk_pk=clerk_pk,
        clerk_sk=clerk_sk,
        frontend_api_url=frontend_api_url,
    )


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(app())
