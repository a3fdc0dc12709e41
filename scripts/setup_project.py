#!/usr/bin/env -S uv run python
# /// script
# requires-python = ">=3.13"
# dependencies = ["cyclopts>=2.9", "httpx>=0.27", "plumbum>=1.8"]
# ///
"""Bootstrap a local development environment.

Subcommands:
- ``init`` seeds ``.env.local`` with secrets, site settings and Clerk keys;
- ``convex-setup`` creates or links the Convex dev deployment;
- ``configure`` wires the Clerk user webhook into Convex; and
- ``detect-port`` finds a free port for the dev server.

Every subcommand prints a single JSON document to standard output.
"""

from __future__ import annotations

from typing import Annotated

from cyclopts import App, Parameter
from scripts._provisioning_models import ProvisioningSession
from scripts._provisioning_settings import configure_logging, resolve_settings
from scripts._setup_stages import SETUP_STAGES
from scripts._stage_runner import StageRunner, build_context, run_and_emit

app = App(help="Bootstrap a local development environment.")


def _run(command: str, **parameters: object) -> int:
    configure_logging()
    session = ProvisioningSession.from_parameters(command, **parameters)
    runner = StageRunner(build_context(resolve_settings()), SETUP_STAGES)
    return run_and_emit(runner, session)


@app.command(name="init")
def init(
    site_name: Annotated[str | None, Parameter()] = None,
    admin_email: Annotated[str | None, Parameter()] = None,
    clerk_pk: Annotated[str | None, Parameter()] = None,
    clerk_sk: Annotated[str | None, Parameter()] = None,
) -> int:
    """Seed the config store and provision Clerk keys when none are given."""
    return _run(
        "init",
        site_name=site_name,
        admin_email=admin_email,
        clerk_pk=clerk_pk,
        clerk_sk=clerk_sk,
    )


@app.command(name="convex-setup")
def convex_setup(
    project_name: Annotated[str | None, Parameter()] = None,
    team: Annotated[str | None, Parameter()] = None,
) -> int:
    """Create or link the Convex dev deployment."""
    return _run("convex-setup", project_name=project_name, team=team)


@app.command(name="configure")
def configure(
    clerk_sk: Annotated[str | None, Parameter()] = None,
    admin_email: Annotated[str | None, Parameter()] = None,
) -> int:
    """Create the Clerk webhook and push its secret to Convex."""
    return _run("configure", clerk_sk=clerk_sk, admin_email=admin_email)


@app.command(name="detect-port")
def detect_port() -> int:
    """Report the first free dev server port."""
    return _run("detect-port")


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(app())
