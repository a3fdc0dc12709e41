"""Convex backend-platform adapter.

Wraps the ``npx convex`` CLI (login state, project creation, environment
variables, function deploys) and the management API used to issue production
deploy keys.

Examples
--------
>>> production_urls_from_deploy_key("prod:brave-fox-123|eyJ2...")
('https://brave-fox-123.convex.cloud', 'https://brave-fox-123.convex.site')
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

import httpx

from scripts._process_gateway import CommandContext, run_command
from scripts._provisioning_errors import BackendPlatformError
from scripts._provisioning_http import build_client, request_json
from scripts._provisioning_models import CommandResult
from scripts._provisioning_settings import (
    BACKEND_CLI_TIMEOUT,
    ENV_SET_TIMEOUT,
    STATUS_TIMEOUT,
    ProvisioningSettings,
)

logger = logging.getLogger(__name__)

CONVEX_API_URL = "https://api.convex.dev/api"
CONVEX_CLIENT_ID = "deploy-script"
DEPLOY_KEY_NAME = "Production - auto-generated"
LOGGED_IN_MARKER = "Logged in"

type CommandRunner = Callable[..., CommandResult]


def is_valid_deploy_key(deploy_key: str) -> bool:
    """Return ``True`` for ``prod:<name>|<secret>`` shaped keys.

    Examples
    --------
    >>> is_valid_deploy_key("prod:brave-fox-123|secret")
    True
    >>> is_valid_deploy_key("dev:brave-fox-123")
    False
    """
    return deploy_key.startswith("prod:") and "|" in deploy_key


def production_urls_from_deploy_key(deploy_key: str) -> tuple[str, str]:
    """Return the cloud and HTTP-actions URLs named by a deploy key."""
    deployment = deploy_key.split("|", 1)[0].removeprefix("prod:")
    return f"https://{deployment}.convex.cloud", f"https://{deployment}.convex.site"


def http_actions_url(cloud_url: str) -> str:
    """Map a ``.convex.cloud`` URL to its ``.convex.site`` HTTP-actions URL.

    Examples
    --------
    >>> http_actions_url("https://brave-fox-123.convex.cloud/")
    'https://brave-fox-123.convex.site'
    """
    return cloud_url.rstrip("/").replace(".convex.cloud", ".convex.site")


def dev_deployment_name(deployment: str) -> str:
    """Strip the ``dev:`` prefix the CLI writes into the config store."""
    return deployment.strip().removeprefix("dev:")


class ConvexAdapter:
    """Convex CLI and management API facade.

    Parameters
    ----------
    settings
        Provisioning settings; the CLI runs from ``settings.root_dir``.
    run
        Command runner, :func:`run_command` unless a test injects a fake.
    client
        Optional ``httpx.Client`` for the management API.
    """

    def __init__(
        self,
        settings: ProvisioningSettings,
        run: CommandRunner = run_command,
        client: httpx.Client | None = None,
    ) -> None:
        self._settings = settings
        self._run = run
        self._client = client

    def _convex(
        self,
        *args: str,
        timeout: float,
        deploy_key: str | None = None,
    ) -> CommandResult:
        env = {"CONVEX_DEPLOY_KEY": deploy_key} if deploy_key else None
        return self._run(
            self._settings.npx,
            "convex",
            *args,
            context=CommandContext(cwd=self._settings.root_dir, env=env, timeout=timeout),
        )

    # CLI operations

    def login_status(self) -> str:
        """Return merged ``login status`` output; never raises."""
        return self._convex("login", "status", timeout=STATUS_TIMEOUT).combined_output()

    def is_logged_in(self, status_output: str) -> bool:
        return LOGGED_IN_MARKER in status_output

    def sync_dev(self) -> CommandResult:
        """Push functions to the already configured dev deployment."""
        result = self._convex("dev", "--once", timeout=BACKEND_CLI_TIMEOUT)
        if not result.success:
            msg = "convex dev --once failed"
            raise BackendPlatformError(msg, detail=result.combined_output())
        return result

    def create_dev_project(self, team: str, project: str) -> CommandResult:
        """Create a project non-interactively and write its deployment info."""
        result = self._convex(
            "dev",
            "--once",
            "--configure=new",
            f"--team={team}",
            f"--project={project}",
            "--dev-deployment=cloud",
            timeout=BACKEND_CLI_TIMEOUT,
        )
        if not result.success:
            msg = f"convex project creation exited with status {result.return_code}"
            raise BackendPlatformError(msg, detail=result.combined_output())
        return result

    def set_env(self, key: str, value: str, deploy_key: str | None = None) -> None:
        result = self._convex("env", "set", key, value, timeout=ENV_SET_TIMEOUT, deploy_key=deploy_key)
        if not result.success:
            msg = f"convex env set {key} failed"
            raise BackendPlatformError(msg, detail=result.combined_output())

    def deploy(self, deploy_key: str) -> CommandResult:
        result = self._convex("deploy", timeout=BACKEND_CLI_TIMEOUT, deploy_key=deploy_key)
        if not result.success:
            msg = "convex deploy failed"
            raise BackendPlatformError(msg, detail=result.combined_output())
        return result

    # Management API

    def read_access_token(self) -> str | None:
        """Return the CLI access token, or ``None`` when not logged in.

        Raises
        ------
        BackendPlatformError
            When the login state file exists but is not valid JSON.
        """
        path = self._settings.convex_config_path
        if not path.exists():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            msg = f"Could not parse {path}"
            raise BackendPlatformError(msg, detail=str(exc)) from exc
        token = payload.get("accessToken") if isinstance(payload, dict) else None
        return str(token) if token else None

    def _api(self, method: str, path: str, token: str, **kwargs: Any) -> Any:
        client = self._client or build_client(CONVEX_API_URL)
        headers = {
            "Authorization": f"Bearer {token}",
            "Convex-Client": CONVEX_CLIENT_ID,
            "Content-Type": "application/json",
        }
        try:
            return request_json(
                client,
                method,
                path,
                error_cls=BackendPlatformError,
                service="Convex",
                headers=headers,
                **kwargs,
            )
        finally:
            if self._client is None:
                client.close()

    def get_deployment(self, name: str, token: str) -> dict[str, Any]:
        payload = self._api("GET", f"/deployments/{name}", token)
        return payload if isinstance(payload, dict) else {}

    def list_project_deployments(self, project_id: str, token: str) -> list[dict[str, Any]]:
        payload = self._api("GET", f"/projects/{project_id}/deployments", token)
        if not isinstance(payload, list):
            return []
        return [item for item in payload if isinstance(item, dict)]

    def create_deploy_key(self, deployment: str, token: str) -> str:
        payload = self._api(
            "POST",
            f"/deployments/{deployment}/create_deploy_key",
            token,
            json={"name": DEPLOY_KEY_NAME},
        )
        key = None
        if isinstance(payload, dict):
            key = payload.get("key") or payload.get("deployKey")
        if not key:
            msg = "No deploy key in API response"
            raise BackendPlatformError(msg)
        return str(key)


__all__ = [
    "CONVEX_API_URL",
    "ConvexAdapter",
    "dev_deployment_name",
    "http_actions_url",
    "is_valid_deploy_key",
    "production_urls_from_deploy_key",
]
