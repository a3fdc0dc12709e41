"""Vercel hosting-platform adapter driven through ``npx vercel``."""

from __future__ import annotations

import logging
from collections.abc import Callable

from scripts._output_parsing import extract_version
from scripts._process_gateway import CommandContext, run_command
from scripts._provisioning_errors import HostingPlatformError
from scripts._provisioning_models import CommandResult
from scripts._provisioning_settings import (
    ENV_SET_TIMEOUT,
    PRODUCTION_BUILD_TIMEOUT,
    STATUS_TIMEOUT,
    ProvisioningSettings,
)

logger = logging.getLogger(__name__)

PRODUCTION_TARGET = "production"

type CommandRunner = Callable[..., CommandResult]


class VercelAdapter:
    """Hosting CLI facade; every call runs from the project root."""

    def __init__(self, settings: ProvisioningSettings, run: CommandRunner = run_command) -> None:
        self._settings = settings
        self._run = run

    def _vercel(self, *args: str, timeout: float, stdin: str | None = None) -> CommandResult:
        return self._run(
            self._settings.npx,
            "vercel",
            *args,
            context=CommandContext(cwd=self._settings.root_dir, stdin=stdin, timeout=timeout),
        )

    def version(self) -> str | None:
        """Return the CLI version, or ``None`` when it is unavailable."""
        result = self._vercel("--version", timeout=STATUS_TIMEOUT)
        if not result.success:
            return None
        return extract_version(result.stdout or result.stderr)

    def set_env(self, key: str, value: str, target: str = PRODUCTION_TARGET) -> None:
        """Set ``key`` for ``target``, overwriting any existing value.

        The value travels on standard input so it never appears in the
        process argument list.
        """
        result = self._vercel("env", "add", key, target, "--force", timeout=ENV_SET_TIMEOUT, stdin=value)
        if not result.success:
            msg = f"vercel env add {key} failed"
            raise HostingPlatformError(msg, detail=f"{result.stderr}{result.stdout}")

    def deploy_production(self) -> CommandResult:
        """Run a production build and deploy."""
        result = self._vercel("deploy", "--prod", timeout=PRODUCTION_BUILD_TIMEOUT)
        if not result.success:
            msg = "vercel deploy --prod failed"
            raise HostingPlatformError(msg, detail=result.combined_output())
        return result


__all__ = ["PRODUCTION_TARGET", "VercelAdapter"]
