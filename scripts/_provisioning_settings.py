"""Resolve provisioning settings from CLI overrides and the environment.

Every path the pipeline touches is derived here once and threaded into the
stage runner, so stages never consult the working directory themselves.

Examples
--------
>>> settings = resolve_settings(env={"PROVISION_ROOT": "/srv/app"})
>>> settings.env_file
PosixPath('/srv/app/.env.local')
"""

from __future__ import annotations

import logging
import os
from collections import abc as cabc
from dataclasses import dataclass
from pathlib import Path

DEFAULT_TEMPLATE_REPOS = (
    "harperaa/secure-vibe-coding-OS",
    "harperaa/secure-vibe-coding-os",
)

# Timeouts in seconds for external calls.
STATUS_TIMEOUT = 15
ENV_SET_TIMEOUT = 30
HTTP_TIMEOUT = 30.0
REPO_CREATE_TIMEOUT = 60
BACKEND_CLI_TIMEOUT = 120
PRODUCTION_BUILD_TIMEOUT = 300


@dataclass(frozen=True, slots=True)
class InputResolution:
    """Configuration for resolving a setting from multiple sources."""

    env_key: str
    default: str | Path | None = None
    as_path: bool = False


def resolve_input(
    param_value: str | Path | None,
    resolution: InputResolution,
    env: cabc.Mapping[str, str] | None = None,
) -> str | Path | None:
    """Resolve a setting from parameter, environment variable, or default.

    Blank environment values fall through to the default.

    Examples
    --------
    >>> resolve_input(None, InputResolution("MISSING", default="x"), env={})
    'x'
    >>> resolve_input(None, InputResolution("ROOT", as_path=True), env={"ROOT": "/a"})
    PosixPath('/a')
    """
    if param_value is not None:
        return param_value

    env_value = (env if env is not None else os.environ).get(resolution.env_key)
    if env_value is not None and env_value.strip():
        return Path(env_value) if resolution.as_path else env_value

    return resolution.default


@dataclass(frozen=True, slots=True)
class ProvisioningSettings:
    """Resolved locations and tool names for one pipeline run.

    Attributes
    ----------
    root_dir
        Project root; external CLIs run with this as their working directory.
    env_file
        Config store file shared with the backend CLI.
    env_template
        Template copied when the config store does not exist yet.
    summary_path
        Destination of the generated deployment summary.
    convex_config_path
        Backend CLI login state holding the management access token.
    template_repos
        Upstream template repositories; an ``origin`` pointing at one of
        these is treated as "no repository of your own yet".
    npx
        Executable used to launch the backend and hosting CLIs.
    """

    root_dir: Path
    env_file: Path
    env_template: Path
    summary_path: Path
    convex_config_path: Path
    template_repos: tuple[str, ...] = DEFAULT_TEMPLATE_REPOS
    npx: str = "npx"

    def relative(self, path: Path) -> str:
        """Return ``path`` relative to the project root when possible."""
        try:
            return path.relative_to(self.root_dir).as_posix()
        except ValueError:
            return str(path)


def _as_path(value: str | Path | None, fallback: Path) -> Path:
    if value is None:
        return fallback
    return value if isinstance(value, Path) else Path(value)


def resolve_settings(
    root_dir: Path | None = None,
    *,
    env: cabc.Mapping[str, str] | None = None,
) -> ProvisioningSettings:
    """Resolve provisioning settings.

    Parameters
    ----------
    root_dir : Path | None, optional
        Explicit project root; overrides ``PROVISION_ROOT``.
    env : Mapping[str, str] | None, optional
        Environment mapping (defaults to ``os.environ``).

    Returns
    -------
    ProvisioningSettings
        Settings with every path made absolute.
    """
    environ = env if env is not None else os.environ
    root = _as_path(
        resolve_input(root_dir, InputResolution("PROVISION_ROOT", as_path=True), environ),
        Path.cwd(),
    ).expanduser().resolve()

    env_file = _as_path(
        resolve_input(None, InputResolution("PROVISION_ENV_FILE", as_path=True), environ),
        root / ".env.local",
    )
    env_template = _as_path(
        resolve_input(None, InputResolution("PROVISION_ENV_TEMPLATE", as_path=True), environ),
        root / ".env.example",
    )
    summary_path = _as_path(
        resolve_input(None, InputResolution("PROVISION_SUMMARY_PATH", as_path=True), environ),
        root / "docs" / "DEPLOYMENT.md",
    )
    convex_config = _as_path(
        resolve_input(None, InputResolution("CONVEX_CONFIG_PATH", as_path=True), environ),
        Path.home() / ".convex" / "config.json",
    )
    repos_raw = resolve_input(None, InputResolution("PROVISION_TEMPLATE_REPOS"), environ)
    template_repos = (
        tuple(repo.strip() for repo in str(repos_raw).split(",") if repo.strip())
        if repos_raw
        else DEFAULT_TEMPLATE_REPOS
    )
    npx = str(resolve_input(None, InputResolution("PROVISION_NPX", default="npx"), environ))

    def _anchor(path: Path) -> Path:
        path = path.expanduser()
        return path if path.is_absolute() else root / path

    return ProvisioningSettings(
        root_dir=root,
        env_file=_anchor(env_file),
        env_template=_anchor(env_template),
        summary_path=_anchor(summary_path),
        convex_config_path=convex_config.expanduser(),
        template_repos=template_repos,
        npx=npx,
    )


def configure_logging(env: cabc.Mapping[str, str] | None = None) -> None:
    """Send log records to standard error at ``PROVISION_LOG_LEVEL``.

    Standard output is reserved for the JSON result payload.
    """
    level_name = str(
        resolve_input(None, InputResolution("PROVISION_LOG_LEVEL", default="WARNING"), env)
    ).upper()
    level = logging.getLevelName(level_name)
    logging.basicConfig(
        level=level if isinstance(level, int) else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


__all__ = [
    "BACKEND_CLI_TIMEOUT",
    "ENV_SET_TIMEOUT",
    "HTTP_TIMEOUT",
    "InputResolution",
    "PRODUCTION_BUILD_TIMEOUT",
    "ProvisioningSettings",
    "REPO_CREATE_TIMEOUT",
    "STATUS_TIMEOUT",
    "configure_logging",
    "resolve_input",
    "resolve_settings",
]
