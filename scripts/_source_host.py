"""GitHub source-host adapter driven through ``gh`` and ``git``.

Examples
--------
>>> repo_url_from_remote("git@github.com:acme/shop.git")
'https://github.com/acme/shop'
>>> is_template_remote("https://github.com/Upstream/Template.git", ("upstream/template",))
True
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from scripts._output_parsing import extract_version
from scripts._process_gateway import CommandContext, run_command
from scripts._provisioning_errors import SourceHostError
from scripts._provisioning_models import CommandResult
from scripts._provisioning_settings import (
    REPO_CREATE_TIMEOUT,
    STATUS_TIMEOUT,
    ProvisioningSettings,
)

logger = logging.getLogger(__name__)

SOURCE_HOST_DETAIL_LIMIT = 500

type CommandRunner = Callable[..., CommandResult]


def is_template_remote(remote_url: str, template_repos: Iterable[str]) -> bool:
    """Return ``True`` when ``remote_url`` points at an upstream template."""
    lowered = remote_url.lower()
    return any(repo.lower() in lowered for repo in template_repos)


def repo_url_from_remote(remote_url: str) -> str:
    """Turn an SSH or HTTPS remote into the repository web URL."""
    url = remote_url.strip().removesuffix(".git")
    if url.startswith("git@github.com:"):
        url = "https://github.com/" + url.removeprefix("git@github.com:")
    return url


class GitHubAdapter:
    """Source-host facade over the ``gh`` and ``git`` CLIs."""

    def __init__(self, settings: ProvisioningSettings, run: CommandRunner = run_command) -> None:
        self._settings = settings
        self._run = run

    def _exec(self, command: str, *args: str, timeout: float = STATUS_TIMEOUT) -> CommandResult:
        return self._run(
            command,
            *args,
            context=CommandContext(cwd=self._settings.root_dir, timeout=timeout),
        )

    def version(self, tool: str = "gh") -> str | None:
        result = self._exec(tool, "--version")
        return extract_version(result.stdout) if result.success else None

    def is_authenticated(self) -> bool:
        return self._exec("gh", "auth", "status").success

    def remote_url(self, name: str = "origin") -> str | None:
        result = self._exec("git", "remote", "get-url", name)
        url = result.stdout.strip()
        return url if result.success and url else None

    def rename_remote(self, old: str, new: str) -> None:
        result = self._exec("git", "remote", "rename", old, new)
        if not result.success:
            msg = f"git remote rename {old} {new} failed"
            raise SourceHostError(msg, detail=result.combined_output()[:SOURCE_HOST_DETAIL_LIMIT])

    def remove_remote(self, name: str) -> None:
        result = self._exec("git", "remote", "remove", name)
        if not result.success:
            msg = f"git remote remove {name} failed"
            raise SourceHostError(msg, detail=result.combined_output()[:SOURCE_HOST_DETAIL_LIMIT])

    def create_private_repo(self, name: str) -> None:
        """Create a private repository from the working tree and push it.

        Raises
        ------
        SourceHostError
            With the CLI output as detail; callers inspect it for
            ``already exists``.
        """
        result = self._exec(
            "gh",
            "repo",
            "create",
            name,
            "--private",
            "--source=.",
            "--remote=origin",
            "--push",
            timeout=REPO_CREATE_TIMEOUT,
        )
        if not result.success:
            output = (result.stderr or result.stdout or "").strip()
            msg = f"gh repo create {name} failed"
            raise SourceHostError(msg, detail=output[:SOURCE_HOST_DETAIL_LIMIT])


__all__ = [
    "GitHubAdapter",
    "SOURCE_HOST_DETAIL_LIMIT",
    "is_template_remote",
    "repo_url_from_remote",
]
