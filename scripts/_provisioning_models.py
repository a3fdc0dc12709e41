"""Data models shared by the provisioning stages and adapters.

These models keep the contract between the CLI, the stage runner and the
adapters explicit. :class:`StageResult` is the payload shape printed for every
subcommand and is consumed by external automation, so its serialised keys are
stable.

Examples
--------
>>> steps = StepLog()
>>> steps.append("Ensured .env.local exists")
>>> StageResult.ok(steps, {"port": 3000}).to_payload()["port"]
3000
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field


class StepLog:
    """Append-only, ordered log of human-readable step descriptions.

    Examples
    --------
    >>> log = StepLog(["first"])
    >>> log.append("second")
    >>> list(log)
    ['first', 'second']
    """

    __slots__ = ("_entries",)

    def __init__(self, entries: Iterable[str] = ()) -> None:
        self._entries: list[str] = list(entries)

    def append(self, entry: str) -> None:
        self._entries.append(entry)

    def extend(self, entries: Iterable[str]) -> None:
        self._entries.extend(entries)

    def as_list(self) -> list[str]:
        return list(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"StepLog({self._entries!r})"


def _flag_name(name: str) -> str:
    return name.strip().lstrip("-").replace("_", "-")


def _flag_value(value: object) -> str | None:
    if value is None or value is False:
        return None
    if value is True:
        return "true"
    return str(value)


@dataclass(slots=True)
class ProvisioningSession:
    """Context of one CLI invocation.

    Attributes
    ----------
    command
        Selected subcommand name.
    flags
        Mapping of kebab-case flag name to string value. Flags given without
        a value carry the literal ``"true"``.
    steps
        Step log accumulated while the stage runs.

    Examples
    --------
    >>> session = ProvisioningSession.from_parameters(
    ...     "validate-keys", clerk_pk="pk_test_x", require_prod=True, deploy_key=None
    ... )
    >>> session.flags
    {'clerk-pk': 'pk_test_x', 'require-prod': 'true'}
    """

    command: str
    flags: dict[str, str] = field(default_factory=dict)
    steps: StepLog = field(default_factory=StepLog)

    @classmethod
    def from_parameters(cls, command: str, **parameters: object) -> ProvisioningSession:
        """Build a session from CLI parameters, dropping unset ones."""
        flags: dict[str, str] = {}
        for name, raw in parameters.items():
            value = _flag_value(raw)
            if value is not None:
                flags[_flag_name(name)] = value
        return cls(command=command, flags=flags)

    def flag(self, name: str, default: str | None = None) -> str | None:
        """Return the flag value, treating an empty string as absent."""
        value = self.flags.get(name)
        if value is None or not value.strip():
            return default
        return value

    def is_set(self, name: str) -> bool:
        return self.flag(name) is not None

    def is_true(self, name: str) -> bool:
        value = self.flag(name)
        return value is not None and value.strip().lower() in ("true", "1", "yes")

    def list_flag(self, name: str) -> list[str]:
        """Split a comma-separated flag into its non-empty items."""
        value = self.flag(name) or ""
        return [item.strip() for item in value.split(",") if item.strip()]


@dataclass(slots=True)
class StageResult:
    """Uniform outcome of a stage.

    The success variant carries stage-specific ``fields``; the failure variant
    additionally carries ``error`` and optionally ``hint``, ``detail`` and
    ``manual_steps``.
    """

    success: bool
    steps: list[str] = field(default_factory=list)
    fields: dict[str, object] = field(default_factory=dict)
    error: str | None = None
    hint: str | None = None
    detail: str | None = None
    manual_steps: list[str] = field(default_factory=list)

    @classmethod
    def ok(
        cls,
        steps: Iterable[str],
        fields: Mapping[str, object] | None = None,
        *,
        success: bool = True,
        manual_steps: Iterable[str] = (),
    ) -> StageResult:
        return cls(
            success=success,
            steps=list(steps),
            fields=dict(fields or {}),
            manual_steps=list(manual_steps),
        )

    @classmethod
    def failure(
        cls,
        tag: str,
        steps: Iterable[str] = (),
        *,
        hint: str | None = None,
        detail: str | None = None,
        manual_steps: Iterable[str] = (),
        fields: Mapping[str, object] | None = None,
    ) -> StageResult:
        return cls(
            success=False,
            steps=list(steps),
            fields=dict(fields or {}),
            error=tag,
            hint=hint,
            detail=detail,
            manual_steps=list(manual_steps),
        )

    def to_payload(self) -> dict[str, object]:
        """Return the JSON-serialisable payload.

        Examples
        --------
        >>> StageResult.failure("deploy_failed", hint="retry").to_payload()
        {'success': False, 'steps': [], 'error': 'deploy_failed', 'hint': 'retry'}
        """
        payload: dict[str, object] = {"success": self.success, "steps": list(self.steps)}
        payload.update(self.fields)
        if self.error is not None:
            payload["error"] = self.error
        if self.detail:
            payload["detail"] = self.detail
        if self.hint is not None:
            payload["hint"] = self.hint
        if self.manual_steps or "manualSteps" in self.fields:
            payload["manualSteps"] = list(self.manual_steps)
        return payload


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Result of an external command execution.

    Attributes
    ----------
    success
        Whether the command exited with status code ``0``.
    stdout
        Captured standard output.
    stderr
        Captured standard error.
    return_code
        Process exit status; ``124`` for timeouts, ``127`` when the
        executable is missing.

    Examples
    --------
    >>> CommandResult(True, "a\\nb\\n\\nc\\n", "", 0).tail(2)
    'b | c'
    """

    success: bool
    stdout: str
    stderr: str
    return_code: int

    def combined_output(self) -> str:
        return f"{self.stdout}{self.stderr}".strip()

    def lines(self) -> list[str]:
        return [line for line in self.stdout.splitlines() if line.strip()]

    def tail(self, count: int = 3) -> str:
        return " | ".join(self.lines()[-count:])


@dataclass(frozen=True, slots=True)
class Team:
    """Backend platform team parsed from CLI output."""

    name: str
    slug: str

    def to_mapping(self) -> dict[str, str]:
        return {"name": self.name, "slug": self.slug}


@dataclass(frozen=True, slots=True)
class RelayTokenBundle:
    """One-time token bundle embedded in the relay dashboard URL."""

    app_id: str
    one_time_token: str = field(repr=False)
    region: str | None = None


@dataclass(frozen=True, slots=True)
class AccountlessApplication:
    """Temporary identity-provider application awaiting a claim."""

    publishable_key: str
    secret_key: str = field(repr=False)
    claim_url: str | None = None
    api_keys_url: str | None = None


@dataclass(frozen=True, slots=True)
class RelayEndpoint:
    """Webhook relay endpoint, identified by its URL."""

    endpoint_id: str
    url: str


@dataclass(frozen=True, slots=True)
class DeploymentFacts:
    """Facts collected by earlier stages and rendered into the summary."""

    app_url: str = "(not yet deployed)"
    repo_url: str = "(not configured)"
    convex_prod_url: str = "(not configured)"
    convex_site_url: str = "(not configured)"
    frontend_api_url: str = "(not configured)"
    webhook_url: str = "(not configured)"
    site_name: str = "(not set)"
    admin_email: str = "(not set)"
    google_oauth: str = "skipped"
    completed_steps: tuple[str, ...] = ()
    skipped_steps: tuple[str, ...] = ()
    convex_vars: tuple[str, ...] = ()
    vercel_vars: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ToolReport:
    """Availability of the external CLIs the pipeline drives."""

    os: str
    tools: dict[str, object]
    installed: list[str]
    missing: list[str]
    git_remote: str | None
    is_upstream_template: bool

    @property
    def needs_repo(self) -> bool:
        return self.is_upstream_template or not self.git_remote

    def to_mapping(self) -> dict[str, object]:
        return {
            "os": self.os,
            "tools": dict(self.tools),
            "installed": list(self.installed),
            "missing": list(self.missing),
            "gitRemote": self.git_remote,
            "isUpstreamTemplate": self.is_upstream_template,
            "needsRepo": self.needs_repo,
        }


__all__ = [
    "AccountlessApplication",
    "CommandResult",
    "DeploymentFacts",
    "ProvisioningSession",
    "RelayEndpoint",
    "RelayTokenBundle",
    "StageResult",
    "StepLog",
    "Team",
    "ToolReport",
]
