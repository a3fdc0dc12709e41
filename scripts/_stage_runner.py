"""Run one named provisioning stage and fold its outcome into a result.

The runner owns the order every stage goes through: required-flag validation
first (no adapter or store access before it passes), then the config store
lock for stages that mutate the store, then the handler itself. Recoverable
failures from any layer come back as a ``success: false``
:class:`StageResult`; only :class:`MissingArgumentsError` escapes.

Examples
--------
>>> context = ProvisioningContext.for_store(resolve_settings(), MemoryConfigStore())
>>> spec = StageSpec("noop", lambda ctx, session: StageResult.ok(session.steps))
>>> StageRunner(context, [spec]).run(ProvisioningSession("noop")).success
True
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable, Iterable, Sequence
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TextIO

import httpx

from scripts._backend_platform import ConvexAdapter
from scripts._config_store import ConfigStore, EnvFileStore, MemoryConfigStore
from scripts._deployment_summary import emit_result, emit_usage_error
from scripts._hosting_platform import VercelAdapter
from scripts._identity_provider import ClerkAdapter
from scripts._process_gateway import run_command
from scripts._provisioning_errors import (
    ConfigStoreError,
    ConfigStoreLockedError,
    MissingArgumentsError,
    ProvisioningError,
    ServiceError,
    StageFailure,
    truncate,
)
from scripts._provisioning_models import CommandResult, ProvisioningSession, StageResult
from scripts._provisioning_settings import ProvisioningSettings, resolve_settings
from scripts._source_host import GitHubAdapter
from scripts._webhook_relay import SvixAdapter

logger = logging.getLogger(__name__)

type StageHandler = Callable[[ProvisioningContext, ProvisioningSession], StageResult]


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _unconfigured(*_args: object) -> Any:
    msg = "No adapter configured for this context"
    raise ProvisioningError(msg)


@dataclass(slots=True)
class ProvisioningContext:
    """Settings, store and adapter factories handed to every stage.

    Adapters are built lazily through the factories so that creating a
    context never contacts a collaborator.

    Attributes
    ----------
    identity_provider
        Secret key -> identity-provider adapter.
    backend
        () -> backend-platform adapter.
    webhook_relay
        Relay base URL -> webhook-relay adapter.
    hosting
        () -> hosting-platform adapter.
    source_host
        () -> source-host adapter.
    run
        Command runner for tool checks outside the adapters.
    clock
        Returns the current time for generated documents.
    """

    settings: ProvisioningSettings
    store: ConfigStore
    identity_provider: Callable[[str], Any] = _unconfigured
    backend: Callable[[], Any] = _unconfigured
    webhook_relay: Callable[[str], Any] = _unconfigured
    hosting: Callable[[], Any] = _unconfigured
    source_host: Callable[[], Any] = _unconfigured
    run: Callable[..., CommandResult] = run_command
    clock: Callable[[], datetime] = field(default=_utc_now)

    @classmethod
    def for_store(cls, settings: ProvisioningSettings, store: ConfigStore) -> ProvisioningContext:
        """Return a context without adapters, for stages that need none."""
        return cls(settings=settings, store=store)


def build_context(settings: ProvisioningSettings) -> ProvisioningContext:
    """Wire the real adapters and the file-backed config store."""
    return ProvisioningContext(
        settings=settings,
        store=EnvFileStore(settings.env_file, settings.env_template),
        identity_provider=lambda secret_key: ClerkAdapter(secret_key),
        backend=lambda: ConvexAdapter(settings),
        webhook_relay=lambda base_url: SvixAdapter(base_url),
        hosting=lambda: VercelAdapter(settings),
        source_host=lambda: GitHubAdapter(settings),
    )


@dataclass(frozen=True, slots=True)
class Verification:
    """Store values re-read after an optimistic external call."""

    values: dict[str, str] | None
    error: ServiceError | None = None
    outcome: object = None

    @property
    def confirmed(self) -> bool:
        return self.values is not None


def verify_after_command(
    store: ConfigStore,
    call: Callable[[], object],
    keys: Sequence[str],
) -> Verification:
    """Run ``call`` then decide success from the store, not the exit status.

    The store is re-read regardless of how ``call`` ended; a classified
    failure from ``call`` is kept for reporting but does not decide the
    outcome on its own.

    Examples
    --------
    >>> store = MemoryConfigStore()
    >>> verify_after_command(store, lambda: store.set_value("K", "v"), ["K"]).values
    {'K': 'v'}
    """
    error: ServiceError | None = None
    outcome: object = None
    try:
        outcome = call()
    except ServiceError as exc:
        logger.info("Command reported failure, re-checking store: %s", exc)
        error = exc

    values: dict[str, str] = {}
    for key in keys:
        value = store.get_configured(key)
        if value is None:
            return Verification(values=None, error=error, outcome=outcome)
        values[key] = value
    return Verification(values=values, error=error, outcome=outcome)


@dataclass(frozen=True, slots=True)
class StageSpec:
    """Declaration of one subcommand.

    Attributes
    ----------
    name
        Subcommand name.
    handler
        Callable implementing the stage.
    required
        Flags that must be present and non-empty.
    locks_store
        Whether the stage takes the config store lock.
    usage
        Usage line reported with ``missing_arguments``.
    """

    name: str
    handler: StageHandler
    required: tuple[str, ...] = ()
    locks_store: bool = True
    usage: str = ""


class StageRunner:
    """Dispatch sessions to their stage handlers."""

    def __init__(self, context: ProvisioningContext, specs: Iterable[StageSpec]) -> None:
        self.context = context
        self._specs = {spec.name: spec for spec in specs}

    def spec(self, name: str) -> StageSpec:
        try:
            return self._specs[name]
        except KeyError as exc:
            msg = f"Unknown stage: {name}"
            raise ProvisioningError(msg) from exc

    def validate(self, session: ProvisioningSession) -> StageSpec:
        """Return the stage spec, raising when required flags are absent."""
        spec = self.spec(session.command)
        missing = [name for name in spec.required if not session.is_set(name)]
        if missing:
            raise MissingArgumentsError(spec.name, missing, spec.usage)
        return spec

    def run(self, session: ProvisioningSession) -> StageResult:
        """Run the session's stage.

        Raises
        ------
        MissingArgumentsError
            When a required flag is absent; nothing else has happened yet.
        """
        spec = self.validate(session)
        guard = self.context.store.locked() if spec.locks_store else nullcontext()
        logger.info("Running stage %s", spec.name)
        try:
            with guard:
                return spec.handler(self.context, session)
        except StageFailure as exc:
            return StageResult.failure(
                exc.tag,
                session.steps,
                hint=exc.hint,
                detail=exc.detail,
                manual_steps=exc.manual_steps,
                fields=exc.fields,
            )
        except ConfigStoreLockedError as exc:
            return StageResult.failure(
                "locked",
                session.steps,
                hint=f"Another run holds {exc.lock_path}; wait for it to finish or remove the lock file",
            )
        except ConfigStoreError as exc:
            return StageResult.failure(
                "config_store_error",
                session.steps,
                hint=f"Check that {self.context.settings.env_file} is readable and writable",
                detail=truncate(str(exc)),
            )
        except ServiceError as exc:
            logger.warning("Stage %s failed: %s", spec.name, exc)
            return StageResult.failure(
                "auth_expired" if exc.is_auth_failure else "api_error",
                session.steps,
                hint=f"{exc}. Re-run this step once the service is reachable.",
                detail=exc.detail or None,
            )
        except MissingArgumentsError:
            raise
        except (ProvisioningError, httpx.HTTPError) as exc:
            logger.warning("Stage %s failed: %s", spec.name, exc)
            return StageResult.failure(
                "api_error",
                session.steps,
                hint="Re-run this step once the service is reachable.",
                detail=truncate(str(exc)),
            )


def run_and_emit(
    runner: StageRunner,
    session: ProvisioningSession,
    *,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
) -> int:
    """Run ``session`` and print its payload; return the process exit code.

    Missing required flags print the usage payload to standard error and
    return ``1``. Every other outcome prints the result to standard output
    and returns ``0``.
    """
    try:
        result = runner.run(session)
    except MissingArgumentsError as exc:
        emit_usage_error(exc, stderr or sys.stderr)
        return 1
    emit_result(result, stdout or sys.stdout)
    return 0


__all__ = [
    "ProvisioningContext",
    "StageRunner",
    "StageSpec",
    "Verification",
    "build_context",
    "run_and_emit",
    "verify_after_command",
]
