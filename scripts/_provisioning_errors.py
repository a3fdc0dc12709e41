"""Exception hierarchy for the provisioning pipeline.

Stage handlers raise :class:`StageFailure` for recoverable outcomes that the
caller is expected to branch on; adapters raise their own classified error so
the stage runner can downgrade anything unhandled into a structured failure.

Examples
--------
>>> StageFailure("no_dev_deployment", hint="Run: npx convex dev first").tag
'no_dev_deployment'
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

DETAIL_LIMIT = 1000


def truncate(text: str, limit: int = DETAIL_LIMIT) -> str:
    """Trim ``text`` to at most ``limit`` characters.

    Examples
    --------
    >>> truncate("abcdef", 3)
    'abc'
    """
    return text.strip()[:limit]


class ProvisioningError(Exception):
    """Base error for provisioning helpers."""


class MissingArgumentsError(ProvisioningError):
    """Raised before any side effect when required flags are absent.

    Parameters
    ----------
    command
        Name of the subcommand that was invoked.
    missing
        Flag names (without the ``--`` prefix) that were not supplied.
    usage
        Usage line for the subcommand.
    """

    tag = "missing_arguments"

    def __init__(self, command: str, missing: Sequence[str], usage: str = "") -> None:
        self.command = command
        self.missing = list(missing)
        self.usage = usage
        flags = ", ".join(f"--{name}" for name in self.missing)
        super().__init__(f"Missing required arguments: {flags}")


class ConfigStoreError(ProvisioningError):
    """Raised when the local config store cannot be read or written."""


class ConfigStoreLockedError(ConfigStoreError):
    """Raised when another run holds the config store lock."""

    def __init__(self, lock_path: object) -> None:
        self.lock_path = lock_path
        super().__init__(f"Config store is locked by another run: {lock_path}")


class ServiceError(ProvisioningError):
    """Classified failure reported by an external service adapter.

    Parameters
    ----------
    message
        Human-readable summary of the failure.
    status_code
        HTTP status code when the failure came from an API response.
    detail
        Raw response body or command output, truncated.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        detail: str = "",
    ) -> None:
        self.status_code = status_code
        self.detail = truncate(detail)
        super().__init__(message)

    @property
    def is_auth_failure(self) -> bool:
        """Return ``True`` for 401/403 responses."""
        return self.status_code in (401, 403)


class IdentityProviderError(ServiceError):
    """Raised when the identity provider API rejects a request."""


class BackendPlatformError(ServiceError):
    """Raised when the backend platform CLI or API fails."""


class WebhookRelayError(ServiceError):
    """Raised when the webhook relay API fails."""


class HostingPlatformError(ServiceError):
    """Raised when the hosting platform CLI fails."""


class SourceHostError(ServiceError):
    """Raised when the source host CLI or git fails."""


class StageFailure(ProvisioningError):
    """Recoverable stage outcome reported as ``success: false``.

    Parameters
    ----------
    tag
        Machine-readable error classification (``no_prod_deployment``...).
    hint
        Concrete next action for the operator.
    detail
        Truncated command output or API response.
    manual_steps
        Ordered fallback instructions replicating the automated path.
    fields
        Extra payload fields merged into the result (``needsLogin``...).
    """

    def __init__(
        self,
        tag: str,
        *,
        hint: str | None = None,
        detail: str | None = None,
        manual_steps: Iterable[str] = (),
        fields: dict[str, object] | None = None,
    ) -> None:
        self.tag = tag
        self.hint = hint
        self.detail = truncate(detail) if detail else None
        self.manual_steps = list(manual_steps)
        self.fields = dict(fields or {})
        super().__init__(tag if hint is None else f"{tag}: {hint}")


__all__ = [
    "BackendPlatformError",
    "ConfigStoreError",
    "ConfigStoreLockedError",
    "DETAIL_LIMIT",
    "HostingPlatformError",
    "IdentityProviderError",
    "MissingArgumentsError",
    "ProvisioningError",
    "ServiceError",
    "SourceHostError",
    "StageFailure",
    "WebhookRelayError",
    "truncate",
]
