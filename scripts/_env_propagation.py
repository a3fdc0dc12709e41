"""Best-effort propagation of values into remote environment stores."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from scripts._provisioning_errors import ServiceError, truncate
from scripts._provisioning_models import StepLog

logger = logging.getLogger(__name__)

PROPAGATION_DETAIL_LIMIT = 200


@dataclass(slots=True)
class PropagationOutcome:
    """Keys set and keys that failed during one propagation batch."""

    vars_set: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


def propagate_env(
    steps: StepLog,
    setter: Callable[[str, str], None],
    variables: Mapping[str, str],
    *,
    label: str = "env var",
) -> PropagationOutcome:
    """Set each variable in order, continuing past individual failures.

    Parameters
    ----------
    steps
        Step log receiving one entry per key.
    setter
        Callable that sets one key and raises :class:`ServiceError` on
        failure.
    variables
        Ordered mapping of key to value.
    label
        Wording for the success step, e.g. ``"Vercel env var"``.

    Examples
    --------
    >>> log = StepLog()
    >>> propagate_env(log, lambda key, value: None, {"A": "1"}, label="test var").vars_set
    ['A']
    >>> list(log)
    ['Set test var: A']
    """
    outcome = PropagationOutcome()
    for key, value in variables.items():
        try:
            setter(key, value)
        except ServiceError as exc:
            detail = truncate(exc.detail or str(exc), PROPAGATION_DETAIL_LIMIT)
            logger.warning("Failed to set %s", key)
            steps.append(f"Failed to set {key}: {detail}")
            outcome.failed.append(key)
            continue
        outcome.vars_set.append(key)
        steps.append(f"Set {label}: {key}")
    return outcome


__all__ = ["PROPAGATION_DETAIL_LIMIT", "PropagationOutcome", "propagate_env"]
