"""Run external command-line tools without raising on failure.

Adapters for CLI-backed collaborators (backend platform, hosting platform,
source host) funnel every invocation through :func:`run_command`, which
captures stdout, stderr and the exit code and folds timeouts and missing
executables into an ordinary failed :class:`CommandResult`.

Examples
--------
>>> run_command("printf", "hello").stdout
'hello'
>>> run_command("definitely-not-installed").return_code
127
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from plumbum import local
from plumbum.commands.processes import CommandNotFound, ProcessTimedOut

from scripts._provisioning_models import CommandResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
TIMEOUT_RETURN_CODE = 124
NOT_FOUND_RETURN_CODE = 127
INVALID_ARGUMENT_RETURN_CODE = 2


@dataclass(slots=True)
class CommandContext:
    """Execution options for :func:`run_command`."""

    cwd: Path | None = None
    env: dict[str, str] | None = None
    stdin: str | None = None
    timeout: float | None = DEFAULT_TIMEOUT


def _validate_command_args(args: list[str]) -> None:
    """Reject non-string arguments and embedded control characters."""
    for arg in args:
        if not isinstance(arg, str):
            msg = f"Command argument must be a string, got {type(arg).__name__}"
            raise TypeError(msg)
        if any(char in arg for char in ("\x00", "\n", "\r")):
            msg = "Command argument contains an invalid control character"
            raise ValueError(msg)


def _describe(command: str, args: tuple[str, ...]) -> str:
    # Trailing arguments may carry secret values.
    return " ".join([command, *args[:2]])


def run_command(
    command: str,
    *args: str,
    context: CommandContext | None = None,
) -> CommandResult:
    """Execute an external command and return its captured result.

    Parameters
    ----------
    command : str
        Executable name resolved on ``PATH``.
    *args : str
        Arguments passed without a shell.
    context : CommandContext | None, optional
        Working directory, environment overrides, stdin and timeout.

    Returns
    -------
    CommandResult
        Never raises for a non-zero exit; timeouts yield return code ``124``,
        a missing executable yields ``127`` and an argument carrying a control
        character yields ``2`` without starting a process.
    """
    ctx = context or CommandContext()
    description = _describe(command, args)
    try:
        _validate_command_args([command, *args])
    except ValueError as exc:
        logger.warning("Refusing to run %s: %s", description, exc)
        return CommandResult(
            success=False,
            stdout="",
            stderr=str(exc),
            return_code=INVALID_ARGUMENT_RETURN_CODE,
        )
    env = {**os.environ, **ctx.env} if ctx.env else None

    try:
        bound = local[command][list(args)]
    except CommandNotFound:
        logger.warning("Command not found: %s", command)
        return CommandResult(
            success=False,
            stdout="",
            stderr=f"{command}: command not found",
            return_code=NOT_FOUND_RETURN_CODE,
        )

    if ctx.stdin is not None:
        bound = bound << ctx.stdin

    logger.debug("Running %s (timeout=%ss)", description, ctx.timeout)
    try:
        return_code, stdout, stderr = bound.run(
            retcode=None,
            timeout=ctx.timeout,
            cwd=str(ctx.cwd) if ctx.cwd is not None else None,
            env=env,
        )
    except ProcessTimedOut:
        logger.warning("%s timed out after %ss", description, ctx.timeout)
        return CommandResult(
            success=False,
            stdout="",
            stderr=f"{description} timed out after {ctx.timeout}s",
            return_code=TIMEOUT_RETURN_CODE,
        )
    except OSError as exc:
        logger.warning("%s could not be started: %s", description, exc)
        return CommandResult(
            success=False,
            stdout="",
            stderr=str(exc),
            return_code=NOT_FOUND_RETURN_CODE,
        )

    if return_code != 0:
        logger.info("%s exited with status %s", description, return_code)
    return CommandResult(
        success=return_code == 0,
        stdout=stdout or "",
        stderr=stderr or "",
        return_code=int(return_code),
    )


__all__ = [
    "CommandContext",
    "INVALID_ARGUMENT_RETURN_CODE",
    "NOT_FOUND_RETURN_CODE",
    "TIMEOUT_RETURN_CODE",
    "run_command",
]
