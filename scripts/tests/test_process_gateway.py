"""Tests for the external command gateway."""

from __future__ import annotations

import sys
from pathlib import Path

from scripts._process_gateway import (
    INVALID_ARGUMENT_RETURN_CODE,
    NOT_FOUND_RETURN_CODE,
    TIMEOUT_RETURN_CODE,
    CommandContext,
    run_command,
)


def test_run_command_captures_stdout() -> None:
    result = run_command(sys.executable, "-c", "print('hello')")
    assert result.success, "Zero exit should be a success"
    assert result.stdout.strip() == "hello", "stdout should be captured"
    assert result.return_code == 0, "Exit status should be zero"


def test_run_command_reports_non_zero_exit_without_raising() -> None:
    result = run_command(
        sys.executable,
        "-c",
        "import sys; sys.stderr.write('bad'); sys.exit(3)",
    )
    assert not result.success, "Non-zero exit should fail"
    assert result.return_code == 3, "Exit status should be preserved"
    assert result.stderr == "bad", "stderr should be captured"


def test_run_command_feeds_stdin() -> None:
    result = run_command(
        sys.executable,
        "-c",
        "import sys; print(sys.stdin.read().upper())",
        context=CommandContext(stdin="secret-value"),
    )
    assert result.stdout.strip() == "SECRET-VALUE", "stdin should reach the child"


def test_run_command_applies_cwd_and_env(tmp_path: Path) -> None:
    result = run_command(
        sys.executable,
        "-c",
        "import os; print(os.getcwd()); print(os.environ['CONVEX_DEPLOY_KEY'])",
        context=CommandContext(cwd=tmp_path, env={"CONVEX_DEPLOY_KEY": "prod:x|y"}),
    )
    cwd, key = result.stdout.splitlines()
    assert Path(cwd).resolve() == tmp_path.resolve(), "cwd should be applied"
    assert key == "prod:x|y", "env overrides should be applied"


def test_run_command_times_out() -> None:
    result = run_command(
        sys.executable,
        "-c",
        "import time; time.sleep(10)",
        context=CommandContext(timeout=0.5),
    )
    assert not result.success, "Timed out command should fail"
    assert result.return_code == TIMEOUT_RETURN_CODE, "Timeouts map to 124"
    assert "timed out" in result.stderr, "stderr should describe the timeout"


def test_run_command_missing_executable() -> None:
    result = run_command("definitely-not-a-real-tool-xyz", "--version")
    assert not result.success, "Missing tool should fail"
    assert result.return_code == NOT_FOUND_RETURN_CODE, "Missing tools map to 127"


def test_run_command_refuses_control_characters_without_raising(tmp_path: Path) -> None:
    marker = tmp_path / "ran"
    result = run_command(sys.executable, "-c", f"open('{marker.as_posix()}', 'w')\nprint(2)")
    assert not result.success, "Invalid arguments should fail"
    assert result.return_code == INVALID_ARGUMENT_RETURN_CODE, "Invalid arguments map to 2"
    assert "control character" in result.stderr, "stderr should name the problem"
    assert not marker.exists(), "No process may be started"
