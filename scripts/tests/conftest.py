from __future__ import annotations

import sys
from pathlib import Path

import pytest


def pytest_configure() -> None:
    project_root = Path(__file__).resolve().parents[2]
    if str(project_root) not in sys.path:
        sys.path.insert(0, str(project_root))


@pytest.fixture
def settings(tmp_path: Path):
    from scripts._provisioning_settings import resolve_settings

    return resolve_settings(
        tmp_path,
        env={"CONVEX_CONFIG_PATH": str(tmp_path / "convex" / "config.json")},
    )


@pytest.fixture
def fakes():
    from scripts.tests._fakes import Collaborators

    return Collaborators()
