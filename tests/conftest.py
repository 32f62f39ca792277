from __future__ import annotations

import shutil
import sys
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console
from typer.testing import CliRunner

HAS_GIT = shutil.which("git") is not None


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "requires_git: marks tests that drive a real git binary (skipped without one)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip requires_git tests when git is not on PATH."""
    if HAS_GIT:
        return
    skip_git = pytest.mark.skip(reason="git executable not found on PATH")
    for item in items:
        if "requires_git" in item.keywords:
            item.add_marker(skip_git)


ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def isolate_config(tmp_path: Path, monkeypatch: Any) -> Path:
    """Point settings to a temp path so tests don't read user state."""
    cfg_path = tmp_path / "landconfig.toml"
    monkeypatch.setenv("GITLAND_CONFIG", str(cfg_path))
    for name in (
        "LAND_REMOTE",
        "LAND_TARGET",
        "LAND_LOG_LEVEL",
        "LAND_LOCK_NAME",
        "LAND_STALE_LOCK_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)
    return cfg_path


@pytest.fixture(autouse=True)
def capture_console(monkeypatch: Any) -> Console:
    """Use an in-memory Rich console during tests."""
    test_console = Console(record=True, width=200)
    import gitland.core.console as core_console
    import gitland.main as land_main

    monkeypatch.setattr(core_console, "console", test_console)
    monkeypatch.setattr(land_main, "console", test_console)
    return test_console
