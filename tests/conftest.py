from __future__ import annotations

import os
import stat
import sys
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console
from typer.testing import CliRunner

# Detect CI environment (GitHub Actions sets CI=true)
IS_CI = os.environ.get("CI", "").lower() == "true"


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "local_only: marks tests that require local environment (skip in CI)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip local_only tests when running in CI."""
    if not IS_CI:
        return
    skip_ci = pytest.mark.skip(reason="Skipped in CI (requires local environment)")
    for item in items:
        if "local_only" in item.keywords:
            item.add_marker(skip_ci)


ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


FAKE_CLI_NAME = "fakecli"

# A small stand-in for a real multi-command CLI. It prints help for the
# top level and for ``pr``, lists PRs, prints nothing for ``noop``, echoes
# FAKECLI_TOKEN, and touches $FAKECLI_MARKER when ``pr list`` runs.
FAKE_CLI_SCRIPT = """#!/bin/sh
if [ -n "$FAKECLI_MARKER" ] && [ "$1" = "pr" ] && [ "$2" = "list" ]; then
  touch "$FAKECLI_MARKER"
fi
case "$1 $2" in
  "--help "|"help "|"-h ")
    echo "fakecli manages fake things."
    echo ""
    echo "Usage:"
    echo "  fakecli <command> [flags]"
    echo ""
    echo "Available Commands:"
    echo "  issue       Manage issues"
    echo "  pr          Manage pull requests"
    echo "  repo, r     Manage repositories"
    echo ""
    echo "Flags:"
    echo "  -h, --help   help for fakecli"
    ;;
  "pr --help")
    echo "Work with pull requests."
    echo ""
    echo "Usage: fakecli pr <command>"
    echo ""
    echo "Available Commands:"
    echo "  list        List pull requests"
    echo "  view        View a pull request"
    ;;
  "pr list")
    echo "#1  Fix the widget"
    echo "#2  Add more widgets"
    ;;
  "noop ")
    ;;
  "env ")
    echo "token=$FAKECLI_TOKEN"
    ;;
  *)
    echo "unknown command: $*" >&2
    exit 1
    ;;
esac
"""


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def isolate_config(tmp_path: Path, monkeypatch: Any) -> Path:
    """Point config, tool definitions and cache at a temp dir."""
    cfg_path = tmp_path / "config.toml"
    monkeypatch.setenv("TOOLGATE_CONFIG", str(cfg_path))
    monkeypatch.setenv("TOOLGATE_PATHS__TOOLS_FILE", str(tmp_path / "tools.toml"))
    monkeypatch.setenv("TOOLGATE_PATHS__CACHE_DIR", str(tmp_path / "cache"))
    # Tests never talk to a real model.
    monkeypatch.setenv("TOOLGATE_ORACLE__ENABLED", "false")
    return cfg_path


@pytest.fixture(autouse=True)
def capture_console(monkeypatch: Any) -> Console:
    """Use an in-memory Rich console during tests."""
    test_console = Console(record=True)
    import toolgate.core.console as core_console
    import toolgate.main as tg_main

    monkeypatch.setattr(core_console, "console", test_console)
    monkeypatch.setattr(tg_main, "console", test_console)
    return test_console


@pytest.fixture
def fake_cli(tmp_path: Path, monkeypatch: Any) -> str:
    """Install ``fakecli`` on PATH and return its name."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    script = bin_dir / FAKE_CLI_NAME
    script.write_text(FAKE_CLI_SCRIPT, encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    return FAKE_CLI_NAME


@pytest.fixture
def fake_tool(fake_cli: str) -> Any:
    from toolgate.catalog.models import ExternalTool

    return ExternalTool.model_validate(
        {
            "name": "Fake CLI",
            "description": "Manage fake things",
            "when_to_use": "Questions about fake pull requests",
            "access": {"type": "shell", "command": fake_cli},
        }
    )
