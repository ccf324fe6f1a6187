"""Tests for the command line entry point."""

from __future__ import annotations

from pathlib import Path

import pytest

from matrix_botkit import __version__
from matrix_botkit.cli import main


def test_version(capsys: pytest.CaptureFixture[str]) -> None:
    """--version prints the package version."""
    with pytest.raises(SystemExit) as excinfo:
        main(["--version"])
    assert excinfo.value.code == 0
    assert __version__ in capsys.readouterr().out


def test_run_requires_valid_config(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    """An invalid config exits with status 2 before connecting."""
    config = tmp_path / "bot.toml"
    config.write_text('[bot]\nprefix = ""\n')

    with pytest.raises(SystemExit) as excinfo:
        main(["run", "--config", str(config)])

    assert excinfo.value.code == 2
    assert "prefix is not empty" in capsys.readouterr().err


def test_missing_subcommand() -> None:
    """A subcommand is required."""
    with pytest.raises(SystemExit) as excinfo:
        main([])
    assert excinfo.value.code == 2
