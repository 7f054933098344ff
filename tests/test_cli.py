"""Tests for the command-line interface."""

from pathlib import Path

import pytest
from typer.testing import CliRunner

from tunecache.cli import app as cli

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_dirs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setattr(cli, "CONFIG_FILE", tmp_path / "config" / "config.ini")
    monkeypatch.setattr(cli, "CACHE_DIR", tmp_path / "cache")
    return tmp_path


class TestCli:
    def test_version(self) -> None:
        result = runner.invoke(cli.app, ["--version"])
        assert result.exit_code == 0
        assert "tunecache" in result.output

    def test_validate_without_config(self) -> None:
        result = runner.invoke(cli.app, ["validate"])
        assert result.exit_code == 1
        assert "invalid" in result.output

    def test_init_then_validate(self, isolated_dirs: Path) -> None:
        result = runner.invoke(cli.app, ["init", "--cache-size", "64", "--force"])
        assert result.exit_code == 0
        assert (isolated_dirs / "config" / "config.ini").is_file()

        result = runner.invoke(cli.app, ["validate"])
        assert result.exit_code == 0
        assert "Validated Settings" in result.output
        assert "64.0 MB" in result.output

    def test_status_and_clear_on_empty_cache(self) -> None:
        runner.invoke(cli.app, ["init", "--force"])

        result = runner.invoke(cli.app, ["status"])
        assert result.exit_code == 0
        assert "No songs are fully cached yet" in result.output

        result = runner.invoke(cli.app, ["clear", "--force"])
        assert result.exit_code == 0
        assert "0 songs removed" in result.output
