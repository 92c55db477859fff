"""Tests for the command-line entry point."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError

from dex_buy_tracker.__main__ import build_parser, cmd_config, cmd_run, main


@pytest.fixture
def settings() -> MagicMock:
    settings = MagicMock()
    settings.dry_run = False
    settings.redacted_summary.return_value = {"log_level": "INFO", "chains": {}}
    return settings


class TestParser:
    """Tests for argument parsing."""

    def test_run_dry_run_flag(self) -> None:
        args = build_parser().parse_args(["run", "--dry-run"])
        assert args.command == "run"
        assert args.dry_run is True
        assert args.func is cmd_run

    def test_command_is_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestCommands:
    """Tests for the CLI commands."""

    def test_config_prints_redacted_summary(self, settings: MagicMock, capsys: pytest.CaptureFixture[str]) -> None:
        assert cmd_config(build_parser().parse_args(["config"]), settings) == 0
        assert json.loads(capsys.readouterr().out) == {"log_level": "INFO", "chains": {}}

    def test_run_rejects_invalid_configuration(self, settings: MagicMock) -> None:
        settings.validate_requirements.side_effect = ValueError("no chains")
        settings.chains.configured.return_value = {}

        with patch("dex_buy_tracker.__main__.asyncio.run") as run:
            assert cmd_run(build_parser().parse_args(["run"]), settings) == 2
        run.assert_not_called()

    def test_run_starts_tracker(self, settings: MagicMock) -> None:
        with patch("dex_buy_tracker.__main__._run_tracker", new=MagicMock()) as run_tracker, patch(
            "dex_buy_tracker.__main__.asyncio.run"
        ) as run:
            assert cmd_run(build_parser().parse_args(["run", "--dry-run"]), settings) == 0

        run_tracker.assert_called_once_with(settings, dry_run=True)
        run.assert_called_once()

    def test_main_reports_invalid_environment(self, capsys: pytest.CaptureFixture[str]) -> None:
        error = ValidationError.from_exception_data("Settings", [])

        with patch("dex_buy_tracker.__main__.get_settings", side_effect=error):
            assert main(["config"]) == 2
        assert "Invalid configuration" in capsys.readouterr().err
