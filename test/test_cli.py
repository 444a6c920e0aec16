"""
Tests for the timeguru command-line interface.
"""

from __future__ import annotations

import doctest

import pytest
from typer.testing import CliRunner

import timeguru
import timeguru.commands as commands
import timeguru.logs as logs
from timeguru.config import load_config


def _invoke(args):
    return CliRunner().invoke(timeguru.build_app(), args)


@pytest.mark.unit
def test_bare_invocation_prints_quick_start():
    """
    Ensure running without a command prints the quick start guide.

    Returns
    -------
    None
        This test asserts the default output.
    """
    result = _invoke([])

    assert result.exit_code == 0
    assert "Quick start:" in result.output
    assert "timeguru config --set-token YOUR_TOKEN" in result.output


@pytest.mark.unit
def test_config_command_saves_and_shows(tmp_path):
    """
    Ensure the config command persists the token and prints settings.

    Returns
    -------
    None
        This test asserts config wiring.
    """
    result = _invoke(["config", "--set-token", "abc", "--show"])

    assert result.exit_code == 0
    assert "API token saved successfully" in result.output
    assert "API token configured: yes" in result.output
    assert load_config().api_token == "abc"
    assert (tmp_path / "logs" / logs.LOG_FILE_NAME).exists()


@pytest.mark.unit
def test_config_path_option(tmp_path):
    """
    Ensure --config redirects where configuration is written.

    Returns
    -------
    None
        This test asserts the global config option.
    """
    path = tmp_path / "custom" / "settings.toml"

    result = _invoke(["--config", str(path), "config", "--set-date-range", "3"])

    assert result.exit_code == 0
    assert load_config(path).default_date_range_days == 3
    assert load_config().default_date_range_days == 7


@pytest.mark.unit
def test_command_failure_sets_exit_code():
    """
    Ensure a failing command exits with status 1.

    Returns
    -------
    None
        This test asserts exit codes.
    """
    result = _invoke(["list", "--start", "2025-01-14"])

    assert result.exit_code == 1


@pytest.mark.unit
def test_global_token_reaches_track_commands(monkeypatch):
    """
    Ensure --api-token is forwarded to nested track commands.

    Returns
    -------
    None
        This test asserts option forwarding.
    """
    seen = {}

    def fake_stop(**kwargs):
        seen.update(kwargs)
        return 0

    monkeypatch.setattr(commands, "run_track_stop", fake_stop)

    result = _invoke(["--api-token", "tok", "track", "stop"])

    assert result.exit_code == 0
    assert seen == {"api_token": "tok", "config_path": None}


@pytest.mark.unit
def test_export_requires_output():
    """
    Ensure export refuses to run without an output path.

    Returns
    -------
    None
        This test asserts required options.
    """
    result = _invoke(["export"])

    assert result.exit_code == 2


@pytest.mark.parametrize(
    "args",
    [
        ["config", "--help"],
        ["list", "--help"],
        ["sync", "--help"],
        ["tui", "--help"],
        ["clean", "--help"],
        ["export", "--help"],
        ["track", "start", "--help"],
        ["track", "stop", "--help"],
    ],
)
@pytest.mark.unit
def test_every_command_builds_its_options(args):
    """
    Ensure each command's parameters resolve when the app is built.

    Returns
    -------
    None
        This test asserts that help renders for every command.
    """
    result = _invoke(args)

    assert result.exit_code == 0, result.output
    assert "Usage:" in result.output


@pytest.mark.unit
def test_config_show_runs_from_console_entry(monkeypatch, capsys):
    """
    Ensure the installed ``main`` entry point runs a command end to end.

    Returns
    -------
    None
        This test asserts the console script path.
    """
    monkeypatch.setattr("sys.argv", ["timeguru", "config", "--show"])

    with pytest.raises(SystemExit) as excinfo:
        timeguru.main()

    assert excinfo.value.code == 0
    assert "API token configured: no" in capsys.readouterr().out


@pytest.mark.unit
def test_timeguru_doctest_examples():
    """
    Run doctest examples embedded in the package docstrings.

    Returns
    -------
    None
        This test asserts that doctest examples succeed.
    """
    results = doctest.testmod(timeguru)
    assert results.failed == 0
