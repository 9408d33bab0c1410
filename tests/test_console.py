"""Tests for the console command dispatcher."""

import logging
import sys

import pytest

import exifsession.console as console
from exifsession.config import effective_settings as config

from .conftest import FAKE_TOOL


@pytest.fixture
def console_state(monkeypatch, supervisor):
    """A console state bound to the test supervisor and the fake tool."""
    monkeypatch.setattr(config, "EXIFTOOL_PATH", sys.executable)
    monkeypatch.setattr(config, "VERSION_ARGS", [str(FAKE_TOOL), "-ver"])
    monkeypatch.setattr(config, "STAY_OPEN_ARGS", [str(FAKE_TOOL), "-stay_open", "True", "-@", "-"])
    state = console.ConsoleState(supervisor=supervisor)
    monkeypatch.setattr(console, "state", state)
    yield state
    state.close()


def test_unknown_command(console_state, caplog):
    caplog.set_level(logging.INFO)
    assert console.execute_command("frobnicate", []) is False
    assert "Unknown command" in caplog.text


def test_exit_command(console_state):
    assert console.execute_command("exit", []) is True


def test_version_command(console_state, capsys):
    assert console.execute_command("version", []) is False
    assert capsys.readouterr().out.strip() == "12.76"


def test_send_reuses_shared_session(console_state, capsys, registry):
    console.execute_command("send", ["-echo", "first"])
    pid = console_state.reaper.session.pid
    console.execute_command("send", ["-echo", "second"])

    assert capsys.readouterr().out.splitlines() == ["first", "second"]
    assert console_state.reaper.session.pid == pid
    assert len(registry) == 1


def test_close_command(console_state, registry):
    console.execute_command("send", ["-echo", "x"])
    session = console_state.reaper.session

    console.execute_command("close", [])

    assert session.is_closed()
    assert console_state.reaper is None
    assert len(registry) == 0


def test_failing_command_is_logged(console_state, caplog):
    assert console.execute_command("send", ["-fail", "bad file"]) is False
    assert "Error: bad file" in caplog.text
    assert not console_state.reaper.is_closed()


def test_status_command(console_state, capsys):
    console.execute_command("status", [])
    assert "Shared session: not running." in capsys.readouterr().out


def test_set_command(console_state, monkeypatch, tmp_path, capsys):
    monkeypatch.setattr(config, "OVERRIDES_JSON_PATH", tmp_path / "overrides.json")
    monkeypatch.setattr(config, "REAPER_IDLE_SECONDS", config.REAPER_IDLE_SECONDS)

    console.execute_command("set", ["reaper_idle_seconds", "120"])

    assert config.REAPER_IDLE_SECONDS == 120.0
    assert "updated" in capsys.readouterr().out
    assert (tmp_path / "overrides.json").exists()
