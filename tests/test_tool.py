"""Tests for the ExifTool-level helpers, run against the fake tool."""

from __future__ import annotations

import sys

import pytest

from exifsession import tool
from exifsession.config import effective_settings as config
from exifsession.process import ProcessSupervisor, SessionError

from .conftest import FAKE_TOOL


@pytest.fixture
def fake_tool_settings(monkeypatch):
    """Points the tool helpers at the fake tool, run by the current interpreter."""
    monkeypatch.setattr(config, "EXIFTOOL_PATH", sys.executable)
    monkeypatch.setattr(config, "VERSION_ARGS", [str(FAKE_TOOL), "-ver"])
    monkeypatch.setattr(config, "STAY_OPEN_ARGS", [str(FAKE_TOOL), "-stay_open", "True", "-@", "-"])


class TestToolHelpers:
    def test_stay_open_args(self) -> None:
        assert tool.stay_open_args("/opt/exiftool") == ["/opt/exiftool", "-stay_open", "True", "-@", "-"]

    def test_stay_open_args_default_path(self, monkeypatch) -> None:
        monkeypatch.setattr(config, "EXIFTOOL_PATH", "/usr/local/bin/exiftool")
        assert tool.stay_open_args()[0] == "/usr/local/bin/exiftool"

    def test_read_version(self, supervisor: ProcessSupervisor, fake_tool_settings, registry) -> None:
        assert tool.read_version(supervisor=supervisor) == "12.76"
        assert len(registry) == 0

    def test_read_version_missing_tool(self, supervisor: ProcessSupervisor) -> None:
        with pytest.raises(SessionError):
            tool.read_version("/nonexistent/exiftool", supervisor=supervisor)

    def test_execute_to_results(self, supervisor: ProcessSupervisor, registry) -> None:
        lines = tool.execute_to_results(
            [FAKE_TOOL, "-echo", "one", "-echo", "two"],
            exiftool_path=sys.executable,
            supervisor=supervisor,
        )

        assert lines == ["one", "two"]
        assert len(registry) == 0

    def test_execute_to_results_error_names_command(self, supervisor: ProcessSupervisor) -> None:
        with pytest.raises(SessionError) as excinfo:
            tool.execute_to_results(
                [FAKE_TOOL, "-fail", "File not found"],
                exiftool_path=sys.executable,
                supervisor=supervisor,
            )

        message = str(excinfo.value)
        assert message.startswith("When executing ")
        assert "-fail" in message
        assert "Error: File not found" in message

    def test_start_stay_open(self, supervisor: ProcessSupervisor, fake_tool_settings) -> None:
        with tool.start_stay_open(supervisor=supervisor) as session:
            assert session.keep_alive
            assert tool.parse_tag_lines(session.send_command(["-XResolution", "photo.jpg"])) == {
                "XResolution": "300"
            }


class TestParseTagLines:
    def test_splits_on_first_separator(self) -> None:
        lines = ["Make: Canon", "DateTimeOriginal: 2024:01:02 10:11:12", "no separator here"]

        assert tool.parse_tag_lines(lines) == {
            "Make": "Canon",
            "DateTimeOriginal": "2024:01:02 10:11:12",
        }

    def test_custom_separator(self) -> None:
        assert tool.parse_tag_lines(["Make=Canon"], separator="=") == {"Make": "Canon"}
