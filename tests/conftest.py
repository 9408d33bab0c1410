"""Pytest configuration and fixtures."""

import sys
from pathlib import Path
from typing import List

import pytest

from exifsession.process import LifecycleRegistry, ProcessSupervisor

FAKE_TOOL = Path(__file__).parent / "fake_exiftool.py"


def tool_command(*args: str) -> List[str]:
    """Command line running the fake tool with the current interpreter."""
    return [sys.executable, str(FAKE_TOOL), *args]


@pytest.fixture
def registry():
    """A private registry; anything a test leaks is swept afterwards."""
    reg = LifecycleRegistry()
    yield reg
    reg.sweep()


@pytest.fixture
def supervisor(registry: LifecycleRegistry) -> ProcessSupervisor:
    """Supervisor bound to the private registry, with a generous stderr settle window."""
    return ProcessSupervisor(registry=registry, graceful_timeout=2.0, stderr_settle=0.2)


@pytest.fixture
def make_command():
    """Factory for fake tool command lines."""
    return tool_command


@pytest.fixture
def stay_open_command() -> List[str]:
    return tool_command("-stay_open", "True", "-@", "-")
