"""Tests for InactivityReaper."""

from __future__ import annotations

import threading
import time

import pytest

from exifsession.process import ClosedError, InactivityReaper, ProcessSupervisor


def wait_until(predicate, timeout: float = 10.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


class TestInactivityReaper:
    def test_idle_session_is_closed(self, supervisor: ProcessSupervisor, stay_open_command, registry) -> None:
        """One command, then silence past the interval, closes the session."""
        session = supervisor.start(stay_open_command, keep_alive=True)
        reaper = InactivityReaper(session, idle_seconds=0.5)

        assert reaper.send_command(["-ver"]) == ["12.76"]
        assert wait_until(session.is_closed)
        assert session not in registry
        assert not reaper.armed

        with pytest.raises(ClosedError):
            reaper.send_command(["-ver"])

    def test_activity_resets_timer(self, supervisor: ProcessSupervisor, stay_open_command) -> None:
        """Commands arriving within the interval keep the session alive."""
        with supervisor.start(stay_open_command, keep_alive=True) as session:
            reaper = InactivityReaper(session, idle_seconds=1.5)
            for _ in range(4):
                time.sleep(0.5)
                reaper.send_command(["-echo", "ping"])
            assert not session.is_closed()
            reaper.close()

    def test_explicit_close_cancels_timer(self, supervisor: ProcessSupervisor, stay_open_command) -> None:
        session = supervisor.start(stay_open_command, keep_alive=True)
        reaper = InactivityReaper(session, idle_seconds=60)
        assert reaper.armed

        session.close()

        assert not reaper.armed

    def test_reaper_close(self, supervisor: ProcessSupervisor, stay_open_command) -> None:
        session = supervisor.start(stay_open_command, keep_alive=True)
        with InactivityReaper(session, idle_seconds=60) as reaper:
            assert reaper.send_command(["-echo", "x"]) == ["x"]

        assert session.is_closed()
        assert not reaper.armed

    def test_superseded_timer_does_not_close(self, supervisor: ProcessSupervisor, stay_open_command) -> None:
        """An expiry from a timer that activity already replaced leaves the session open."""
        with supervisor.start(stay_open_command, keep_alive=True) as session:
            reaper = InactivityReaper(session, idle_seconds=60)
            superseded = threading.Timer(0, reaper._expire)
            superseded.start()
            superseded.join(timeout=5)

            assert not session.is_closed()
            assert reaper.armed
            reaper.close()

    def test_expiry_during_command_does_not_close(self, supervisor: ProcessSupervisor, stay_open_command) -> None:
        """A timer that fires while a command is in flight does not cut the command off."""
        with supervisor.start(stay_open_command, keep_alive=True) as session:
            reaper = InactivityReaper(session, idle_seconds=60)
            results: list = []
            worker = threading.Thread(
                target=lambda: results.append(reaper.send_command(["-sleep", "0.5", "-echo", "done"]))
            )
            worker.start()
            time.sleep(0.2)

            firing = threading.Timer(0, reaper._expire)
            with reaper._lock:
                reaper._timer = firing
            firing.start()
            firing.join(timeout=5)
            worker.join(timeout=10)

            assert results == [["done"]]
            assert not session.is_closed()
            assert reaper.armed
            reaper.close()

    def test_rejects_single_shot(self, supervisor: ProcessSupervisor, make_command) -> None:
        with supervisor.start(make_command("-ver"), keep_alive=False) as session:
            with pytest.raises(ValueError):
                InactivityReaper(session, idle_seconds=1)

    def test_rejects_non_positive_interval(self, supervisor: ProcessSupervisor, stay_open_command) -> None:
        with supervisor.start(stay_open_command, keep_alive=True) as session:
            with pytest.raises(ValueError):
                InactivityReaper(session, idle_seconds=0)
