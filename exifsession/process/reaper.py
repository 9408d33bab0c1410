import logging
import threading
from typing import Iterable, List, Optional

from exifsession.config import effective_settings as config
from .session import ProtocolSession

log = logging.getLogger(__name__)


class InactivityReaper:
    """
    Closes a keep-alive session once it has been idle for `idle_seconds`.

    Commands go through the reaper, which holds the timer off while an
    exchange is in flight and re-arms it once the exchange is over. Closing
    the session by any route cancels the timer.
    """

    def __init__(self, session: ProtocolSession, idle_seconds: Optional[float] = None) -> None:
        """
        :param session: A keep-alive session to watch.
        :param idle_seconds: Idle interval before auto-close, defaults to REAPER_IDLE_SECONDS.
        :raises ValueError: For single-shot sessions or a non-positive interval.
        """
        if not session.keep_alive:
            raise ValueError("InactivityReaper only applies to keep-alive sessions.")
        self.session = session
        self.idle_seconds = config.REAPER_IDLE_SECONDS if idle_seconds is None else float(idle_seconds)
        if self.idle_seconds <= 0:
            raise ValueError("idle_seconds must be > 0")

        # Reentrant: closing from the timer thread runs _on_session_closed.
        self._lock = threading.RLock()
        self._timer: Optional[threading.Timer] = None
        self._in_flight = 0
        self._arm()
        session.add_close_callback(self._on_session_closed)

    @property
    def armed(self) -> bool:
        with self._lock:
            return self._timer is not None

    def __enter__(self) -> "InactivityReaper":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _arm(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if self._in_flight or self.session.is_closed():
                return
            timer = threading.Timer(self.idle_seconds, self._expire)
            timer.daemon = True
            timer.name = f"InactivityReaper-{self.session.pid}"
            self._timer = timer
            timer.start()

    def _cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _expire(self) -> None:
        with self._lock:
            # A timer cancelled after it started firing must not close a session that saw activity.
            if threading.current_thread() is not self._timer or self._in_flight:
                return
            self._timer = None
            log.info(f"Session for PID {self.session.pid} idle for {self.idle_seconds}s. Auto cleanup running...")
            self.session.close()

    def _begin_activity(self) -> None:
        with self._lock:
            self._in_flight += 1
            self._cancel()

    def _end_activity(self) -> None:
        with self._lock:
            self._in_flight -= 1
            self._arm()

    def _on_session_closed(self, _session: ProtocolSession) -> None:
        self._cancel()

    def send_command(self, args: Iterable[str]) -> List[str]:
        # No expiry while an exchange is in flight.
        self._begin_activity()
        try:
            return self.session.send_command(args)
        finally:
            self._end_activity()

    def read_raw_line(self) -> Optional[str]:
        self._begin_activity()
        try:
            return self.session.read_raw_line()
        finally:
            self._end_activity()

    def is_closed(self) -> bool:
        return self.session.is_closed()

    def close(self) -> None:
        self._cancel()
        self.session.close()
