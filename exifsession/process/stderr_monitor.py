import time
import queue
import logging
import threading
from typing import IO, List, Optional

from exifsession.config import effective_settings as config

log = logging.getLogger(__name__)


class StderrMonitor:
    """
    Drains a process's error stream on a dedicated daemon thread.

    Completed lines are handed to the owning session through a bounded,
    thread-safe queue. When the queue is full the oldest line is dropped, so
    the reader never stops consuming the pipe and the child never blocks on
    a full stderr buffer.
    """

    def __init__(
        self,
        pipe: IO[bytes],
        process_name: str,
        encoding: str = "utf-8",
        max_lines: Optional[int] = None,
        log_level: int = logging.WARNING,
    ) -> None:
        """
        :param pipe: The binary stderr pipe of the child process.
        :param process_name: Logical name used for the `proc.<name>` logger and the thread name.
        :param encoding: Encoding used to decode the raw lines.
        :param max_lines: Queue bound, defaults to STDERR_BUFFER_LINES.
        :param log_level: Level at which each line is logged on `proc.<name>`.
        """
        self._pipe = pipe
        self._encoding = encoding
        self._lines: "queue.Queue[str]" = queue.Queue(maxsize=max_lines or config.STDERR_BUFFER_LINES)
        self._stop_event = threading.Event()
        self._close_lock = threading.Lock()
        self._closed = False
        self._proc_logger = logging.getLogger(f"proc.{process_name}")
        self._log_level = log_level
        self._thread = threading.Thread(
            target=self._read_pipe,
            daemon=True,
            name=f"StderrMonitor-{process_name}",
        )

    def start(self) -> "StderrMonitor":
        self._thread.start()
        return self

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive()

    def _put(self, line: str) -> None:
        while True:
            try:
                self._lines.put_nowait(line)
                return
            except queue.Full:
                try:
                    dropped = self._lines.get_nowait()
                    log.debug(f"Stderr buffer full, dropping oldest line: {dropped!r}")
                except queue.Empty:
                    pass

    def _read_pipe(self) -> None:
        """Target function for the reader thread. Reads lines until end of stream or stop."""
        try:
            for line_bytes in iter(self._pipe.readline, b""):
                line = line_bytes.decode(self._encoding, errors="replace").rstrip("\r\n")
                if not line:
                    continue
                self._proc_logger.log(self._log_level, line)
                self._put(line)
                if self._stop_event.is_set():
                    break
        except (OSError, ValueError) as e:
            # The pipe was closed underneath us during teardown.
            log.debug(f"Stderr reader for {self._thread.name} exited: {e}")

    def has_lines(self) -> bool:
        return not self._lines.empty()

    def take_lines(self, settle: float = 0.0) -> List[str]:
        """
        Drains and returns every line accumulated since the previous call, in order.

        :param settle: Seconds to keep waiting for late lines after the queue
                       first runs dry. Zero returns immediately.
        :return: The drained lines.
        """
        lines: List[str] = []
        deadline = time.monotonic() + settle
        while True:
            try:
                lines.append(self._lines.get_nowait())
                continue
            except queue.Empty:
                pass
            remaining = deadline - time.monotonic()
            if remaining <= 0 or not self._thread.is_alive():
                break
            try:
                lines.append(self._lines.get(timeout=remaining))
            except queue.Empty:
                break
        return lines

    def close(self, timeout: Optional[float] = None) -> None:
        """
        Stops the reader thread and releases the pipe. Safe to call more than once.

        :param timeout: Seconds to wait for the reader thread, defaults to STDERR_JOIN_TIMEOUT.
        """
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        self._stop_event.set()
        if self._thread.is_alive():
            self._thread.join(timeout=config.STDERR_JOIN_TIMEOUT if timeout is None else timeout)

        if self._thread.is_alive():
            # Still blocked in readline; closing a buffered pipe under a reader would block too.
            log.warning(f"{self._thread.name} did not stop within the timeout; leaving its pipe to the daemon thread.")
            return
        try:
            self._pipe.close()
        except (OSError, ValueError) as e:
            log.debug(f"Error closing stderr pipe: {e}")
