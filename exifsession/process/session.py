import logging
import threading
import subprocess
from typing import TYPE_CHECKING, Callable, Iterable, List, Optional, Sequence, Tuple

from exifsession.config import effective_settings as config
from .errors import ClosedError, EmptyResponseError, ProtocolError, TransportError
from .stderr_monitor import StderrMonitor

if TYPE_CHECKING:
    from .registry import LifecycleRegistry

log = logging.getLogger(__name__)


class ProtocolSession:
    """
    One conversation with an external tool process.

    In keep-alive (stay-open) mode a single process serves many commands: each
    request is one argument per line followed by the execute sentinel, and each
    response ends with the ready sentinel line. In single-shot mode the request
    is written once, the response runs until end of stream, and the session
    closes itself after that exchange.

    Commands are serialized by a per-session lock. close() has its own lock, so
    it can be called from another thread while a command is blocked on the
    process; the blocked caller then gets a ClosedError.
    """

    def __init__(
        self,
        proc: subprocess.Popen,
        keep_alive: bool,
        stderr_monitor: StderrMonitor,
        destroy: Callable[..., None],
        registry: Optional["LifecycleRegistry"] = None,
        command_args: Sequence[str] = (),
        encoding: Optional[str] = None,
        error_indicators: Optional[Iterable[str]] = None,
        stderr_settle: Optional[float] = None,
    ) -> None:
        """
        :param proc: The spawned process; its stdin/stdout must be binary pipes.
        :param keep_alive: True for stay-open mode, False for single-shot.
        :param stderr_monitor: The already started monitor draining proc.stderr.
        :param destroy: Called as `destroy(proc, graceful=...)` to terminate and reap the process.
                        `graceful=False` skips the wait for a voluntary exit.
        :param registry: Registry to leave on close, if the session was registered.
        :param command_args: The arguments the process was started with, for diagnostics.
        :param encoding: Pipe encoding, defaults to TOOL_CHARSET.
        :param error_indicators: Case-insensitive stderr prefixes that fail an exchange.
        :param stderr_settle: Seconds to wait for late stderr lines after each response.
        """
        self._proc = proc
        self._writer = proc.stdin
        self._reader = proc.stdout
        self._stderr = stderr_monitor
        self._destroy = destroy
        self._registry = registry
        self.keep_alive = keep_alive
        self.command_args: Tuple[str, ...] = tuple(command_args)
        self.encoding = encoding or config.TOOL_CHARSET
        self.error_indicators: Tuple[str, ...] = tuple(
            token.lower() for token in (error_indicators if error_indicators is not None else config.ERROR_INDICATORS)
        )
        self.stderr_settle = config.STDERR_SETTLE_SECONDS if stderr_settle is None else stderr_settle
        self.last_diagnostics: List[str] = []

        self._command_lock = threading.Lock()
        self._close_lock = threading.Lock()
        self._closed = False
        # True while a thread may be blocked reading or writing the pipes.
        self._exchange_active = False
        self._close_callbacks: List[Callable[["ProtocolSession"], None]] = []

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def closed(self) -> bool:
        return self._closed

    def is_closed(self) -> bool:
        """Non-blocking; safe to call from any thread at any time."""
        return self._closed

    def __repr__(self) -> str:
        mode = "keep-alive" if self.keep_alive else "single-shot"
        state = "closed" if self._closed else "open"
        return f"<ProtocolSession pid={self.pid} {mode} {state}>"

    def __enter__(self) -> "ProtocolSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def add_close_callback(self, callback: Callable[["ProtocolSession"], None]) -> None:
        """Registers a callable run once after close() has torn the session down."""
        with self._close_lock:
            if not self._closed:
                self._close_callbacks.append(callback)
                return
        callback(self)

    #* --- Command Exchange ---
    def send_command(self, args: Iterable[str]) -> List[str]:
        """
        Sends one command and returns the response lines.

        :param args: The command arguments, one per line on the wire.
        :return: The stdout lines of the response, sentinel excluded.
        :raises ClosedError: If the session is closed or closes during the exchange.
        :raises ProtocolError: If the tool wrote an error line to stderr.
        :raises EmptyResponseError: If nothing came back and nothing explains it.
        :raises TransportError: On any other pipe failure.
        """
        command = tuple(str(arg) for arg in args)

        with self._command_lock:
            try:
                self._exchange_active = True
                try:
                    self._ensure_open()
                    for arg in command:
                        if "\n" in arg or "\r" in arg:
                            raise ValueError(f"Command arguments must be single lines, got {arg!r}")
                    try:
                        self._write_request(command)
                        lines = self._read_response()
                    except (OSError, ValueError) as e:
                        raise self._transport_failure(e) from e
                finally:
                    self._exchange_active = False
                return self._check_response(command, lines)
            finally:
                if not self.keep_alive:
                    self.close()

    def read_raw_line(self) -> Optional[str]:
        """
        Reads a single line from the tool's stdout, bypassing response framing.

        :return: The line without its terminator, or None at end of stream.
        """
        with self._command_lock:
            self._exchange_active = True
            try:
                self._ensure_open()
                raw = self._reader.readline()
            except (OSError, ValueError) as e:
                raise self._transport_failure(e) from e
            finally:
                self._exchange_active = False
            if self._closed:
                raise ClosedError()
            if not raw:
                return None
            return self._decode(raw)

    def _ensure_open(self) -> None:
        if self._closed:
            raise ClosedError()

    def _transport_failure(self, error: Exception) -> Exception:
        if self._closed:
            return ClosedError(f"Session was closed during the exchange: {error}")
        return TransportError(f"Pipe failure talking to PID {self.pid}: {error}")

    def _decode(self, raw: bytes) -> str:
        return raw.decode(self.encoding, errors="replace").rstrip("\r\n")

    def _write_request(self, command: Sequence[str]) -> None:
        payload = "".join(f"{arg}\n" for arg in command)
        if self.keep_alive:
            payload += f"{config.EXECUTE_SENTINEL}\n"
        log.debug(f"Sending to PID {self.pid}: {list(command)}")
        self._writer.write(payload.encode(self.encoding))
        self._writer.flush()
        if not self.keep_alive:
            # Single-shot tools read their arguments until end of input.
            self._writer.close()

    def _read_response(self) -> List[str]:
        lines: List[str] = []
        while True:
            raw = self._reader.readline()
            if self._closed:
                raise ClosedError()
            if not raw:
                if self.keep_alive:
                    raise TransportError(
                        f"Process {self.pid} ended its output before '{config.READY_SENTINEL}' "
                        f"after {len(lines)} lines: {lines}"
                    )
                break
            line = self._decode(raw)
            # The reader must stop exactly at the sentinel or it blocks forever.
            if self.keep_alive and line == config.READY_SENTINEL:
                break
            lines.append(line)
        log.debug(f"Read {len(lines)} lines from PID {self.pid}.")
        return lines

    def _is_error_line(self, line: str) -> bool:
        lowered = line.lower()
        return any(lowered.startswith(token) for token in self.error_indicators)

    def _check_response(self, command: Sequence[str], lines: List[str]) -> List[str]:
        stderr_lines = self._stderr.take_lines(settle=self.stderr_settle)
        self.last_diagnostics = stderr_lines
        for line in stderr_lines:
            if self._is_error_line(line):
                raise ProtocolError(line, lines, command)
        if stderr_lines:
            log.debug(f"Tool PID {self.pid} reported for {list(command)}: {' | '.join(stderr_lines)}")
        if not lines:
            raise EmptyResponseError(command)
        return lines

    #* --- Teardown ---
    def close(self) -> None:
        """
        Tears the session down exactly once. Never raises.

        Every step is attempted even if an earlier one failed. Later and
        concurrent callers return without repeating any step.
        """
        if self._closed:
            return
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

            # A thread may be blocked on the pipes; kill the process first so it wakes up.
            # Without the shutdown lines it will not exit by itself, so skip the graceful wait.
            in_flight = self._exchange_active
            log.debug(f"Closing session for PID {self.pid} (exchange in flight: {in_flight})...")

            if not in_flight:
                if self.keep_alive:
                    self._teardown_step("Send stay-open shutdown", self._send_shutdown)
                self._teardown_step("Close write stream", self._writer.close)
            self._teardown_step(f"Destroy process {self.pid}", lambda: self._destroy(self._proc, graceful=not in_flight))
            if in_flight:
                self._teardown_step("Close write stream", self._writer.close)
            self._teardown_step("Close read stream", self._reader.close)
            self._teardown_step("Stop stderr monitor", self._stderr.close)
            if self._registry is not None:
                self._teardown_step("Unregister session", lambda: self._registry.unregister(self))

            callbacks, self._close_callbacks = self._close_callbacks, []

        for callback in callbacks:
            self._teardown_step("Close callback", lambda: callback(self))
        log.debug(f"Session for PID {self.pid} closed.")

    def _send_shutdown(self) -> None:
        if self._writer.closed:
            return
        self._writer.write(config.SHUTDOWN_CONTROL_LINES.encode(self.encoding))
        self._writer.flush()

    def _teardown_step(self, description: str, step: Callable[[], None]) -> None:
        try:
            step()
            log.debug(f"\t{description}: successful")
        except Exception as e:
            log.debug(f"\t{description} failed: {e}")
