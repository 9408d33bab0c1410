import sys
import psutil
import logging
import subprocess
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from exifsession.config import effective_settings as config
from .errors import StartupError
from .registry import LifecycleRegistry, capture_creation_context, get_registry
from .session import ProtocolSession
from .stderr_monitor import StderrMonitor

log = logging.getLogger(__name__)


#* --- Process Creation ---
def get_popen_creation_flags() -> Dict[str, Any]:
    """
    Returns platform-specific keyword arguments for subprocess.Popen.

    On Windows the tool runs without a console window. Elsewhere it gets its
    own session so a terminal Ctrl+C does not reach it before close() does.

    :return dict: A dictionary of keyword arguments for Popen.
    """
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NO_WINDOW}
    return {"start_new_session": True}


#* --- Process Destruction ---
def _terminate_processes(processes: List[psutil.Process]) -> None:
    """Sends SIGTERM to every process in the list."""
    for proc in processes:
        try:
            log.debug(f"Sending SIGTERM to PID {proc.pid}")
            proc.terminate()
        except psutil.NoSuchProcess:
            continue


def _forceful_kill(processes: List[psutil.Process]) -> None:
    """Forcefully kills processes that didn't terminate gracefully."""
    if not processes:
        return

    log.warning(f"{len(processes)} processes did not terminate gracefully. Forcing shutdown...")
    for proc in processes:
        try:
            log.warning(f"Killing stubborn process PID {proc.pid}.")
            proc.kill()
        except psutil.NoSuchProcess:
            continue


def destroy_process(proc: subprocess.Popen, timeout: float, graceful: bool = True) -> None:
    """
    Runs the shutdown sequence for a tool process and reaps it.

    With `graceful`, the process first gets `timeout` seconds to exit on its
    own (a stay-open daemon exits after its shutdown control lines). Then it
    and its children are sent SIGTERM, and whatever is still alive after
    another `timeout` is killed.

    :param proc: The Popen object of the tool.
    :param timeout: Seconds allowed for each wait.
    :param graceful: False to send SIGTERM right away.
    """
    if graceful:
        try:
            proc.wait(timeout=timeout)
            log.debug(f"Process {proc.pid} exited with code {proc.returncode}.")
            return
        except subprocess.TimeoutExpired:
            log.debug(f"Process {proc.pid} still running after {timeout}s, terminating.")
    elif proc.poll() is not None:
        log.debug(f"Process {proc.pid} already exited with code {proc.returncode}.")
        return

    try:
        parent = psutil.Process(proc.pid)
        processes = [parent] + parent.children(recursive=True)
    except psutil.NoSuchProcess:
        processes = []

    _terminate_processes(processes)
    try:
        _, alive = psutil.wait_procs(processes, timeout=timeout)
    except psutil.NoSuchProcess:
        alive = []
    _forceful_kill(alive)

    try:
        proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        log.error(f"Process {proc.pid} could not be reaped after being killed.")


def _discard_process(proc: subprocess.Popen, monitor: Optional[StderrMonitor]) -> None:
    """Kills and reaps a child whose session could not be set up, and closes its pipes."""
    try:
        parent = psutil.Process(proc.pid)
        processes = parent.children(recursive=True) + [parent]
    except psutil.NoSuchProcess:
        processes = []
    for p in processes:
        try:
            p.kill()
        except psutil.NoSuchProcess:
            continue
    proc.wait()

    pipes = [proc.stdin, proc.stdout]
    if monitor is not None:
        monitor.close()
    else:
        pipes.append(proc.stderr)
    for pipe in pipes:
        try:
            pipe.close()
        except (OSError, ValueError) as e:
            log.debug(f"Error closing pipe of PID {proc.pid}: {e}")


class ProcessSupervisor:
    """
    Launches external tool processes and hands each one to a ProtocolSession.

    Every session it creates is registered in a LifecycleRegistry (the
    process-wide one unless another is injected) together with the stack of
    the call site, so leaked sessions can be traced and closed at exit.
    """

    def __init__(
        self,
        registry: Optional[LifecycleRegistry] = None,
        encoding: Optional[str] = None,
        graceful_timeout: Optional[float] = None,
        error_indicators: Optional[Iterable[str]] = None,
        stderr_settle: Optional[float] = None,
        stderr_buffer_lines: Optional[int] = None,
    ) -> None:
        """
        Arguments left as None follow the current configuration, so runtime
        setting changes apply to every session started afterwards.
        """
        self._registry = registry
        self._encoding = encoding
        self._graceful_timeout = graceful_timeout
        self._error_indicators = tuple(error_indicators) if error_indicators is not None else None
        self._stderr_settle = stderr_settle
        self._stderr_buffer_lines = stderr_buffer_lines

    @property
    def encoding(self) -> str:
        return self._encoding or config.TOOL_CHARSET

    @property
    def graceful_timeout(self) -> float:
        return config.GRACEFUL_SHUTDOWN_TIMEOUT if self._graceful_timeout is None else self._graceful_timeout

    @property
    def error_indicators(self) -> Tuple[str, ...]:
        return config.ERROR_INDICATORS if self._error_indicators is None else self._error_indicators

    @property
    def stderr_settle(self) -> float:
        return config.STDERR_SETTLE_SECONDS if self._stderr_settle is None else self._stderr_settle

    @property
    def stderr_buffer_lines(self) -> int:
        return self._stderr_buffer_lines or config.STDERR_BUFFER_LINES

    @property
    def registry(self) -> LifecycleRegistry:
        # The process-wide registry only comes to life with the first session.
        if self._registry is None:
            self._registry = get_registry()
        return self._registry

    def destroy(self, proc: subprocess.Popen, graceful: bool = True) -> None:
        destroy_process(proc, self.graceful_timeout, graceful=graceful)

    def start(self, command_args: Iterable[str], keep_alive: bool = False) -> ProtocolSession:
        """
        Launches the tool and returns a registered session wired to its pipes.

        :param command_args: The command line; element 0 is the executable path.
        :param keep_alive: True to start a stay-open session, False for single-shot.
        :return: The new ProtocolSession.
        :raises ValueError: If command_args is empty.
        :raises StartupError: If the process could not be launched.
        """
        args = [str(arg) for arg in command_args]
        if not args:
            raise ValueError("command_args must not be empty")

        context = capture_creation_context()
        log.debug(f"Attempting to start process using args: {args}")
        try:
            proc = subprocess.Popen(  # noqa: S603
                args,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                **get_popen_creation_flags(),
            )
        except (OSError, ValueError) as e:
            log.debug(f"Failed to start process {args}: {e}")
            raise StartupError(args, e) from e

        name = f"{Path(args[0]).stem}-{proc.pid}"
        monitor: Optional[StderrMonitor] = None
        try:
            monitor = StderrMonitor(proc.stderr, name, encoding=self.encoding, max_lines=self.stderr_buffer_lines)
            monitor.start()
            session = ProtocolSession(
                proc,
                keep_alive=keep_alive,
                stderr_monitor=monitor,
                destroy=self.destroy,
                registry=self.registry,
                command_args=args,
                encoding=self.encoding,
                error_indicators=self.error_indicators,
                stderr_settle=self.stderr_settle,
            )
            self.registry.register(session, context)
        except Exception as e:
            # Not registered yet, so the exit sweep cannot reach this child.
            log.error(f"Setting up a session for {name} failed, killing the process: {e}")
            _discard_process(proc, monitor)
            raise StartupError(args, e) from e
        log.debug(f"\tSuccessful: {name} started ({'keep-alive' if keep_alive else 'single-shot'}).")
        return session
