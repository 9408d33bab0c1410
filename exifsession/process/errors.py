from typing import List, Optional, Sequence


class SessionError(Exception):
    """Base class for every error raised by a tool session."""


class StartupError(SessionError):
    """The external process could not be launched."""

    def __init__(self, args: Sequence[str], cause: Optional[BaseException] = None) -> None:
        self.command_args: List[str] = list(args)
        self.cause = cause
        executable = self.command_args[0] if self.command_args else "<none>"
        super().__init__(
            f"Unable to start external process using the execution arguments: {self.command_args}. "
            f"Ensure the tool is installed and runs using the command path '{executable}': {cause}"
        )


class ClosedError(SessionError):
    """An operation was attempted on a session whose close() has begun."""

    def __init__(self, message: str = "Session is closed; the stream is no longer available.") -> None:
        super().__init__(message)


class ProtocolError(SessionError):
    """The tool reported an error line on its stderr for the current exchange."""

    def __init__(self, line: str, stdout_lines: Sequence[str] = (), args: Sequence[str] = ()) -> None:
        self.line = line
        self.stdout_lines: List[str] = list(stdout_lines)
        self.command_args: List[str] = list(args)
        super().__init__(
            f"{line}. {len(self.stdout_lines)} lines were read {self.stdout_lines} "
            f"for the tool with args {self.command_args}."
        )


class EmptyResponseError(SessionError):
    """A completed exchange produced no output and no error line."""

    def __init__(self, args: Sequence[str] = ()) -> None:
        self.command_args: List[str] = list(args)
        super().__init__(f"Didn't get anything back from the tool with args {self.command_args}.")


class TransportError(SessionError):
    """Low-level pipe failure (broken pipe, stream closed by the other side)."""
