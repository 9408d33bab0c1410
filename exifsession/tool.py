"""
ExifTool-level helpers built on top of the session core.

These only assemble command lines and interpret results; all process
handling goes through ProcessSupervisor and ProtocolSession.
"""
import logging
from typing import Dict, Iterable, List, Optional

from exifsession.config import effective_settings as config
from exifsession.process import ProcessSupervisor, ProtocolSession, SessionError

log = logging.getLogger(__name__)


def _tool_path(exiftool_path: Optional[str]) -> str:
    return str(exiftool_path or config.EXIFTOOL_PATH)


def stay_open_args(exiftool_path: Optional[str] = None) -> List[str]:
    """Returns the command line that starts the tool as a stay-open daemon reading stdin."""
    return [_tool_path(exiftool_path), *config.STAY_OPEN_ARGS]


def start_stay_open(
    exiftool_path: Optional[str] = None,
    supervisor: Optional[ProcessSupervisor] = None,
) -> ProtocolSession:
    """
    Starts a keep-alive session. The caller owns it and must close it,
    preferably with a `with` block.

    :param exiftool_path: Path of the tool, defaults to EXIFTOOL_PATH.
    :param supervisor: Supervisor to launch with, a default one otherwise.
    """
    supervisor = supervisor or ProcessSupervisor()
    return supervisor.start(stay_open_args(exiftool_path), keep_alive=True)


def execute_to_results(
    args: Iterable[str],
    exiftool_path: Optional[str] = None,
    supervisor: Optional[ProcessSupervisor] = None,
) -> List[str]:
    """
    Runs the tool once with `args` on its command line and returns its output lines.

    :param args: Arguments appended to the tool path.
    :param exiftool_path: Path of the tool, defaults to EXIFTOOL_PATH.
    :param supervisor: Supervisor to launch with, a default one otherwise.
    :raises SessionError: With the full command line in the message.
    """
    supervisor = supervisor or ProcessSupervisor()
    command = [_tool_path(exiftool_path), *[str(arg) for arg in args]]
    try:
        with supervisor.start(command, keep_alive=False) as session:
            return session.send_command([])
    except SessionError as e:
        raise SessionError(f"When executing {' '.join(command)} we got: {e}") from e


def read_version(
    exiftool_path: Optional[str] = None,
    supervisor: Optional[ProcessSupervisor] = None,
) -> str:
    """
    Asks the tool for its version string.

    :param exiftool_path: Path of the tool, defaults to EXIFTOOL_PATH.
    :param supervisor: Supervisor to launch with, a default one otherwise.
    :return: The first line the tool prints, stripped.
    :raises SessionError: If the tool could not be run or printed nothing.
    """
    supervisor = supervisor or ProcessSupervisor()
    command = [_tool_path(exiftool_path), *config.VERSION_ARGS]
    with supervisor.start(command, keep_alive=False) as session:
        line = session.read_raw_line()
    if line is None or not line.strip():
        raise SessionError(f"Unable to check the version number of {command[0]}: no output.")
    log.debug(f"{command[0]} reports version {line.strip()}")
    return line.strip()


def parse_tag_lines(lines: Iterable[str], separator: Optional[str] = None) -> Dict[str, str]:
    """
    Decodes `Tag: value` response lines into a dict.

    Lines are split on the first occurrence of the separator; lines without
    it are ignored. Later duplicates win.

    :param lines: Response lines, e.g. from ProtocolSession.send_command.
    :param separator: Separator token, defaults to TAG_SEPARATOR.
    """
    separator = separator or config.TAG_SEPARATOR
    tags: Dict[str, str] = {}
    for line in lines:
        key, found, value = line.partition(separator)
        if not found:
            continue
        tags[key.strip()] = value.strip()
    return tags
