import logging
from typing import List, Optional

from exifsession import tool
from exifsession.config import effective_settings as config
from exifsession.log import set_console_level
from exifsession.process import InactivityReaper, ProcessSupervisor, SessionError

log = logging.getLogger(__name__)


class ConsoleState:
    """Holds the console's shared stay-open session, created on first use."""

    def __init__(self, supervisor: Optional[ProcessSupervisor] = None) -> None:
        self.supervisor = supervisor or ProcessSupervisor()
        self.reaper: Optional[InactivityReaper] = None
        self.verbose = config.VERBOSE_LOGGING

    def get_reaper(self) -> InactivityReaper:
        if self.reaper is None or self.reaper.is_closed():
            session = tool.start_stay_open(supervisor=self.supervisor)
            self.reaper = InactivityReaper(session)
            log.info(f"Started stay-open session (PID {session.pid}).")
        return self.reaper

    def close(self) -> None:
        if self.reaper is not None:
            self.reaper.close()
            self.reaper = None


state = ConsoleState()


def print_help() -> None:
    print(
        "Commands:\n"
        "  version           Print the tool version (single-shot).\n"
        "  exec <args...>    Run the tool once with the given arguments.\n"
        "  send <args...>    Send arguments through the shared stay-open session.\n"
        "  status            Show the shared session and live session count.\n"
        "  set <KEY> <VALUE> Change a modifiable setting (saved to overrides.json).\n"
        "  close             Close the shared stay-open session.\n"
        "  verbose           Toggle debug output.\n"
        "  help              Show this help.\n"
        "  exit              Leave the console."
    )


def display_status() -> None:
    reaper = state.reaper
    if reaper is None or reaper.is_closed():
        print("Shared session: not running.")
    else:
        print(f"Shared session: PID {reaper.session.pid}, idle timeout {reaper.idle_seconds}s.")
    print(f"Live sessions: {len(state.supervisor.registry)}")


def toggle_verbose_logging() -> None:
    state.verbose = not state.verbose
    set_console_level(logging.DEBUG if state.verbose else logging.INFO)
    log.info(f"Verbose logging {'enabled' if state.verbose else 'disabled'}.")


def update_setting(args: List[str]) -> None:
    if len(args) < 2:
        log.info("Usage: set <KEY> <VALUE>")
        return
    key, value = args[0].upper(), " ".join(args[1:])
    _, message = config.update_setting(key, value)
    print(message)


def _print_lines(lines: List[str]) -> None:
    for line in lines:
        print(line)


def execute_command(command: str, args: List[str]) -> bool:
    """
    Executes a single command from the user.

    :param command: The main command string (e.g., 'send', 'version').
    :param args: A list of arguments for the command.
    :return bool: True if the console should exit, False otherwise.
    """
    log.debug(f"Executing command: {command}, args: {args}")
    command_map = {
        "version": lambda: print(tool.read_version(supervisor=state.supervisor)),
        "exec": lambda: _print_lines(tool.execute_to_results(args, supervisor=state.supervisor)),
        "send": lambda: _print_lines(state.get_reaper().send_command(args)),
        "status": display_status,
        "set": lambda: update_setting(args),
        "close": state.close,
        "verbose": toggle_verbose_logging,
        "help": print_help,
        "exit": lambda: True,
    }

    if command not in command_map:
        log.info(f"Unknown command: '{command}'. Type 'help' for a list of commands.")
        return False

    try:
        result = command_map[command]()
    except SessionError as e:
        log.error(f"{command} failed: {e}")
        return False
    return command == "exit" and result is True
