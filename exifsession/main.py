import sys
import shlex
import logging
import threading

import setproctitle

import exifsession.console as console
from exifsession.log import setup_logging

log = logging.getLogger("console")

CONSOLE_LOCK = threading.Lock()


def main() -> None:
    """The main entry point for the console application."""
    setproctitle.setproctitle("ExifSession - Console")
    setup_logging(logging.INFO)

    # Non-interactive mode for one-off commands
    if len(sys.argv) > 1:
        command, args = sys.argv[1].lower(), sys.argv[2:]
        if "--verbose" in args:
            args.remove("--verbose")
            console.toggle_verbose_logging()
        try:
            console.execute_command(command, args)
        finally:
            console.state.close()
        return

    # Interactive mode
    print("--- ExifSession Console ---")
    print("Type 'help' for a list of commands.")

    try:
        while True:
            try:
                # The input prompt must be outside the lock to not block background threads
                command_line_str = input("> ")
                with CONSOLE_LOCK:
                    if not command_line_str.strip():
                        continue
                    command_line = shlex.split(command_line_str)
                    command, args = command_line[0].lower(), command_line[1:]
                    if console.execute_command(command, args):
                        break
            except (KeyboardInterrupt, EOFError):
                log.warning("Exiting console.")
                break
            except ValueError as e:
                log.error(f"Could not parse command line: {e}")
    finally:
        console.state.close()


if __name__ == "__main__":
    main()
