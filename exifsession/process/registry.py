"""
Process-wide table of live tool sessions.

Every session started by a ProcessSupervisor is registered here together with
the stack of the call site that created it. A session removes itself when it
is closed. Whatever is still registered when the interpreter exits was leaked
by its caller: the exit-time sweep logs where it was created and closes it.
"""
import atexit
import logging
import threading
import traceback
from typing import TYPE_CHECKING, Dict, List, MutableMapping, Optional, Tuple

from exifsession.config import effective_settings as config

if TYPE_CHECKING:
    from .session import ProtocolSession

log = logging.getLogger(__name__)

RegistryEntry = Tuple[str, "ProtocolSession"]


def capture_creation_context(skip: int = 2) -> str:
    """
    Returns a formatted stack of the caller, used to tell where a leaked session came from.

    :param skip: Number of innermost frames to drop (this function and its caller).
    """
    frames = traceback.format_stack(limit=config.CREATION_CONTEXT_DEPTH + skip)[:-skip]
    return "".join(frames)


class LifecycleRegistry:
    """
    Maps a session's process identity to (creation context, session).

    The storage is injectable so tests can inspect a private mapping; all
    access goes through a single lock.
    """

    def __init__(self, storage: Optional[MutableMapping[int, RegistryEntry]] = None) -> None:
        self._entries: MutableMapping[int, RegistryEntry] = storage if storage is not None else {}
        self._lock = threading.Lock()

    def register(self, session: "ProtocolSession", context: str) -> None:
        with self._lock:
            self._entries[session.pid] = (context, session)
        log.debug(f"Registered session for PID {session.pid} ({len(self._entries)} live).")

    def unregister(self, session: "ProtocolSession") -> None:
        """Removes the session's entry. A no-op if it is absent or belongs to another session."""
        with self._lock:
            entry = self._entries.get(session.pid)
            if entry is None or entry[1] is not session:
                return
            del self._entries[session.pid]
        log.debug(f"Unregistered session for PID {session.pid}.")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, session: object) -> bool:
        pid = getattr(session, "pid", None)
        with self._lock:
            entry = self._entries.get(pid)
        return entry is not None and entry[1] is session

    def snapshot(self) -> Dict[int, RegistryEntry]:
        """Returns a copy of the current entries."""
        with self._lock:
            return dict(self._entries)

    def sweep(self) -> int:
        """
        Force-closes every session that is still registered.

        :return: The number of leaked sessions that were closed.
        """
        leaked: List[Tuple[int, RegistryEntry]] = list(self.snapshot().items())
        if not leaked:
            return 0

        log.warning(f"Closing {len(leaked)} leaked tool session(s): PIDs {[pid for pid, _ in leaked]}")
        for pid, (context, session) in leaked:
            log.warning(f"Closing leaked session for PID {pid}, created at:\n{context}")
            try:
                session.close()
            except Exception as e:
                log.error(f"Failed to close leaked session for PID {pid}: {e}", exc_info=True)
            # close() unregisters; make sure the entry is gone even if it could not.
            self.unregister(session)
        return len(leaked)


_default_registry: Optional[LifecycleRegistry] = None
_default_lock = threading.Lock()


def get_registry() -> LifecycleRegistry:
    """
    Returns the process-wide registry, creating it and its exit hook on first use.
    """
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            _default_registry = LifecycleRegistry()
            atexit.register(_default_registry.sweep)
        return _default_registry
