import os
import sys
import socket
import logging
import threading
from collections import defaultdict, deque
from typing import Deque, Dict, List, Optional, Tuple

import requests

from exifsession.config import effective_settings as config

# (labels, timestamp in ns, line)
_Entry = Tuple[Tuple[Tuple[str, str], ...], str, str]


def session_label(logger_name: str) -> Optional[str]:
    """
    Extracts the tool process name from a `proc.<tool>-<pid>` logger name.

    :return: e.g. 'exiftool-4242', or None for package loggers.
    """
    if not logger_name.startswith('proc.'):
        return None
    return logger_name[len('proc.'):] or None


class LokiHandler(logging.Handler):
    """
    Ships log records to Grafana Loki in batches from a background thread.

    Records sharing the same labels are pushed as one stream. Raw tool
    stderr lines (`proc.*` loggers) carry a `session` label with the tool
    process name.
    """
    def __init__(self, url: str, org_id: Optional[str] = None, flush_interval: Optional[float] = None):
        """
        :param url: The base URL of the Loki instance.
        :param org_id: The tenant ID for Loki (sent as 'X-Scope-OrgID').
        :param flush_interval: Seconds between background flushes, defaults to LOG_BUFFER_FLUSH_INTERVAL.
        """
        super().__init__()
        self.url = f"{url.rstrip('/')}/loki/api/v1/push"
        self.org_id = org_id
        self.flush_interval = flush_interval if flush_interval is not None else config.LOG_BUFFER_FLUSH_INTERVAL
        self.batch_size = config.LOG_BATCH_SIZE
        self.hostname = os.getenv('HOSTNAME') or os.getenv('COMPUTERNAME') or socket.gethostname()

        self._pending: Deque[_Entry] = deque()
        self._pending_lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._flush_thread = threading.Thread(target=self._flush_loop, daemon=True, name="LokiFlushThread")
        self._flush_thread.start()

    def _flush_loop(self) -> None:
        while not self._stop_event.wait(self.flush_interval):
            self.flush()
        self.flush()

    def _labels(self, record: logging.LogRecord) -> Tuple[Tuple[str, str], ...]:
        labels = {
            "job": "exifsession",
            "host": self.hostname,
            "level": record.levelname.lower(),
            "logger": record.name,
        }
        session = session_label(record.name)
        if session:
            labels["session"] = session
        return tuple(sorted(labels.items()))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = (self._labels(record), str(int(record.created * 1e9)), self.format(record))
            with self._pending_lock:
                self._pending.append(entry)
                batch_full = len(self._pending) >= self.batch_size
            if batch_full:
                self.flush()
        except Exception:
            self.handleError(record)

    @staticmethod
    def build_payload(entries: List[_Entry]) -> Dict[str, list]:
        """Groups buffered entries into one Loki stream per label set, keeping their order."""
        streams: Dict[Tuple[Tuple[str, str], ...], List[List[str]]] = defaultdict(list)
        for labels, timestamp, line in entries:
            streams[labels].append([timestamp, line])
        return {
            "streams": [
                {"stream": dict(labels), "values": values}
                for labels, values in streams.items()
            ]
        }

    def flush(self) -> None:
        """Pushes everything buffered so far. Network errors are reported on stderr and the batch is dropped."""
        with self._send_lock:
            with self._pending_lock:
                entries = list(self._pending)
                self._pending.clear()
            if not entries:
                return

            headers = {'Content-Type': 'application/json'}
            if self.org_id:
                headers['X-Scope-OrgID'] = self.org_id
            try:
                response = requests.post(self.url, json=self.build_payload(entries), headers=headers, timeout=5)
            except requests.RequestException as e:
                # Logging here would recurse into this handler.
                print(f"CRITICAL: Failed to send {len(entries)} logs to Loki: {e}", file=sys.stderr)
                return
            # 204 No Content is the success status for Loki push
            if response.status_code != 204:
                print(f"ERROR: Loki returned non-204 status: {response.status_code} - {response.text}", file=sys.stderr)

    def close(self) -> None:
        """Stops the flush thread after its final flush."""
        self._stop_event.set()
        if self._flush_thread.is_alive():
            self._flush_thread.join(timeout=self.flush_interval + 2)
        super().close()
