"""
This module contains the configuration defaults for exifsession.
It defines the external tool path, the wire protocol constants, session
timing, and logging settings used throughout the package.
"""

import os
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=True)

#* --- Core Paths ---
BASE_DIR = pathlib.Path(__file__).resolve().parent.parent  # Project Root
OVERRIDES_JSON_PATH = pathlib.Path(os.getenv("EXIFSESSION_OVERRIDES_PATH", str(BASE_DIR / "overrides.json")))

#* --- External Tool ---
EXIFTOOL_PATH = os.getenv("EXIFTOOL_PATH", "exiftool")
TOOL_CHARSET = os.getenv("EXIFSESSION_CHARSET", "utf-8")

#* --- Wire Protocol (stay-open mode) ---
STAY_OPEN_ARGS = ["-stay_open", "True", "-@", "-"]
VERSION_ARGS = ["-ver"]
EXECUTE_SENTINEL = "-execute"
READY_SENTINEL = "{ready}"
# Written on close() to ask the daemon to exit before it is destroyed.
SHUTDOWN_CONTROL_LINES = "-stay_open\nFalse\n"
TAG_SEPARATOR = ": "

# Stderr lines starting with one of these (case-insensitive) fail the exchange.
ERROR_INDICATORS = tuple(
    token.strip().lower()
    for token in os.getenv("EXIFSESSION_ERROR_INDICATORS", "error").split(",")
    if token.strip()
)

#* --- Session Settings ---
REAPER_IDLE_SECONDS = float(os.getenv("EXIFSESSION_REAPER_IDLE_SECONDS", "600"))  # 10 minutes
GRACEFUL_SHUTDOWN_TIMEOUT = float(os.getenv("EXIFSESSION_GRACEFUL_SHUTDOWN_TIMEOUT", "2"))  # seconds before force-killing
STDERR_BUFFER_LINES = 1000
STDERR_SETTLE_SECONDS = 0.02
STDERR_JOIN_TIMEOUT = 1.0
CREATION_CONTEXT_DEPTH = 12

#* --- Logging ---
VERBOSE_LOGGING = False
LOG_BUFFER_FLUSH_INTERVAL = 10
LOG_BATCH_SIZE = 200

# Grafana Loki (for observability)
LOKI_ENABLED = os.getenv("LOKI_ENABLED", "False").lower() in ('true', '1', 't')
LOKI_URL = os.getenv("LOKI_URL", "http://localhost:3100")
LOKI_ORG_ID = os.getenv("LOKI_ORG_ID", "fake")

#* --- MODIFIABLE SETTINGS (Changeable at runtime via overrides.json) ---
MODIFIABLE_SETTINGS = {
    # External tool
    "EXIFTOOL_PATH", "TOOL_CHARSET",
    # Session
    "ERROR_INDICATORS", "REAPER_IDLE_SECONDS", "GRACEFUL_SHUTDOWN_TIMEOUT",
    "STDERR_BUFFER_LINES", "STDERR_SETTLE_SECONDS",
    # Logging
    "LOG_BUFFER_FLUSH_INTERVAL", "LOG_BATCH_SIZE",
}
