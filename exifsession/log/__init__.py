"""
Logging module for exifsession.
This module provides functionality to set up console and Loki logging.
"""

from .setup import setup_logging, set_console_level
from .handler import LokiHandler

__all__ = ["setup_logging", "set_console_level", "LokiHandler"]
