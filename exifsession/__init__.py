"""
exifsession: reliable command/response sessions with an external tool process.

The process package holds the session core; tool.py adds ExifTool-level
helpers on top of it.
"""

from .process import (
    ClosedError,
    EmptyResponseError,
    InactivityReaper,
    LifecycleRegistry,
    ProcessSupervisor,
    ProtocolError,
    ProtocolSession,
    SessionError,
    StartupError,
    TransportError,
    get_registry,
)

__version__ = "0.1.0"

__all__ = [
    "ClosedError",
    "EmptyResponseError",
    "InactivityReaper",
    "LifecycleRegistry",
    "ProcessSupervisor",
    "ProtocolError",
    "ProtocolSession",
    "SessionError",
    "StartupError",
    "TransportError",
    "get_registry",
]
