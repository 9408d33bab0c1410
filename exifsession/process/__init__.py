"""
The process package.
Manages command/response sessions with external tool processes.

This package contains the ProcessSupervisor that launches a tool, the
ProtocolSession that frames its stdin/stdout, the StderrMonitor draining its
error stream, the LifecycleRegistry that tracks live sessions for leak
cleanup at exit, and the InactivityReaper that closes idle sessions.
"""
from .errors import (
    ClosedError,
    EmptyResponseError,
    ProtocolError,
    SessionError,
    StartupError,
    TransportError,
)
from .reaper import InactivityReaper
from .registry import LifecycleRegistry, get_registry
from .session import ProtocolSession
from .stderr_monitor import StderrMonitor
from .supervisor import ProcessSupervisor, destroy_process

__all__ = [
    'ClosedError',
    'EmptyResponseError',
    'InactivityReaper',
    'LifecycleRegistry',
    'ProcessSupervisor',
    'ProtocolError',
    'ProtocolSession',
    'SessionError',
    'StartupError',
    'StderrMonitor',
    'TransportError',
    'destroy_process',
    'get_registry',
]
