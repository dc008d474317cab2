"""
hookline - request interception hooks for httpx.

Routes outgoing requests through ordered hook channels, runs one-time
startup processes before the first request and drives recurring
background loops.
"""

from .errors import (
    ConfigError,
    HooklineError,
    LoopConfigError,
    TransformParseError,
    UnknownChannelError,
)
from .hooks import BodyType, HookChannel
from .loops import LoopConfig, LoopController, TaskScheduler
from .startup import StartupCoordinator
from .store import RequestStore, StoredRecord
from .system import HookSystem

__version__ = "0.1.0"

__all__ = [
    "BodyType",
    "ConfigError",
    "HookChannel",
    "HookSystem",
    "HooklineError",
    "LoopConfig",
    "LoopConfigError",
    "LoopController",
    "RequestStore",
    "StartupCoordinator",
    "StoredRecord",
    "TaskScheduler",
    "TransformParseError",
    "UnknownChannelError",
]
