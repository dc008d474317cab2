"""Exception types raised by hookline.

Only a handful of failures ever reach callers. Hook, startup and loop
task failures are isolated and logged instead of raised.
"""

from __future__ import annotations


class HooklineError(Exception):
    """Base class for all hookline errors."""


class UnknownChannelError(HooklineError, ValueError):
    """Raised when a hook channel name is not one of the known channels."""

    def __init__(self, name: object) -> None:
        super().__init__(f"Unknown hook channel: {name!r}")
        self.name = name


class TransformParseError(HooklineError, ValueError):
    """A data-transform hook produced a body that no longer parses as JSON."""

    def __init__(self, url: str, cause: Exception) -> None:
        super().__init__(f"Transformed JSON body for {url} is not valid JSON: {cause}")
        self.url = url
        self.cause = cause


class LoopConfigError(HooklineError, ValueError):
    """Invalid event loop configuration."""


class ConfigError(HooklineError):
    """The configuration file could not be read or has the wrong shape."""
