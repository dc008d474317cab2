"""Load hooks and startup processes from YAML configuration."""

from __future__ import annotations

import functools
import importlib
import logging
import os
import sys
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml

from . import HookChannel
from .chain import HookRegistry
from ..errors import UnknownChannelError
from ..startup import StartupCoordinator

logger = logging.getLogger("hookline.hooks")


def load_hooks_from_config(
    source: Path | str | Mapping[str, Any],
    registry: HookRegistry,
    startup: StartupCoordinator | None = None,
) -> int:
    """Register hooks (and startup processes) declared in a YAML file or mapping.

    Returns the number of hooks and processes successfully registered.
    Entries that cannot be loaded are logged and skipped.
    """
    if isinstance(source, Mapping):
        config = source
    else:
        try:
            config = yaml.safe_load(Path(source).read_text()) or {}
        except Exception:
            logger.error("Failed to parse hooks config: %s", source, exc_info=True)
            return 0

    if not isinstance(config, Mapping):
        logger.error("Hooks config must be a mapping, got %s", type(config).__name__)
        return 0

    # Add custom python paths
    for p in config.get("python_path", None) or []:
        expanded = os.path.expandvars(p)
        if expanded not in sys.path:
            sys.path.insert(0, expanded)

    count = 0

    for channel_name, hook_list in (config.get("hooks", None) or {}).items():
        try:
            channel = HookChannel.parse(channel_name)
        except UnknownChannelError:
            logger.warning("Unknown hook channel: %s", channel_name)
            continue

        if not isinstance(hook_list, list):
            logger.warning("Hook list for %s is not a list", channel_name)
            continue

        for hook_def in hook_list:
            if not hook_def.get("enabled", True):
                continue

            name = hook_def.get("name", "unnamed")
            try:
                fn = _load_function(hook_def)
            except Exception:
                logger.error("Failed to load hook %s", name, exc_info=True)
                continue

            registry.register(
                channel,
                fn,
                priority=int(hook_def.get("priority", 0)),
                id=hook_def.get("id") or hook_def.get("name"),
            )
            count += 1

    startup_list = config.get("startup", None) or []
    if startup_list and startup is None:
        logger.warning("Startup processes declared but no coordinator given; skipped")
        startup_list = []

    for process_def in startup_list:
        if not process_def.get("enabled", True):
            continue

        name = process_def.get("name", "unnamed")
        try:
            fn = _load_function(process_def)
        except Exception:
            logger.error("Failed to load startup process %s", name, exc_info=True)
            continue

        startup.register(
            fn,
            priority=int(process_def.get("priority", 0)),
            id=process_def.get("id") or process_def.get("name"),
            run_if_already_started=process_def.get("run_if_already_started", True),
        )
        count += 1

    return count


def _load_function(definition: Mapping[str, Any]) -> Callable[..., Any]:
    """Import a function from ``module``/``function`` and bind its ``config``."""
    module = importlib.import_module(definition["module"])
    fn = getattr(module, definition["function"])
    if not callable(fn):
        raise TypeError(f"{definition['module']}.{definition['function']} is not callable")

    # Hooks declared with config receive it as a keyword argument
    hook_config = definition.get("config") or {}
    if hook_config:
        fn = functools.partial(fn, config=dict(hook_config))
    return fn
