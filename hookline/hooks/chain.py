"""Hook registry with priority ordering and error isolation."""

from __future__ import annotations

import itertools
import logging
from typing import Any

from . import HookChannel, HookEntry, HookFn, invoke, new_id

logger = logging.getLogger("hookline.hooks")


class HookRegistry:
    """Owns one ordered hook list per :class:`HookChannel`.

    Entries run by descending priority; entries with equal priority run
    in registration order. If a hook raises, the error is logged and the
    chain continues with the payload it was given.
    """

    def __init__(self) -> None:
        self._hooks: dict[HookChannel, list[HookEntry]] = {c: [] for c in HookChannel}
        self._sequence = itertools.count()

    def register(
        self,
        channel: HookChannel | str,
        callback: HookFn,
        *,
        priority: int = 0,
        id: str | None = None,
        enabled: bool = True,
    ) -> str:
        """Register a hook on a channel and return its id.

        Registering an id that already exists on the channel replaces
        the previous entry.
        """
        channel = HookChannel.parse(channel)
        hook_id = id or new_id("hook")
        entries = [e for e in self._hooks[channel] if e.id != hook_id]
        entries.append(
            HookEntry(
                id=hook_id,
                callback=callback,
                priority=int(priority),
                enabled=enabled,
                sequence=next(self._sequence),
            )
        )
        entries.sort(key=lambda e: (-e.priority, e.sequence))
        self._hooks[channel] = entries
        logger.debug("Registered hook: %s for %s (priority %d)", hook_id, channel.value, priority)
        return hook_id

    def remove(self, channel: HookChannel | str, hook_id: str) -> None:
        """Remove a hook by id. Unknown ids are ignored."""
        channel = HookChannel.parse(channel)
        self._hooks[channel] = [e for e in self._hooks[channel] if e.id != hook_id]

    def set_enabled(self, channel: HookChannel | str, hook_id: str, enabled: bool) -> bool:
        """Toggle a hook without losing its position. Returns False if not found."""
        channel = HookChannel.parse(channel)
        for entry in self._hooks[channel]:
            if entry.id == hook_id:
                entry.enabled = enabled
                return True
        return False

    async def execute(self, channel: HookChannel | str, payload: Any) -> Any:
        """Run the enabled hooks of ``channel`` in order over ``payload``."""
        channel = HookChannel.parse(channel)
        result = payload
        # Copy so hooks may register/remove entries while the chain runs
        for entry in list(self._hooks[channel]):
            if not entry.enabled:
                continue
            try:
                hook_result = await invoke(entry.callback, result)
            except Exception:
                logger.error("Hook %s:%s failed", channel.value, entry.id, exc_info=True)
                continue
            if hook_result is not None:
                result = hook_result
        return result

    def entries(self, channel: HookChannel | str) -> list[HookEntry]:
        """Return a copy of a channel's entries in execution order."""
        return list(self._hooks[HookChannel.parse(channel)])

    def list_hooks(self, channel: HookChannel | str | None = None) -> list[str]:
        """Return registered hook ids, optionally filtered by channel."""
        if channel is not None:
            return [e.id for e in self.entries(channel)]
        return [f"{c.value}:{e.id}" for c in HookChannel for e in self._hooks[c]]

    def clear(self) -> None:
        for channel in HookChannel:
            self._hooks[channel] = []
