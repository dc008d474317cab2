"""One-time bootstrap routines run before the first intercepted request."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from .hooks import invoke, new_id

logger = logging.getLogger("hookline.startup")

LATE_REGISTRATION = "late-registration"


class StartupState(Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"


@dataclass
class StartupContext:
    """Argument passed to every startup process."""

    trigger: str
    context: dict[str, Any] = field(default_factory=dict)
    started_at: float = field(default_factory=time.time)


@dataclass
class StartupProcess:
    id: str
    callback: Callable[[StartupContext], Any]
    priority: int = 0
    run_if_already_started: bool = True
    sequence: int = 0


class StartupCoordinator:
    """Runs registered startup processes exactly once.

    The first :meth:`ensure_startup` call moves the coordinator out of
    ``NOT_STARTED`` before it awaits anything, so concurrent requests
    racing into it cannot run the batch twice. Processes registered once
    startup has been initiated run on their own with the
    ``late-registration`` trigger.
    """

    def __init__(self) -> None:
        self._processes: list[StartupProcess] = []
        self._state = StartupState.NOT_STARTED
        self._sequence = 0
        self._pending: list[StartupProcess] = []
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def state(self) -> StartupState:
        return self._state

    @property
    def initiated(self) -> bool:
        return self._state is not StartupState.NOT_STARTED

    @property
    def processes(self) -> list[StartupProcess]:
        return list(self._processes)

    def register(
        self,
        callback: Callable[[StartupContext], Any],
        *,
        priority: int = 0,
        id: str | None = None,
        run_if_already_started: bool = True,
    ) -> str:
        """Add a startup process and return its id."""
        process = StartupProcess(
            id=id or new_id("startup"),
            callback=callback,
            priority=int(priority),
            run_if_already_started=run_if_already_started,
            sequence=self._sequence,
        )
        self._sequence += 1
        self._processes = [p for p in self._processes if p.id != process.id]
        self._processes.append(process)
        self._processes.sort(key=lambda p: (-p.priority, p.sequence))
        logger.debug("Registered startup process: %s (priority %d)", process.id, process.priority)

        if self.initiated and process.run_if_already_started:
            self._schedule_late(process)

        return process.id

    def remove(self, process_id: str) -> None:
        self._processes = [p for p in self._processes if p.id != process_id]
        self._pending = [p for p in self._pending if p.id != process_id]

    async def ensure_startup(self, trigger: str, context: dict[str, Any] | None = None) -> None:
        """Run every registered process once, in priority order."""
        if self.initiated:
            self._flush_pending()
            return

        # No await before this point: the flip is atomic on the event loop
        self._state = StartupState.RUNNING
        batch = list(self._processes)
        logger.debug("Running %d startup process(es), trigger=%s", len(batch), trigger)

        try:
            for process in batch:
                await self._run_process(process, trigger, context)
        finally:
            self._state = StartupState.COMPLETED

    async def drain(self) -> None:
        """Wait for scheduled late-registration runs to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel late-registration runs that have not finished."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._pending.clear()

    def _schedule_late(self, process: StartupProcess) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Picked up by the next ensure_startup() call
            self._pending.append(process)
            return
        task = loop.create_task(self._run_process(process, LATE_REGISTRATION, {}))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _flush_pending(self) -> None:
        pending, self._pending = self._pending, []
        for process in pending:
            self._schedule_late(process)

    async def _run_process(
        self, process: StartupProcess, trigger: str, context: dict[str, Any] | None
    ) -> None:
        ctx = StartupContext(trigger=trigger, context=dict(context or {}))
        try:
            await invoke(process.callback, ctx)
        except Exception:
            logger.error("Startup process failed (%s)", process.id, exc_info=True)
