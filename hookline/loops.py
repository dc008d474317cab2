"""Recurring background loops with dynamic interval, condition and stop rules.

Each loop runs as its own asyncio task (the loop's *actor*). The actor
owns the wait between ticks and is woken through an inbox queue whenever
the controller is reconfigured or stopped, so a pending wait is always
re-planned with the current configuration rather than finished with a
stale one.
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Union

from .errors import LoopConfigError
from .hooks import invoke, new_id

logger = logging.getLogger("hookline.loops")

STOP_MANUAL = "manual"
STOP_CONDITION = "condition"
STOP_MAX_ITERATIONS = "maxIterations"
STOP_SHUTDOWN = "shutdown"
STOP_REPLACED = "replaced"
STOP_ERROR = "error"


@dataclass
class LoopState:
    """Snapshot of a loop's progress."""

    id: str
    iterations: int = 0
    last_run_at: float | None = None
    running: bool = False
    stop_reason: str | None = None


Interval = Union[float, int, Callable[[LoopState], float]]


@dataclass
class LoopConfig:
    """Configuration of one loop.

    ``interval`` is a number of seconds or a callable computing it from
    the loop state after each tick. ``condition`` is checked before each
    tick; when it returns false the loop stops with reason
    ``"condition"``.
    """

    task: Callable[[LoopTick], Any] | None = None
    interval: Interval = 1.0
    condition: Callable[[LoopState], Any] | None = None
    max_iterations: int | None = None
    on_stop: Callable[[LoopState, str], Any] | None = None
    auto_start: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str | None = None


@dataclass
class LoopTick:
    """Argument passed to a loop task on every tick."""

    state: LoopState
    config: LoopConfig
    stop: Callable[..., None]


_CONFIG_FIELDS = {f.name for f in dataclasses.fields(LoopConfig)}

# Inbox messages
_WAKE = "wake"


class LoopController:
    """Handle for one recurring loop."""

    def __init__(self, loop_id: str, config: LoopConfig) -> None:
        self.id = loop_id
        self._config = config
        self._config.id = loop_id
        self._state = LoopState(id=loop_id)
        self._generation = 0
        self._inbox: asyncio.Queue[str] | None = None
        self._actor: asyncio.Task[None] | None = None
        self._callbacks: set[asyncio.Task[Any]] = set()

    @property
    def state(self) -> LoopState:
        return dataclasses.replace(self._state)

    @property
    def config(self) -> LoopConfig:
        return dataclasses.replace(self._config, metadata=dict(self._config.metadata))

    @property
    def running(self) -> bool:
        return self._state.running

    def start(self) -> None:
        """Start the loop, resetting the iteration counter.

        Must be called with an asyncio event loop running.
        """
        if self._state.running:
            return
        loop = asyncio.get_running_loop()

        self._state.running = True
        self._state.iterations = 0
        self._state.stop_reason = None
        self._generation += 1
        self._inbox = asyncio.Queue()
        self._actor = loop.create_task(
            self._run(self._generation, self._inbox), name=f"hookline-loop-{self.id}"
        )
        logger.debug("Event loop started: %s", self.id)

    def stop(self, reason: str = STOP_MANUAL) -> None:
        """Stop the loop. Stopping an already stopped loop does nothing."""
        if not self._state.running:
            return

        self._state.running = False
        self._state.stop_reason = reason
        if self._inbox is not None:
            self._inbox.put_nowait(_WAKE)
        logger.debug("Event loop stopped: %s (%s)", self.id, reason)

        on_stop = self._config.on_stop
        if on_stop is None:
            return
        try:
            result = on_stop(self.state, reason)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._callbacks.add(task)
                task.add_done_callback(self._on_callback_done)
        except Exception:
            logger.error("Event loop onStop failed (%s)", self.id, exc_info=True)

    def update(self, **fields: Any) -> None:
        """Merge ``fields`` into the live configuration.

        A running loop abandons its current wait and schedules the next
        tick from the new configuration. The iteration counter is kept.
        """
        unknown = set(fields) - (_CONFIG_FIELDS - {"id"})
        if unknown:
            raise LoopConfigError(f"Unknown loop config field(s): {', '.join(sorted(unknown))}")
        if "task" in fields and not callable(fields["task"]):
            raise LoopConfigError("Event loop requires a task function")

        for name, value in fields.items():
            setattr(self._config, name, value)

        if self._state.running and self._inbox is not None:
            self._inbox.put_nowait(_WAKE)

    async def wait(self) -> None:
        """Wait until the current run of the loop has finished."""
        if self._actor is not None:
            await asyncio.gather(self._actor, return_exceptions=True)
        if self._callbacks:
            await asyncio.gather(*list(self._callbacks), return_exceptions=True)

    def _active(self, generation: int) -> bool:
        return self._state.running and self._generation == generation

    async def _run(self, generation: int, inbox: asyncio.Queue[str]) -> None:
        while self._active(generation):
            delay = self._next_delay()
            if delay is None:
                self.stop(STOP_ERROR)
                return
            try:
                await asyncio.wait_for(inbox.get(), timeout=delay)
            except asyncio.TimeoutError:
                await self._tick(generation)
            # A message means the config changed or the loop stopped: re-plan

    async def _tick(self, generation: int) -> None:
        if not self._active(generation):
            return

        condition = self._config.condition
        if condition is not None:
            try:
                proceed = await invoke(condition, self.state)
            except Exception:
                logger.error("Event loop condition failed (%s)", self.id, exc_info=True)
                proceed = False
            if not proceed:
                self.stop(STOP_CONDITION)
                return

        self._state.iterations += 1
        self._state.last_run_at = time.time()

        tick = LoopTick(state=self.state, config=self._config, stop=self.stop)
        try:
            await invoke(self._config.task, tick)
        except Exception:
            logger.error("Event loop task failed (%s)", self.id, exc_info=True)

        if not self._active(generation):
            return

        max_iterations = self._config.max_iterations
        if max_iterations is not None and self._state.iterations >= max_iterations:
            self.stop(STOP_MAX_ITERATIONS)

    def _next_delay(self) -> float | None:
        interval = self._config.interval
        try:
            value = interval(self.state) if callable(interval) else interval
        except Exception:
            logger.error("Event loop interval failed (%s)", self.id, exc_info=True)
            return None
        try:
            delay = float(value)
        except (TypeError, ValueError):
            return 0.0
        if math.isnan(delay) or delay < 0:
            return 0.0
        return delay

    def _on_callback_done(self, task: asyncio.Task[Any]) -> None:
        self._callbacks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Event loop onStop failed (%s)", self.id, exc_info=task.exception())


class TaskScheduler:
    """Creates and tracks :class:`LoopController` instances by id."""

    def __init__(self) -> None:
        self._loops: dict[str, LoopController] = {}

    def create(self, config: LoopConfig | None = None, **fields: Any) -> LoopController:
        """Create a loop from a :class:`LoopConfig` and/or keyword fields.

        The loop starts immediately unless ``auto_start`` is false.
        """
        try:
            if config is None:
                config = LoopConfig(**fields)
            else:
                config = dataclasses.replace(config, **fields)
        except TypeError as e:
            raise LoopConfigError(str(e)) from e

        if not callable(config.task):
            raise LoopConfigError("Event loop requires a task function")

        loop_id = config.id or new_id("loop")
        existing = self._loops.get(loop_id)
        if existing is not None:
            existing.stop(STOP_REPLACED)

        controller = LoopController(loop_id, config)
        self._loops[loop_id] = controller
        if config.auto_start:
            controller.start()
        return controller

    def stop(self, loop_id: str, reason: str = STOP_MANUAL) -> None:
        controller = self._loops.get(loop_id)
        if controller is not None:
            controller.stop(reason)

    def get(self, loop_id: str) -> LoopController | None:
        return self._loops.get(loop_id)

    def list(self) -> list[str]:
        return list(self._loops)

    def remove(self, loop_id: str) -> None:
        """Stop a loop and forget it."""
        controller = self._loops.pop(loop_id, None)
        if controller is not None:
            controller.stop(STOP_MANUAL)

    async def shutdown(self) -> None:
        """Stop every loop and wait for their actors to exit."""
        controllers = list(self._loops.values())
        for controller in controllers:
            controller.stop(STOP_SHUTDOWN)
        for controller in controllers:
            await controller.wait()
