"""Tests for recurring event loops."""

from __future__ import annotations

import asyncio

import pytest

from hookline.errors import LoopConfigError
from hookline.loops import LoopConfig, TaskScheduler


def _run(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


async def _finish(controller, timeout: float = 2.0):
    await asyncio.wait_for(controller.wait(), timeout)


class TestLoopRuns:
    def test_stops_at_max_iterations(self):
        stops = []

        async def main():
            scheduler = TaskScheduler()
            loop = scheduler.create(
                task=lambda tick: None,
                interval=0,
                max_iterations=3,
                on_stop=lambda state, reason: stops.append((state.iterations, reason)),
            )
            await _finish(loop)
            return loop.state

        state = _run(main())
        assert state.iterations == 3
        assert state.running is False
        assert state.stop_reason == "maxIterations"
        assert stops == [(3, "maxIterations")]

    def test_condition_stops_loop(self):
        async def main():
            scheduler = TaskScheduler()
            loop = scheduler.create(
                task=lambda tick: None,
                interval=0,
                condition=lambda state: state.iterations < 4,
            )
            await _finish(loop)
            return loop.state

        state = _run(main())
        assert state.iterations == 4
        assert state.stop_reason == "condition"

    def test_dynamic_interval_sees_updated_state(self):
        seen = []

        def interval(state):
            seen.append(state.iterations)
            return 0.001 + state.iterations * 0.0005

        async def main():
            loop = TaskScheduler().create(task=lambda tick: None, interval=interval, max_iterations=3)
            await _finish(loop)

        _run(main())
        assert seen[:3] == [0, 1, 2]

    def test_task_receives_tick(self):
        ticks = []

        async def task(tick):
            ticks.append((tick.state.iterations, tick.config.metadata["name"]))

        async def main():
            loop = TaskScheduler().create(
                task=task, interval=0, max_iterations=2, metadata={"name": "poller"}
            )
            await _finish(loop)

        _run(main())
        assert ticks == [(1, "poller"), (2, "poller")]

    def test_task_can_stop_its_own_loop(self):
        async def main():
            loop = TaskScheduler().create(task=lambda tick: tick.stop("done"), interval=0)
            await _finish(loop)
            return loop.state

        state = _run(main())
        assert state.iterations == 1
        assert state.stop_reason == "done"

    def test_task_errors_do_not_stop_loop(self, caplog):
        def task(tick):
            raise RuntimeError("tick failed")

        async def main():
            loop = TaskScheduler().create(task=task, interval=0, max_iterations=3, id="flaky")
            await _finish(loop)
            return loop.state

        state = _run(main())
        assert state.iterations == 3
        assert "Event loop task failed (flaky)" in caplog.text

    def test_failing_condition_counts_as_false(self):
        def condition(state):
            raise ValueError("bad condition")

        async def main():
            loop = TaskScheduler().create(task=lambda tick: None, interval=0, condition=condition)
            await _finish(loop)
            return loop.state

        state = _run(main())
        assert state.iterations == 0
        assert state.stop_reason == "condition"

    def test_failing_interval_stops_with_error(self):
        def interval(state):
            raise ValueError("bad interval")

        async def main():
            loop = TaskScheduler().create(task=lambda tick: None, interval=interval)
            await _finish(loop)
            return loop.state

        state = _run(main())
        assert state.stop_reason == "error"

    def test_negative_interval_is_immediate(self):
        async def main():
            loop = TaskScheduler().create(task=lambda tick: None, interval=-5, max_iterations=2)
            await _finish(loop)
            return loop.state

        assert _run(main()).iterations == 2


class TestLoopControl:
    def test_stop_twice_calls_on_stop_once(self):
        stops = []

        async def main():
            loop = TaskScheduler().create(
                task=lambda tick: None,
                interval=10,
                on_stop=lambda state, reason: stops.append(reason),
            )
            loop.stop()
            loop.stop()
            await _finish(loop)
            return loop.state

        state = _run(main())
        assert stops == ["manual"]
        assert state.iterations == 0

    def test_async_on_stop(self):
        stops = []

        async def on_stop(state, reason):
            await asyncio.sleep(0)
            stops.append(reason)

        async def main():
            loop = TaskScheduler().create(task=lambda tick: None, interval=10, on_stop=on_stop)
            loop.stop("manual")
            await _finish(loop)

        _run(main())
        assert stops == ["manual"]

    def test_update_raises_ceiling_without_reset(self):
        holder = {}

        def task(tick):
            if tick.state.iterations == 2:
                holder["loop"].update(max_iterations=5)

        async def main():
            holder["loop"] = TaskScheduler().create(task=task, interval=0, max_iterations=3)
            await _finish(holder["loop"])
            return holder["loop"].state

        state = _run(main())
        assert state.iterations == 5
        assert state.stop_reason == "maxIterations"

    def test_update_replans_pending_wait(self):
        async def main():
            loop = TaskScheduler().create(task=lambda tick: None, interval=60, max_iterations=2)
            await asyncio.sleep(0)
            loop.update(interval=0)
            await _finish(loop)
            return loop.state

        assert _run(main()).iterations == 2

    def test_restart_resets_counter(self):
        stops = []

        async def main():
            loop = TaskScheduler().create(
                task=lambda tick: None,
                interval=0,
                max_iterations=2,
                on_stop=lambda state, reason: stops.append(state.iterations),
            )
            await _finish(loop)
            loop.start()
            await _finish(loop)
            return loop.state

        state = _run(main())
        assert state.iterations == 2
        assert stops == [2, 2]

    def test_auto_start_false(self):
        async def main():
            loop = TaskScheduler().create(task=lambda tick: None, interval=0, auto_start=False)
            await asyncio.sleep(0.01)
            assert loop.running is False
            assert loop.state.iterations == 0

        _run(main())

    def test_state_and_config_are_copies(self):
        async def main():
            loop = TaskScheduler().create(
                task=lambda tick: None, interval=10, auto_start=False, metadata={"a": 1}
            )
            loop.state.iterations = 99
            loop.config.metadata["a"] = 2
            return loop

        loop = _run(main())
        assert loop.state.iterations == 0
        assert loop.config.metadata == {"a": 1}

    def test_update_rejects_unknown_field(self):
        async def main():
            loop = TaskScheduler().create(task=lambda tick: None, auto_start=False)
            with pytest.raises(LoopConfigError):
                loop.update(speed=3)
            with pytest.raises(LoopConfigError):
                loop.update(task="not callable")

        _run(main())


class TestTaskScheduler:
    def test_create_requires_task(self):
        scheduler = TaskScheduler()
        with pytest.raises(LoopConfigError):
            scheduler.create(interval=1)
        with pytest.raises(LoopConfigError):
            scheduler.create(task=lambda tick: None, bogus=True)

    def test_create_from_config_object(self):
        async def main():
            scheduler = TaskScheduler()
            loop = scheduler.create(LoopConfig(task=lambda tick: None, interval=0, id="cfg"), max_iterations=1)
            await _finish(loop)
            return scheduler, loop

        scheduler, loop = _run(main())
        assert loop.id == "cfg"
        assert scheduler.get("cfg") is loop
        assert loop.state.iterations == 1

    def test_same_id_replaces_existing_loop(self):
        stops = []

        async def main():
            scheduler = TaskScheduler()
            first = scheduler.create(
                task=lambda tick: None,
                interval=10,
                id="poll",
                on_stop=lambda state, reason: stops.append(reason),
            )
            second = scheduler.create(task=lambda tick: None, interval=10, id="poll")
            assert scheduler.get("poll") is second
            assert first.running is False
            await scheduler.shutdown()

        _run(main())
        assert stops == ["replaced"]

    def test_list_get_stop_remove(self):
        async def main():
            scheduler = TaskScheduler()
            scheduler.create(task=lambda tick: None, interval=10, id="a")
            scheduler.create(task=lambda tick: None, interval=10, id="b")
            assert sorted(scheduler.list()) == ["a", "b"]

            scheduler.stop("a", "paused")
            assert scheduler.get("a").state.stop_reason == "paused"

            scheduler.remove("b")
            assert scheduler.list() == ["a"]
            assert scheduler.get("b") is None

            # Unknown ids are ignored
            scheduler.stop("missing")
            scheduler.remove("missing")
            await scheduler.shutdown()

        _run(main())

    def test_shutdown_stops_everything(self):
        reasons = []

        async def main():
            scheduler = TaskScheduler()
            for name in ("x", "y"):
                scheduler.create(
                    task=lambda tick: None,
                    interval=10,
                    id=name,
                    on_stop=lambda state, reason: reasons.append(reason),
                )
            await asyncio.wait_for(scheduler.shutdown(), 2)
            return scheduler

        scheduler = _run(main())
        assert reasons == ["shutdown", "shutdown"]
        assert all(not scheduler.get(i).running for i in scheduler.list())
