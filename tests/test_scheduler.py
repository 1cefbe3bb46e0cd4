from __future__ import annotations

import asyncio
import logging
import time

import pytest

from tweengraph.core.scheduler import Scheduler, TaskState
from tweengraph.core.signal import SignalGraph
from tweengraph.errors import SchedulerStall


async def sleeper(scene: Scheduler, seconds: float, log: list, name: str) -> str:
    await scene.wait(seconds)
    log.append((name, scene.now))
    return name


def test_parallel_waits_complete_on_their_own_instants(scene: Scheduler) -> None:
    log = []
    tasks = {}

    async def root(scene: Scheduler) -> None:
        tasks["short"] = scene.parallel(sleeper, scene, 1.0, log, "short")
        tasks["long"] = scene.parallel(sleeper, scene, 2.0, log, "long")

    root_task = scene.start(root, scene)
    scene.tick(0.0)
    assert root_task.state is TaskState.COMPLETED
    assert not root_task.settled

    scene.run_until(1.0, step=0.25)
    assert tasks["short"].state is TaskState.COMPLETED
    assert tasks["long"].state is TaskState.SUSPENDED
    assert log == [("short", 1.0)]

    scene.run_until(2.0, step=0.25)
    assert tasks["long"].state is TaskState.COMPLETED
    assert log == [("short", 1.0), ("long", 2.0)]
    assert scene.finished


def test_advance_tweens_relative_to_current_value(scene: Scheduler, graph: SignalGraph) -> None:
    value = graph.signal(5.0)

    async def root(scene: Scheduler) -> None:
        await scene.advance(value, 10, 2.0)

    task = scene.start(root, scene)
    scene.tick(0.0)
    assert value() == 5.0

    scene.tick(1.0)
    assert value() == 10.0
    assert task.state is TaskState.SUSPENDED

    scene.tick(1.0)
    assert value() == 15.0
    assert task.state is TaskState.COMPLETED


def test_tween_targets_absolute_value_with_easing(scene: Scheduler, graph: SignalGraph) -> None:
    value = graph.signal(0.0)

    async def root(scene: Scheduler) -> None:
        await scene.tween(value, 8.0, 1.0, easing="ease_in_quad")

    scene.start(root, scene)
    scene.tick(0.0)
    scene.tick(0.5)
    assert value() == pytest.approx(2.0)
    scene.tick(0.5)
    assert value() == 8.0
    assert scene.finished


def test_wait_zero_resumes_on_next_tick(scene: Scheduler) -> None:
    seen = []

    async def root(scene: Scheduler) -> None:
        seen.append(scene.tick_count)
        await scene.wait(0)
        seen.append(scene.tick_count)

    scene.start(root, scene)
    scene.tick(0.0)
    assert seen == [1]
    scene.tick(0.0)
    assert seen == [1, 2]


def test_tasks_resume_in_creation_order(scene: Scheduler) -> None:
    order = []

    async def child(scene: Scheduler, name: str) -> None:
        order.append((name, "start", scene.now))
        await scene.wait(1.0)
        order.append((name, "resume", scene.now))

    async def root(scene: Scheduler) -> None:
        scene.parallel(child, scene, "first")
        scene.parallel(child, scene, "second")
        await scene.wait(1.0)
        order.append(("root", "resume", scene.now))
        scene.parallel(child, scene, "late")

    scene.start(root, scene)
    scene.tick(0.0)
    scene.tick(1.0)
    assert order == [
        ("first", "start", 0.0),
        ("second", "start", 0.0),
        ("root", "resume", 1.0),
        ("first", "resume", 1.0),
        ("second", "resume", 1.0),
        ("late", "start", 1.0),
    ]


def test_tween_resolution_precedes_task_resumption(scene: Scheduler, graph: SignalGraph) -> None:
    value = graph.signal(0.0)
    seen = []

    async def writer(scene: Scheduler) -> None:
        value.write(4.0, 2.0)
        await scene.wait(1.0)

    async def reader(scene: Scheduler) -> None:
        await scene.wait(1.0)
        seen.append(value())

    async def root(scene: Scheduler) -> None:
        scene.parallel(writer, scene)
        scene.parallel(reader, scene)

    scene.start(root, scene)
    scene.tick(0.0)
    scene.tick(1.0)
    assert seen == [2.0]


def test_join_returns_result_on_the_same_tick(scene: Scheduler) -> None:
    results = []

    async def compute(scene: Scheduler, value: int) -> int:
        await scene.wait(0.5)
        return value * 2

    async def root(scene: Scheduler) -> None:
        task = scene.parallel(compute, scene, 21)
        results.append((await task, scene.now))
        other = scene.parallel(compute, scene, 1)
        results.append((await scene.join(other), scene.now))

    scene.start(root, scene)
    scene.tick(0.0)
    scene.run_until(1.0, step=0.5)
    assert results == [(42, 0.5), (2, 1.0)]
    assert scene.finished


def test_join_waits_for_grandchildren(scene: Scheduler) -> None:
    log = []

    async def spawner(scene: Scheduler) -> None:
        scene.parallel(sleeper, scene, 2.0, log, "grandchild")

    async def root(scene: Scheduler) -> None:
        await scene.parallel(spawner, scene)
        log.append(("joined", scene.now))

    scene.start(root, scene)
    scene.tick(0.0)
    scene.run_until(2.0, step=0.5)
    assert log == [("grandchild", 2.0), ("joined", 2.0)]


def test_joining_a_settled_task_does_not_suspend(scene: Scheduler) -> None:
    log = []

    async def root(scene: Scheduler) -> None:
        task = scene.parallel(lambda: "plain")
        await scene.wait(0)
        log.append(await task)
        log.append(scene.tick_count)

    scene.start(root, scene)
    scene.tick(0.0)
    scene.tick(0.0)
    assert log == ["plain", 2]


def test_plain_functions_complete_immediately(scene: Scheduler) -> None:
    task = scene.start(lambda: 7)
    scene.tick(0.0)
    assert task.state is TaskState.COMPLETED
    assert task.result == 7
    assert scene.finished


def test_joining_an_ancestor_is_rejected(scene: Scheduler) -> None:
    async def child(scene: Scheduler, parent) -> None:
        await scene.join(parent)

    async def root(scene: Scheduler) -> None:
        scene.parallel(child, scene, scene.current_task)
        await scene.wait(1.0)

    scene.start(root, scene)
    scene.tick(0.0)
    failed = [task for task in scene.root_task.children if task.state is TaskState.FAILED]
    assert len(failed) == 1
    assert isinstance(failed[0].exception, RuntimeError)


def test_cancel_is_transitive_and_closes_coroutines(scene: Scheduler) -> None:
    log = []
    spawned = {}

    async def worker(scene: Scheduler, name: str) -> None:
        try:
            while True:
                await scene.wait(1.0)
                log.append((name, scene.now))
        finally:
            log.append((name, "closed"))

    async def middle(scene: Scheduler) -> None:
        spawned["worker"] = scene.parallel(worker, scene, "worker")
        await scene.wait(10.0)

    async def root(scene: Scheduler) -> None:
        spawned["middle"] = scene.parallel(middle, scene)
        await scene.wait(1.5)
        spawned["middle"].cancel()

    scene.start(root, scene)
    scene.tick(0.0)
    scene.run_until(3.0, step=0.5)

    assert spawned["middle"].state is TaskState.CANCELLED
    assert spawned["worker"].state is TaskState.CANCELLED
    assert log == [("worker", 1.0), ("worker", "closed")]
    assert scene.finished
    assert scene.tasks == []


def test_task_cancelling_itself_stops_at_next_suspension(scene: Scheduler) -> None:
    log = []

    async def root(scene: Scheduler) -> None:
        scene.current_task.cancel()
        log.append("still running")
        await scene.wait(1.0)
        log.append("never")

    task = scene.start(root, scene)
    scene.tick(0.0)
    scene.run_until(2.0, step=1.0)
    assert task.state is TaskState.CANCELLED
    assert log == ["still running"]


def test_child_failure_is_raised_to_joiner(scene: Scheduler) -> None:
    caught = []

    async def broken(scene: Scheduler) -> None:
        await scene.wait(0.1)
        raise ValueError("boom")

    async def root(scene: Scheduler) -> None:
        task = scene.parallel(broken, scene)
        try:
            await task
        except ValueError as exc:
            caught.append(str(exc))

    scene.start(root, scene)
    scene.tick(0.0)
    scene.run_until(0.2, step=0.1)
    assert caught == ["boom"]
    assert scene.finished


def test_failure_cancels_descendants(scene: Scheduler) -> None:
    log = []
    spawned = {}

    async def failing_parent(scene: Scheduler) -> None:
        spawned["child"] = scene.parallel(sleeper, scene, 5.0, log, "child")
        await scene.wait(1.0)
        raise KeyError("gone")

    async def root(scene: Scheduler) -> None:
        spawned["parent"] = scene.parallel(failing_parent, scene)
        try:
            await spawned["parent"]
        except KeyError:
            log.append("caught")

    scene.start(root, scene)
    scene.tick(0.0)
    scene.run_until(6.0, step=1.0)
    assert spawned["parent"].state is TaskState.FAILED
    assert spawned["child"].state is TaskState.CANCELLED
    assert log == ["caught"]


def test_unjoined_child_failure_is_logged(scene: Scheduler, caplog: pytest.LogCaptureFixture) -> None:
    async def broken(scene: Scheduler) -> None:
        raise RuntimeError("lost")

    async def root(scene: Scheduler) -> None:
        scene.parallel(broken, scene)
        await scene.wait(1.0)

    scene.start(root, scene)
    with caplog.at_level(logging.ERROR, logger="tweengraph.core.scheduler"):
        scene.tick(0.0)
    assert "lost" in caplog.text
    assert scene.root_task.state is TaskState.SUSPENDED


def test_root_failure_is_raised_from_tick(scene: Scheduler) -> None:
    async def root(scene: Scheduler) -> None:
        await scene.wait(1.0)
        raise LookupError("root broke")

    scene.start(root, scene)
    scene.tick(0.0)
    with pytest.raises(LookupError, match="root broke"):
        scene.tick(1.0)
    assert scene.root_task.state is TaskState.FAILED
    scene.tick(1.0)


def test_foreign_awaitables_are_rejected(scene: Scheduler) -> None:
    async def root(scene: Scheduler) -> None:
        await asyncio.sleep(0)

    scene.start(root, scene)
    with pytest.raises(TypeError, match="suspension points"):
        scene.tick(0.0)


def test_suspension_points_require_a_running_task(scene: Scheduler, graph: SignalGraph) -> None:
    with pytest.raises(RuntimeError):
        scene.wait(1.0)
    with pytest.raises(RuntimeError):
        scene.tween(graph.signal(0.0), 1.0, 1.0)


def test_negative_durations_are_rejected(scene: Scheduler) -> None:
    with pytest.raises(ValueError):
        scene.tick(-1.0)

    async def root(scene: Scheduler) -> None:
        await scene.wait(-1.0)

    scene.start(root, scene)
    with pytest.raises(ValueError):
        scene.tick(0.0)


def test_long_step_warns_about_stall(graph: SignalGraph, caplog: pytest.LogCaptureFixture) -> None:
    scene = Scheduler(graph, stall_budget_s=0.01)

    def busy() -> None:
        time.sleep(0.05)

    scene.start(busy)
    with pytest.warns(SchedulerStall):
        scene.tick(0.0)
    assert "without reaching a suspension point" in caplog.text


def test_stall_check_can_be_disabled(graph: SignalGraph, recwarn: pytest.WarningsRecorder) -> None:
    scene = Scheduler(graph, stall_budget_s=None)
    scene.start(lambda: time.sleep(0.01))
    scene.tick(0.0)
    assert not [w for w in recwarn if issubclass(w.category, SchedulerStall)]


def test_measure_uses_tree_metrics(scene: Scheduler) -> None:
    assert scene.measure("mario", 2.0) == 80.0
    assert scene.measure(12) == 16.0


def test_long_parallel_chain_settles(scene: Scheduler) -> None:
    reached = []

    async def step(scene: Scheduler, n: int) -> None:
        await scene.wait(0.01)
        if n < 3000:
            scene.parallel(step, scene, n + 1)
        else:
            reached.append(n)

    root = scene.start(step, scene, 0)
    scene.tick(0.0)
    ticks = 0
    while not scene.finished and ticks < 4000:
        scene.tick(0.01)
        ticks += 1

    assert reached == [3000]
    assert root.settled
    assert scene.tasks == []
    assert sum(1 for _ in root.descendants()) == 3000


def test_cancelling_a_long_chain_is_iterative(scene: Scheduler) -> None:
    async def step(scene: Scheduler, n: int) -> None:
        await scene.wait(0.01)
        scene.parallel(step, scene, n + 1)

    root = scene.start(step, scene, 0)
    scene.tick(0.0)
    for _ in range(2500):
        scene.tick(0.01)
    assert not scene.finished

    root.cancel()
    assert scene.finished
    assert all(task.done for task in root.descendants())


def test_self_cancelled_task_spawning_a_child_is_unsettled_again(scene: Scheduler) -> None:
    spawned = {}

    async def root(scene: Scheduler) -> None:
        scene.current_task.cancel()
        spawned["child"] = scene.parallel(sleeper, scene, 1.0, [], "child")

    task = scene.start(root, scene)
    scene.tick(0.0)
    assert task.state is TaskState.CANCELLED
    assert not task.settled
    scene.tick(1.0)
    assert spawned["child"].state is TaskState.COMPLETED
    assert scene.finished
