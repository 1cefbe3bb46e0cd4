"""
Cooperative scheduler driving script procedures on a virtual clock.

Script procedures are ``async def`` functions. They suspend only by awaiting
one of the scheduler's suspension points:

- ``await scene.wait(seconds)``
- ``await scene.advance(signal, delta, duration)`` / ``await scene.tween(...)``
- ``await task`` (join a task started with ``scene.parallel``)

No asyncio event loop is involved: the scheduler sends into the coroutines
itself, one at a time, so only one task body runs at any moment.

Each `Scheduler.tick` advances the clock, resolves tweens, then resumes every
eligible task in creation order. A task resumes at most once per tick; tasks
spawned during a tick start in that same tick after the already-eligible ones.
"""

from __future__ import annotations

import faulthandler
import inspect
import itertools
import logging
import sys
import time
import warnings
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator, List, Optional

from ..errors import SchedulerStall
from .signal import TIME_EPSILON, DerivedSignal, Signal, SignalGraph

logger = logging.getLogger(__name__)


class TaskState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


_FINAL_STATES = frozenset({TaskState.COMPLETED, TaskState.CANCELLED, TaskState.FAILED})


@dataclass(frozen=True)
class _WaitRequest:
    resume_at: float


@dataclass(frozen=True)
class _JoinRequest:
    task: "Task"


class _Suspension:
    """Awaitable handing one suspension request to the driving scheduler."""

    def __init__(self, request: _WaitRequest):
        self._request = request

    def __await__(self) -> Iterator[Any]:
        yield self._request


class _Join:
    def __init__(self, task: "Task"):
        self._task = task

    def __await__(self) -> Iterator[Any]:
        task = self._task
        if not task.settled:
            yield _JoinRequest(task)
        if task.state is TaskState.FAILED and task.exception is not None:
            raise task.exception
        return task.result


class Task:
    """
    A script procedure scheduled on the virtual clock.

    A task's body may finish before the tasks it spawned with ``parallel``;
    the task counts as `settled` only once its body and all its children are
    done. Awaiting a task waits for it to settle and returns its result (or
    re-raises its exception).
    """

    def __init__(
        self,
        scheduler: "Scheduler",
        procedure: Callable[..., Any],
        args: tuple,
        kwargs: dict,
        parent: Optional["Task"],
        sequence: int,
        name: Optional[str] = None,
    ):
        self._scheduler = scheduler
        self._procedure = procedure
        self._args = args
        self._kwargs = kwargs
        self._coro = None
        self._waiting_on: Optional[Task] = None
        self._last_tick = -1
        self._unsettled_children = 0
        self._counted_settled = False
        self.parent = parent
        self.children: List[Task] = []
        self.sequence = sequence
        self.name = name or getattr(procedure, "__name__", "task")
        self.state = TaskState.PENDING
        self.resume_at = scheduler.now
        self.result: Any = None
        self.exception: Optional[BaseException] = None

    def __repr__(self) -> str:
        return f"<Task {self.name}#{self.sequence} {self.state.value}>"

    @property
    def done(self) -> bool:
        """True when the task's own body has finished (any final state)."""
        return self.state in _FINAL_STATES

    @property
    def settled(self) -> bool:
        return self.done and self._unsettled_children == 0

    def descendants(self) -> Iterator["Task"]:
        """Every task spawned below this one, depth-first in creation order."""
        stack = list(reversed(self.children))
        while stack:
            task = stack.pop()
            yield task
            stack.extend(reversed(task.children))

    def cancel(self) -> None:
        self._scheduler.cancel(self)

    def __await__(self):
        return _Join(self).__await__()


class Scheduler:
    """
    Virtual-clock executor and the handle passed to script procedures.

    Parameters
    ----------
    graph:
        Signal graph whose clock the scheduler advances.
    stall_budget_s:
        Wall-clock seconds a single resume step may take before a
        `SchedulerStall` warning is issued. ``None`` disables the check.
    watchdog:
        When True, a `faulthandler` watchdog dumps all tracebacks to stderr if
        a step exceeds the stall budget, so a hung task is visible while it
        hangs.
    tree, values:
        Optional `SceneTree` and `ValueRegistry` exposed to scripts as
        ``scene.tree`` and ``scene.values``.
    """

    def __init__(
        self,
        graph: Optional[SignalGraph] = None,
        stall_budget_s: Optional[float] = 1.0,
        watchdog: bool = False,
        tree: Any = None,
        values: Any = None,
    ):
        self.graph = graph or SignalGraph()
        self.tree = tree
        self.values = values
        self.stall_budget_s = stall_budget_s
        self.watchdog = watchdog
        self.root_task: Optional[Task] = None
        self.tick_count = 0
        self._tasks: List[Task] = []
        self._sequence = itertools.count()
        self._current: Optional[Task] = None
        self._root_error: Optional[BaseException] = None

    # ------------------------------------------------------------------
    # Clock and signals
    # ------------------------------------------------------------------

    @property
    def now(self) -> float:
        return self.graph.now

    @property
    def current_task(self) -> Optional[Task]:
        return self._current

    @property
    def tasks(self) -> List[Task]:
        """Tasks whose bodies have not finished, in creation order."""
        return [task for task in self._tasks if not task.done]

    @property
    def finished(self) -> bool:
        return self.root_task is not None and self.root_task.settled

    def signal(self, initial: Any, interpolation=None, owner: Any = None, name: Optional[str] = None) -> Signal:
        return self.graph.signal(initial, interpolation=interpolation, owner=owner, name=name)

    def derive(self, fn: Callable[[], Any], name: Optional[str] = None) -> DerivedSignal:
        return self.graph.derive(fn, name=name)

    def measure(self, text: str, size: float = 1.0) -> float:
        """Width of ``text`` in scene units, using the tree's text metrics."""
        if self.tree is None:
            raise RuntimeError("measure() needs a scheduler bound to a scene tree")
        return self.tree.metrics.measure(str(text), float(size))

    # ------------------------------------------------------------------
    # Task creation
    # ------------------------------------------------------------------

    def start(self, procedure: Callable[..., Any], *args: Any, **kwargs: Any) -> Task:
        """Create the root task; the run ends once it settles."""
        if self.root_task is not None and not self.root_task.settled:
            raise RuntimeError("A root task is already running")
        self.root_task = self.spawn(procedure, *args, parent=None, **kwargs)
        return self.root_task

    def spawn(
        self,
        procedure: Callable[..., Any],
        *args: Any,
        parent: Optional[Task] = None,
        name: Optional[str] = None,
        **kwargs: Any,
    ) -> Task:
        task = Task(self, procedure, args, kwargs, parent, next(self._sequence), name=name)
        if parent is not None:
            parent.children.append(task)
            # A settled ancestor (a task that cancelled itself) is unsettled again.
            node: Optional[Task] = parent
            while node is not None:
                node._unsettled_children += 1
                if not node._counted_settled:
                    break
                node._counted_settled = False
                node = node.parent
        self._tasks.append(task)
        logger.debug("Spawned %r at t=%.4f", task, self.now)
        return task

    def parallel(self, procedure: Callable[..., Any], *args: Any, **kwargs: Any) -> Task:
        """Start ``procedure`` as a child of the calling task without suspending."""
        return self.spawn(procedure, *args, parent=self._current, **kwargs)

    # ------------------------------------------------------------------
    # Suspension points
    # ------------------------------------------------------------------

    def wait(self, seconds: float) -> _Suspension:
        if seconds < 0:
            raise ValueError(f"wait() needs a non-negative duration, got {seconds}")
        self._require_task("wait")
        return _Suspension(_WaitRequest(self.now + float(seconds)))

    def advance(self, signal: Signal, delta: Any, duration: float, easing=None) -> _Suspension:
        """Tween ``signal`` by ``delta`` over ``duration`` and wait for it."""
        return self.tween(signal, signal.read() + delta, duration, easing)

    def tween(self, signal: Signal, value: Any, duration: float, easing=None) -> _Suspension:
        """Tween ``signal`` to ``value`` over ``duration`` and wait for it."""
        self._require_task("tween")
        signal.write(value, duration, easing)
        return self.wait(max(float(duration), 0.0))

    def join(self, task: Task) -> _Join:
        current = self._require_task("join")
        node: Optional[Task] = current
        while node is not None:
            if node is task:
                raise RuntimeError(f"{current!r} cannot join {task!r}: it would wait on itself")
            node = node.parent
        return _Join(task)

    def _require_task(self, operation: str) -> Task:
        if self._current is None:
            raise RuntimeError(f"{operation}() must be awaited from a scheduled task")
        return self._current

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self, task: Task) -> None:
        """Cancel ``task`` and every descendant whose body is still running."""
        stack = [task]
        while stack:
            target = stack.pop()
            if target.settled:
                continue
            stack.extend(reversed(target.children))
            if target.done:
                continue
            target.state = TaskState.CANCELLED
            target._waiting_on = None
            if target is not self._current and target._coro is not None:
                target._coro.close()
            logger.debug("Cancelled %r", target)
            self._propagate_settled(target)

    # ------------------------------------------------------------------
    # Driving
    # ------------------------------------------------------------------

    def tick(self, dt: float = 0.0) -> int:
        """
        Advance the clock by ``dt`` and resume every eligible task.

        Returns
        -------
        int
            Number of task steps executed during this tick.

        Raises
        ------
        Exception
            Whatever escaped the root task's body, once per failure.
        """
        if dt < 0:
            raise ValueError(f"Clock step must be non-negative, got {dt}")
        tick_index = self.tick_count
        self.tick_count += 1
        self.graph.advance_to(self.now + float(dt))

        steps = 0
        while True:
            ready = [task for task in self._tasks if self._eligible(task, tick_index)]
            if not ready:
                break
            for task in ready:
                if self._eligible(task, tick_index):
                    self._step(task, tick_index)
                    steps += 1

        remaining = []
        for task in self._tasks:
            if task.done:
                task._coro = None
                task._args, task._kwargs = (), {}
            else:
                remaining.append(task)
        self._tasks = remaining
        if self._root_error is not None:
            error, self._root_error = self._root_error, None
            raise error
        return steps

    def run_until(self, time_s: float, step: float) -> int:
        """Tick with ``step`` until the clock reaches ``time_s``; returns ticks run."""
        if step <= 0:
            raise ValueError("step must be positive")
        ticks = 0
        while self.now < time_s - TIME_EPSILON:
            self.tick(min(step, time_s - self.now))
            ticks += 1
        return ticks

    def _eligible(self, task: Task, tick_index: int) -> bool:
        if task._last_tick == tick_index:
            return False
        if task.state is TaskState.PENDING:
            return True
        if task.state is not TaskState.SUSPENDED:
            return False
        if task._waiting_on is not None:
            return task._waiting_on.settled
        return task.resume_at <= self.now + TIME_EPSILON

    def _step(self, task: Task, tick_index: int) -> None:
        task._last_tick = tick_index
        task._waiting_on = None
        task.state = TaskState.RUNNING
        previous, self._current = self._current, task
        started = time.perf_counter()
        armed = self._arm_watchdog()
        try:
            request = self._advance_coroutine(task)
        except StopIteration as stop:
            self._complete(task, stop.value)
        except Exception as exc:
            self._fail(task, exc)
        else:
            if request is not None:
                self._suspend(task, request)
        finally:
            if armed:
                faulthandler.cancel_dump_traceback_later()
            self._current = previous
            self._check_stall(task, time.perf_counter() - started)

    def _advance_coroutine(self, task: Task):
        if task._coro is None:
            outcome = task._procedure(*task._args, **task._kwargs)
            if not inspect.iscoroutine(outcome):
                self._complete(task, outcome)
                return None
            task._coro = outcome
        request = task._coro.send(None)
        while not isinstance(request, (_WaitRequest, _JoinRequest)):
            request = task._coro.throw(
                TypeError(f"{task.name} awaited {request!r}; only scheduler suspension points may be awaited")
            )
        return request

    def _suspend(self, task: Task, request) -> None:
        if task.state is TaskState.CANCELLED:
            task._coro.close()
            return
        task.state = TaskState.SUSPENDED
        if isinstance(request, _JoinRequest):
            task._waiting_on = request.task
        else:
            task.resume_at = request.resume_at

    def _complete(self, task: Task, result: Any) -> None:
        if task.state is not TaskState.CANCELLED:
            task.state = TaskState.COMPLETED
            task.result = result
        logger.debug("%r finished at t=%.4f", task, self.now)
        self._propagate_settled(task)

    def _fail(self, task: Task, exc: Exception) -> None:
        task.state = TaskState.FAILED
        task.exception = exc
        for child in task.children:
            self.cancel(child)
        self._propagate_settled(task)
        joined = any(other._waiting_on is task for other in self._tasks)
        if task is self.root_task:
            self._root_error = exc
        elif joined:
            logger.debug("%r failed: %s", task, exc)
        else:
            logger.error("Task %r failed: %s", task, exc, exc_info=exc)

    def _propagate_settled(self, task: Task) -> None:
        node: Optional[Task] = task
        while node is not None and not node._counted_settled and node.settled:
            node._counted_settled = True
            parent = node.parent
            if parent is not None:
                parent._unsettled_children -= 1
            node = parent

    def _arm_watchdog(self) -> bool:
        if not self.watchdog or not self.stall_budget_s or sys.__stderr__ is None:
            return False
        faulthandler.dump_traceback_later(self.stall_budget_s, exit=False, file=sys.__stderr__)
        return True

    def _check_stall(self, task: Task, elapsed: float) -> None:
        if self.stall_budget_s is None or elapsed <= self.stall_budget_s:
            return
        message = (
            f"{task!r} ran {elapsed:.3f}s without reaching a suspension point "
            f"(budget {self.stall_budget_s:.3f}s)"
        )
        logger.warning(message)
        warnings.warn(message, SchedulerStall, stacklevel=3)
