"""
Reactive signals with dependency tracking and tweened writes.

A `SignalGraph` owns the virtual time used by tweens and the stack of
recomputation contexts used to discover dependencies. Signals come in two
flavours:

- `Signal` (source): holds a value that scripts write, either immediately or
  through a tween that the graph resolves every time the clock advances.
- `DerivedSignal`: holds a function of other signals. It is recomputed lazily
  on the first read after one of the signals it read last time changed.

Invalidation is pushed forward eagerly (each dependent is marked dirty once
per change) while recomputation is pulled on demand, so a derived signal
recomputes at most once per change no matter how many paths lead to it.
"""

from __future__ import annotations

import itertools
import logging
import operator
import weakref
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..errors import CyclicDependency, InvalidInterpolation, SignalWriteError
from .interpolation import Easing, Interpolation, get_easing, interpolate, interpolation_for
from .vector import Vec2

logger = logging.getLogger(__name__)

# Tolerance used when comparing virtual clock instants.
TIME_EPSILON = 1e-9


@dataclass(frozen=True)
class Tween:
    """An in-flight interpolation attached to a source signal."""

    start: Any
    end: Any
    start_time: float
    duration: float
    interpolation: Interpolation
    easing: Easing

    def progress(self, now: float) -> float:
        if self.duration <= 0.0:
            return 1.0
        elapsed = now - self.start_time
        if elapsed >= self.duration - TIME_EPSILON:
            return 1.0
        return min(max(elapsed / self.duration, 0.0), 1.0)

    def sample(self, now: float):
        return interpolate(self.interpolation, self.start, self.end, self.progress(now), self.easing)


class RecomputeContext:
    """Collects the signals read while one derived signal recomputes."""

    def __init__(self, signal: "DerivedSignal"):
        self.signal = signal
        self.dependencies: Dict[int, SignalBase] = {}

    def track(self, source: "SignalBase") -> None:
        self.dependencies.setdefault(source.id, source)


class OwnerExpression:
    """A value computed from the node that owns the property being seeded."""

    def __init__(self, fn: Callable[[Any], Any]):
        self.fn = fn


def from_owner(fn: Callable[[Any], Any]) -> OwnerExpression:
    """
    Mark ``fn`` as a function of the owning node.

    Examples
    --------
    >>> Node(tree, position=from_owner(lambda me: vec2(-me.width() / 2, 0)))
    """
    return OwnerExpression(fn)


class SignalGraph:
    """
    Owner of the virtual time and the dependency-discovery context.

    Parameters
    ----------
    now:
        Initial virtual time in seconds.
    """

    def __init__(self, now: float = 0.0):
        self._now = float(now)
        self._ids = itertools.count(1)
        self._contexts: List[RecomputeContext] = []
        self._tweening: Dict[int, Signal] = {}

    @property
    def now(self) -> float:
        return self._now

    @property
    def active_tweens(self) -> int:
        return len(self._tweening)

    def signal(
        self,
        initial: Any,
        interpolation: Optional[Interpolation] = None,
        owner: Any = None,
        name: Optional[str] = None,
        coerce: Optional[Callable[[Any], Any]] = None,
    ) -> "Signal":
        return Signal(self, initial, interpolation=interpolation, owner=owner, name=name, coerce=coerce)

    def derive(self, fn: Callable[[], Any], name: Optional[str] = None, owner: Any = None) -> "DerivedSignal":
        return DerivedSignal(self, fn, owner=owner, name=name)

    def lift(
        self,
        value: Any,
        *,
        owner: Any = None,
        name: Optional[str] = None,
        interpolation: Optional[Interpolation] = None,
        coerce: Optional[Callable[[Any], Any]] = None,
    ) -> "SignalBase":
        """
        Turn a literal or a signal-producing expression into a signal.

        - existing signals are returned unchanged;
        - callables and `OwnerExpression` values become derived signals;
        - ``{"x": ..., "y": ...}`` mappings with any dynamic component become a
          derived `Vec2`;
        - everything else seeds a source signal (passed through ``coerce``).
        """
        if isinstance(value, SignalBase):
            return value

        convert = coerce or (lambda item: item)

        if isinstance(value, OwnerExpression):
            if owner is None:
                raise ValueError("Owner expressions require an owning node")
            fn = value.fn
            return self.derive(lambda: convert(fn(owner)), name=name, owner=owner)

        if callable(value):
            return self.derive(lambda: convert(value()), name=name, owner=owner)

        if isinstance(value, dict) and value and set(value) <= {"x", "y"}:
            components = {key: value.get(key, 0.0) for key in ("x", "y")}
            if any(_is_dynamic(item) for item in components.values()):
                def _vector() -> Vec2:
                    return Vec2(
                        float(_resolve(components["x"], owner)),
                        float(_resolve(components["y"], owner)),
                    )

                return self.derive(_vector, name=name, owner=owner)
            value = Vec2(float(components["x"]), float(components["y"]))

        return self.signal(value, interpolation=interpolation, owner=owner, name=name, coerce=coerce)

    def advance_to(self, now: float) -> None:
        """Move the virtual clock and resolve every active tween against it."""
        self._now = float(now)
        for signal in list(self._tweening.values()):
            signal._resolve(self._now)

    # Internal API used by signals -------------------------------------------------

    def _next_id(self) -> int:
        return next(self._ids)

    def _track(self, source: "SignalBase") -> None:
        if self._contexts:
            self._contexts[-1].track(source)

    def _cycle_chain(self, signal: "DerivedSignal") -> List[str]:
        chain = [ctx.signal for ctx in self._contexts]
        start = next((i for i, item in enumerate(chain) if item is signal), 0)
        return [item.label for item in chain[start:]] + [signal.label]

    def _invalidate_dependents(self, source: "SignalBase") -> None:
        pending = list(source._dependents.values())
        visited = set()
        while pending:
            derived = pending.pop(0)
            if derived.id in visited:
                continue
            visited.add(derived.id)
            if derived._dirty:
                # Everything downstream of a dirty signal is already dirty.
                continue
            derived._dirty = True
            pending.extend(derived._dependents.values())


def _is_dynamic(value: Any) -> bool:
    return isinstance(value, (SignalBase, OwnerExpression)) or callable(value)


def _resolve(value: Any, owner: Any = None) -> Any:
    if isinstance(value, OwnerExpression):
        return value.fn(owner)
    if isinstance(value, SignalBase) or callable(value):
        return value()
    return value


class SignalBase:
    """Common behaviour of source, derived and read-only signals."""

    def __init__(self, graph: SignalGraph, owner: Any = None, name: Optional[str] = None):
        self._graph = graph
        self.id = graph._next_id()
        self.owner = owner
        self.name = name
        # Weak so that derived signals nobody holds any more (for example the
        # properties of released nodes) drop out of the graph.
        self._dependents: "weakref.WeakValueDictionary[int, DerivedSignal]" = weakref.WeakValueDictionary()
        self._disposed = False

    @property
    def graph(self) -> SignalGraph:
        return self._graph

    @property
    def label(self) -> str:
        return self.name or f"{type(self).__name__}#{self.id}"

    @property
    def disposed(self) -> bool:
        return self._disposed

    def read(self) -> Any:
        raise NotImplementedError

    def __call__(self) -> Any:
        return self.read()

    def map(self, fn: Callable[[Any], Any], name: Optional[str] = None) -> "DerivedSignal":
        """Derived signal applying ``fn`` to this signal's value."""
        return self._graph.derive(lambda: fn(self.read()), name=name)

    def dispose(self) -> None:
        self._dependents.clear()
        self._disposed = True

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.label}>"

    # Arithmetic builds derived signals -------------------------------------------

    def _binary(self, op: Callable[[Any, Any], Any], other: Any, reflected: bool = False) -> "DerivedSignal":
        if reflected:
            return self._graph.derive(lambda: op(_resolve(other), self.read()))
        return self._graph.derive(lambda: op(self.read(), _resolve(other)))

    def __add__(self, other):
        return self._binary(operator.add, other)

    def __radd__(self, other):
        return self._binary(operator.add, other, reflected=True)

    def __sub__(self, other):
        return self._binary(operator.sub, other)

    def __rsub__(self, other):
        return self._binary(operator.sub, other, reflected=True)

    def __mul__(self, other):
        return self._binary(operator.mul, other)

    def __rmul__(self, other):
        return self._binary(operator.mul, other, reflected=True)

    def __truediv__(self, other):
        return self._binary(operator.truediv, other)

    def __rtruediv__(self, other):
        return self._binary(operator.truediv, other, reflected=True)

    def __neg__(self):
        return self._graph.derive(lambda: -self.read())


class Signal(SignalBase):
    """
    Source signal: a value written directly or tweened over virtual time.

    Parameters
    ----------
    graph:
        Graph providing the clock and dependency tracking.
    initial:
        Initial value.
    interpolation:
        Interpolation used by tweened writes. Resolved from the value kind at
        write time when omitted.
    owner:
        Optional owning node; only used for bookkeeping and labels.
    coerce:
        Conversion applied to the initial value and to every written value,
        so tween endpoints keep the property's type (``as_vec2``, ``str``).
    """

    def __init__(
        self,
        graph: SignalGraph,
        initial: Any,
        interpolation: Optional[Interpolation] = None,
        owner: Any = None,
        name: Optional[str] = None,
        coerce: Optional[Callable[[Any], Any]] = None,
    ):
        super().__init__(graph, owner=owner, name=name)
        if isinstance(initial, SignalBase) or callable(initial):
            raise SignalWriteError("Source signals hold plain values; use derive() for expressions")
        self._coerce = coerce
        self._value = initial if coerce is None else coerce(initial)
        self._interpolation = interpolation
        self._tween: Optional[Tween] = None

    @property
    def interpolation(self) -> Optional[Interpolation]:
        return self._interpolation

    @property
    def tween(self) -> Optional[Tween]:
        return self._tween

    def read(self) -> Any:
        self._graph._track(self)
        return self._value

    def write(self, value: Any, duration: Optional[float] = None, easing=None) -> None:
        """
        Set the value now, or tween to it over ``duration`` seconds.

        Raises
        ------
        SignalWriteError
            If ``value`` is a signal or callable.
        InvalidInterpolation
            If ``value`` cannot be interpolated; the previous value is kept.
        """
        if isinstance(value, SignalBase) or callable(value):
            raise SignalWriteError(f"Cannot write an expression into source signal {self.label}")
        if self._coerce is not None:
            value = self._coerce(value)

        if not duration or duration <= 0:
            self._clear_tween()
            self._set(value)
            return

        interpolation = self._interpolation or interpolation_for(self._value, value)
        try:
            interpolation(self._value, value, 0.0)
        except InvalidInterpolation:
            raise
        except (TypeError, ValueError) as exc:
            raise InvalidInterpolation(
                f"Cannot tween {self.label} from {self._value!r} to {value!r}: {exc}"
            ) from exc

        self._tween = Tween(
            start=self._value,
            end=value,
            start_time=self._graph.now,
            duration=float(duration),
            interpolation=interpolation,
            easing=get_easing(easing),
        )
        self._graph._tweening[self.id] = self

    def dispose(self) -> None:
        self._clear_tween()
        super().dispose()

    def _set(self, value: Any) -> None:
        self._value = value
        self._graph._invalidate_dependents(self)

    def _clear_tween(self) -> None:
        self._tween = None
        self._graph._tweening.pop(self.id, None)

    def _resolve(self, now: float) -> None:
        tween = self._tween
        if tween is None:
            self._graph._tweening.pop(self.id, None)
            return
        if tween.progress(now) >= 1.0:
            self._clear_tween()
            self._set(tween.end)
        else:
            self._set(tween.sample(now))


class DerivedSignal(SignalBase):
    """
    Signal whose value is a pure function of other signals.

    The function is not evaluated at construction; the first read computes
    it. Derived signals reject writes.
    """

    def __init__(self, graph: SignalGraph, fn: Callable[[], Any], owner: Any = None, name: Optional[str] = None):
        super().__init__(graph, owner=owner, name=name)
        self._fn = fn
        self._value: Any = None
        self._dirty = True
        self._computing = False
        self._sources: Dict[int, SignalBase] = {}
        self.recompute_count = 0

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def dependencies(self) -> List[SignalBase]:
        return list(self._sources.values())

    def read(self) -> Any:
        if self._computing:
            raise CyclicDependency(self._graph._cycle_chain(self))
        if self._dirty and not self._disposed:
            self._recompute()
        self._graph._track(self)
        return self._value

    def write(self, value: Any, duration: Optional[float] = None, easing=None) -> None:
        raise SignalWriteError(f"Derived signal {self.label} cannot be written")

    def dispose(self) -> None:
        self._detach_sources()
        super().dispose()

    def _detach_sources(self) -> None:
        for source in self._sources.values():
            source._dependents.pop(self.id, None)
        self._sources = {}

    def _recompute(self) -> None:
        graph = self._graph
        self._detach_sources()
        context = RecomputeContext(self)
        graph._contexts.append(context)
        self._computing = True
        try:
            value = self._fn()
        finally:
            self._computing = False
            graph._contexts.pop()

        for source in context.dependencies.values():
            if source is self:
                continue
            self._sources[source.id] = source
            source._dependents[self.id] = self
        self._value = value
        self._dirty = False
        self.recompute_count += 1
