"""
Named-signal registry through which the host publishes external data.

The host (for example a simulation producing per-entity records) writes
values with `ValueRegistry.publish`; scripts obtain read-only views with
`ValueRegistry.signal` and never write them directly.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, Mapping, Optional

from ..errors import SignalWriteError
from .signal import Signal, SignalBase, SignalGraph

logger = logging.getLogger(__name__)


class SignalView(SignalBase):
    """Read-only view of a registry signal."""

    def __init__(self, graph: SignalGraph, target: Signal, name: str):
        super().__init__(graph, name=name)
        self._target = target

    def read(self) -> Any:
        return self._target.read()

    def write(self, value: Any, duration: Optional[float] = None, easing=None) -> None:
        raise SignalWriteError(f"Registry value '{self.name}' is read-only for scripts")


class ValueRegistry:
    """Host-facing table of named source signals."""

    def __init__(self, graph: SignalGraph, initial: Optional[Mapping[str, Any]] = None):
        self._graph = graph
        self._signals: Dict[str, Signal] = {}
        self._views: Dict[str, SignalView] = {}
        for name, value in (initial or {}).items():
            self.publish(name, value)

    def publish(self, name: str, value: Any) -> None:
        """Set (or create) the named value; dependents are invalidated immediately."""
        signal = self._signals.get(name)
        if signal is None:
            self._signals[name] = self._graph.signal(value, name=name)
            logger.debug("Registered host value '%s'", name)
        else:
            signal.write(value)

    def get(self, name: str) -> Any:
        return self._lookup(name).read()

    def signal(self, name: str) -> SignalView:
        """Read-only signal for the named value."""
        view = self._views.get(name)
        if view is None:
            view = SignalView(self._graph, self._lookup(name), name)
            self._views[name] = view
        return view

    def _lookup(self, name: str) -> Signal:
        try:
            return self._signals[name]
        except KeyError:
            available = ", ".join(sorted(self._signals)) or "none"
            raise KeyError(f"Unknown registry value '{name}' (available: {available})") from None

    def __contains__(self, name: str) -> bool:
        return name in self._signals

    def __iter__(self) -> Iterator[str]:
        return iter(self._signals)

    def __len__(self) -> int:
        return len(self._signals)
