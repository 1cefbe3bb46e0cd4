"""
Error conditions raised by the engine.

Structural errors abort the offending operation and propagate to the caller
(usually a script procedure). ``SchedulerStall`` is advisory only and is
reported through :mod:`warnings` rather than raised.
"""

from __future__ import annotations


class TweengraphError(RuntimeError):
    """Base class for every engine error."""


class CyclicDependency(TweengraphError):
    """Raised when a derived signal transitively reads itself during recomputation."""

    def __init__(self, chain):
        self.chain = list(chain)
        names = " -> ".join(str(item) for item in self.chain)
        super().__init__(f"Cyclic signal dependency: {names}")


class InvalidInterpolation(TweengraphError, TypeError):
    """Raised when a tweened write targets a value kind with no interpolation."""


class DetachedNodeReference(TweengraphError):
    """Raised when a node is used after collection or attached under a second parent."""


class SignalWriteError(TweengraphError, TypeError):
    """Raised when writing to a derived or read-only signal."""


class SchedulerStall(RuntimeWarning):
    """A task ran longer than the stall budget without reaching a suspension point."""
