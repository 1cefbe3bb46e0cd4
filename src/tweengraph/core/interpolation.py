"""
Interpolation functions and easing curves for tweened signal writes.

Every interpolation maps ``(start, end, t)`` with ``t`` in ``[0, 1]`` to a
value of the same kind. Easing curves remap ``t`` before interpolation.

The module also keeps a registry from value kinds (Python types) to
interpolation functions. External plugins can register new kinds via
`register_interpolation` or the ``tweengraph.interpolations`` entry point
group.
"""

from __future__ import annotations

import logging
import math
from enum import Enum
from numbers import Integral, Real
from typing import Any, Callable, Dict, List, Mapping, Optional

import numpy as np

from ..errors import InvalidInterpolation
from .vector import Vec2

logger = logging.getLogger(__name__)

Interpolation = Callable[[Any, Any, float], Any]
Easing = Callable[[float], float]


# ---------------------------------------------------------------------------
# Interpolations
# ---------------------------------------------------------------------------


def linear(a, b, t: float):
    """Scalar linear interpolation ``a + (b - a) * t``."""
    return a + (b - a) * t


def vector(a, b, t: float):
    """Component-wise linear interpolation for vectors, tuples and arrays."""
    if isinstance(a, Vec2) or isinstance(b, Vec2):
        a = a if isinstance(a, Vec2) else Vec2(*a)
        b = b if isinstance(b, Vec2) else Vec2(*b)
        return Vec2(linear(a.x, b.x, t), linear(a.y, b.y, t))
    if isinstance(a, np.ndarray) or isinstance(b, np.ndarray):
        start = np.asarray(a, dtype=np.float64)
        end = np.asarray(b, dtype=np.float64)
        return start + (end - start) * t
    if len(a) != len(b):
        raise InvalidInterpolation(
            f"Cannot interpolate sequences of different lengths ({len(a)} vs {len(b)})"
        )
    values = [linear(x, y, t) for x, y in zip(a, b)]
    return tuple(values) if isinstance(a, tuple) else values


def integer(a, b, t: float) -> int:
    """Stepped interpolation for discrete indices; never fractional."""
    return int(round(a + (b - a) * t))


def hold(a, b, t: float):
    """Discrete "interpolation": keeps ``a`` until the tween completes."""
    return b if t >= 1.0 else a


def mapping(a: Mapping, b: Mapping, t: float) -> Dict[Any, Any]:
    """Key-wise interpolation of two mappings sharing the same keys."""
    if set(a) != set(b):
        raise InvalidInterpolation("Cannot interpolate mappings with different keys")
    return {key: interpolation_for(a[key], b[key])(a[key], b[key], t) for key in a}


# ---------------------------------------------------------------------------
# Easing curves
# ---------------------------------------------------------------------------


def ease_linear(t: float) -> float:
    return t


def ease_in_quad(t: float) -> float:
    return t * t


def ease_out_quad(t: float) -> float:
    return 1.0 - (1.0 - t) * (1.0 - t)


def ease_in_out_quad(t: float) -> float:
    if t < 0.5:
        return 2.0 * t * t
    return 1.0 - ((-2.0 * t + 2.0) ** 2) / 2.0


def ease_in_cubic(t: float) -> float:
    return t * t * t


def ease_out_cubic(t: float) -> float:
    return 1.0 - (1.0 - t) ** 3


def ease_in_out_cubic(t: float) -> float:
    if t < 0.5:
        return 4.0 * t * t * t
    return 1.0 - ((-2.0 * t + 2.0) ** 3) / 2.0


def ease_in_out_sine(t: float) -> float:
    return -(math.cos(math.pi * t) - 1.0) / 2.0


def smoothstep(t: float) -> float:
    return t * t * (3.0 - 2.0 * t)


_easings: Dict[str, Easing] = {
    "linear": ease_linear,
    "ease_in_quad": ease_in_quad,
    "ease_out_quad": ease_out_quad,
    "ease_in_out_quad": ease_in_out_quad,
    "ease_in_cubic": ease_in_cubic,
    "ease_out_cubic": ease_out_cubic,
    "ease_in_out_cubic": ease_in_out_cubic,
    "ease_in_out_sine": ease_in_out_sine,
    "smoothstep": smoothstep,
}


def get_easing(easing=None) -> Easing:
    """
    Resolve an easing given as ``None``, a name, or a callable.

    Raises
    ------
    ValueError
        If a name does not match a known easing curve.
    """
    if easing is None:
        return ease_linear
    if callable(easing):
        return easing
    try:
        return _easings[easing]
    except KeyError:
        raise ValueError(
            f"Unknown easing '{easing}'. Available: {', '.join(sorted(_easings))}"
        ) from None


def available_easings() -> List[str]:
    return sorted(_easings)


# ---------------------------------------------------------------------------
# Value-kind registry
# ---------------------------------------------------------------------------

# bool must win over Integral (bool is an int subclass), hence the MRO walk below.
_builtin_interpolations: Dict[type, Interpolation] = {
    bool: hold,
    Integral: integer,
    Real: linear,
    Vec2: vector,
    tuple: vector,
    list: vector,
    np.ndarray: vector,
    str: hold,
    Enum: hold,
    Mapping: mapping,
}

_interpolation_registry: Dict[type, Interpolation] = {}


def register_interpolation(
    kind: type,
    interpolation: Interpolation,
    *,
    override: bool = False,
) -> None:
    """
    Register the interpolation used for tweened writes of values of ``kind``.

    Parameters
    ----------
    kind : type
        The value type (subclasses match too).
    interpolation : Interpolation
        A callable ``(start, end, t) -> value``.
    override : bool
        If True, allow replacing an existing registration. Default False.

    Raises
    ------
    ValueError
        If ``kind`` is already registered and override is False.
    """
    if kind in _interpolation_registry and not override:
        raise ValueError(
            f"Interpolation for '{kind.__name__}' already registered. "
            "Use override=True to replace it."
        )
    _interpolation_registry[kind] = interpolation
    logger.debug("Registered interpolation for %s", kind.__name__)


def unregister_interpolation(kind: type) -> bool:
    if kind in _interpolation_registry:
        del _interpolation_registry[kind]
        logger.debug("Unregistered interpolation for %s", kind.__name__)
        return True
    return False


def resolve_interpolation(value) -> Interpolation:
    """
    Find the interpolation for the kind of ``value``.

    Plugin registrations are consulted before built-ins; within each table
    the most specific class in the value's MRO wins.

    Raises
    ------
    InvalidInterpolation
        If no interpolation is registered for the value's type.
    """
    value_type = type(value)
    for table in (_interpolation_registry, _builtin_interpolations):
        for klass in value_type.__mro__:
            if klass in table:
                return table[klass]
        for kind, interpolation in table.items():
            if isinstance(value, kind):
                return interpolation
    raise InvalidInterpolation(
        f"No interpolation registered for values of type '{value_type.__name__}'"
    )


def interpolation_for(start, end) -> Interpolation:
    """
    Interpolation for a tween from ``start`` to ``end``.

    Resolved from the kind of ``end``; stepping only applies when both ends
    are integers, so ``0.0 -> 3`` still tweens linearly.
    """
    fn = resolve_interpolation(end)
    if fn is integer and (isinstance(start, bool) or not isinstance(start, Integral)):
        return linear
    return fn


def discover_interpolation_plugins() -> None:
    """
    Discover and load interpolation plugins via entry points.

    Plugins register themselves in their pyproject.toml:
        [project.entry-points."tweengraph.interpolations"]
        plugin_name = "package.module:register_function"

    The entry point should point to a function that calls
    `register_interpolation` when invoked.
    """
    from importlib.metadata import entry_points

    for ep in entry_points(group="tweengraph.interpolations"):
        try:
            register_func = ep.load()
            register_func()
            logger.debug("Loaded interpolation plugin: %s", ep.name)
        except Exception as e:
            logger.warning("Failed to load interpolation plugin '%s': %s", ep.name, e)


def interpolate(
    interpolation: Optional[Interpolation],
    start,
    end,
    progress: float,
    easing: Optional[Easing] = None,
):
    """
    Evaluate a tween sample with clamping and exact endpoints.

    ``progress`` is clamped to ``[0, 1]``; at 0 the start value and at 1 the
    end value are returned unchanged so no interpolation drift is observable.
    """
    if progress <= 0.0:
        return start
    if progress >= 1.0:
        return end
    fn = interpolation or interpolation_for(start, end)
    return fn(start, end, get_easing(easing)(progress))
