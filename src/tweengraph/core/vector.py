"""Two-dimensional vector value used for positions, scales and offsets."""

from __future__ import annotations

import math
from dataclasses import dataclass
from numbers import Real
from typing import Iterator, Optional, Tuple

import numpy as np


@dataclass(frozen=True)
class Vec2:
    """Immutable 2D vector with the usual arithmetic."""

    x: float = 0.0
    y: float = 0.0

    def __add__(self, other: "Vec2") -> "Vec2":
        other = as_vec2(other)
        return Vec2(self.x + other.x, self.y + other.y)

    __radd__ = __add__

    def __sub__(self, other: "Vec2") -> "Vec2":
        other = as_vec2(other)
        return Vec2(self.x - other.x, self.y - other.y)

    def __rsub__(self, other: "Vec2") -> "Vec2":
        return as_vec2(other) - self

    def __mul__(self, factor):
        if isinstance(factor, Vec2):
            return Vec2(self.x * factor.x, self.y * factor.y)
        return Vec2(self.x * factor, self.y * factor)

    __rmul__ = __mul__

    def __truediv__(self, factor: float) -> "Vec2":
        return Vec2(self.x / factor, self.y / factor)

    def __neg__(self) -> "Vec2":
        return Vec2(-self.x, -self.y)

    def __iter__(self) -> Iterator[float]:
        yield self.x
        yield self.y

    def __len__(self) -> int:
        return 2

    def length(self) -> float:
        return math.hypot(self.x, self.y)

    def as_tuple(self) -> Tuple[float, float]:
        return (self.x, self.y)

    def as_array(self) -> np.ndarray:
        return np.array([self.x, self.y], dtype=np.float64)


def vec2(x=0.0, y: Optional[float] = None) -> Vec2:
    """
    Build a vector; ``vec2(s)`` repeats the scalar on both axes.

    Examples
    --------
    >>> vec2(0.5)
    Vec2(x=0.5, y=0.5)
    """
    if y is None:
        if isinstance(x, Real):
            return Vec2(float(x), float(x))
        return as_vec2(x)
    return Vec2(float(x), float(y))


def as_vec2(value) -> Vec2:
    """Coerce tuples, lists, arrays and ``{"x", "y"}`` mappings into a ``Vec2``."""
    if isinstance(value, Vec2):
        return value
    if isinstance(value, Real):
        return Vec2(float(value), float(value))
    if isinstance(value, dict):
        return Vec2(float(value.get("x", 0.0)), float(value.get("y", 0.0)))
    x, y = value
    return Vec2(float(x), float(y))
