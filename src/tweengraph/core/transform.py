"""
2D affine transform helpers.

Matrices are 3x3 homogeneous numpy arrays. A node's local matrix applies
scale, then rotation, then translation; a child's global matrix is its
parent's global matrix times its local matrix.
"""

from __future__ import annotations

import math
from typing import Tuple

import numpy as np

from .vector import Vec2, as_vec2


def identity() -> np.ndarray:
    return np.eye(3, dtype=np.float64)


def translation(x: float, y: float) -> np.ndarray:
    matrix = identity()
    matrix[0, 2] = x
    matrix[1, 2] = y
    return matrix


def rotation(angle_rad: float) -> np.ndarray:
    cos_a = math.cos(angle_rad)
    sin_a = math.sin(angle_rad)
    return np.array(
        [[cos_a, -sin_a, 0.0], [sin_a, cos_a, 0.0], [0.0, 0.0, 1.0]],
        dtype=np.float64,
    )


def scaling(sx: float, sy: float) -> np.ndarray:
    return np.diag([sx, sy, 1.0]).astype(np.float64)


def local_matrix(position, scale, angle_rad: float) -> np.ndarray:
    """Compose ``translate @ rotate @ scale`` for one node."""
    pos = as_vec2(position)
    factors = as_vec2(scale)
    return translation(pos.x, pos.y) @ rotation(angle_rad) @ scaling(factors.x, factors.y)


def root_matrix(width: int, height: int, units: float) -> np.ndarray:
    """
    Map scene units to canvas pixels.

    The scene origin sits at the canvas centre and ``units`` scene units span
    half of the canvas width.
    """
    factor = width / 2.0 / units
    return translation(width / 2.0, height / 2.0) @ scaling(factor, factor)


def apply(matrix: np.ndarray, x: float, y: float) -> Vec2:
    px, py, _ = matrix @ np.array([x, y, 1.0], dtype=np.float64)
    return Vec2(float(px), float(py))


def rough_scale(matrix: np.ndarray) -> float:
    """Average length of the transformed unit axes; used for radii and text sizes."""
    return float((math.hypot(matrix[0, 0], matrix[1, 0]) + math.hypot(matrix[0, 1], matrix[1, 1])) / 2.0)


def angle_of(matrix: np.ndarray) -> float:
    """Rotation of the transformed x axis, in radians."""
    return math.atan2(matrix[1, 0], matrix[0, 0])


def axis_lengths(matrix: np.ndarray) -> Tuple[float, float]:
    return (
        float(math.hypot(matrix[0, 0], matrix[1, 0])),
        float(math.hypot(matrix[0, 1], matrix[1, 1])),
    )
