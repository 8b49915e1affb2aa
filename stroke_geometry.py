"""Points and affine transforms shared by the tracking components.

Affine transforms are stored as 2x3 matrices and combined in homogeneous
form, so ``a.then(b)`` maps a point through ``a`` first and ``b`` second.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence, Tuple, Union

import numpy as np

SINGULAR_EPS = 1e-12


@dataclass(frozen=True)
class Point:
    x: int
    y: int

    def distance_to(self, other: "Point") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)

    def offset(self, dx: int, dy: int) -> "Point":
        return Point(self.x + dx, self.y + dy)

    def as_tuple(self) -> Tuple[int, int]:
        return (self.x, self.y)

    @staticmethod
    def rounded(x: float, y: float) -> "Point":
        return Point(int(round(x)), int(round(y)))


PointLike = Union[Point, Sequence[float]]


def as_xy(point: PointLike) -> Tuple[float, float]:
    if isinstance(point, Point):
        return float(point.x), float(point.y)
    return float(point[0]), float(point[1])


# ---------------------------------------------------------------------------
# Small matrix helpers
# ---------------------------------------------------------------------------


def inverse_2x2(matrix: np.ndarray) -> np.ndarray:
    m = np.asarray(matrix, dtype=float)
    det = m[0, 0] * m[1, 1] - m[0, 1] * m[1, 0]
    if abs(det) < SINGULAR_EPS:
        raise np.linalg.LinAlgError("2x2 matrix is singular")
    return np.array([[m[1, 1], -m[0, 1]], [-m[1, 0], m[0, 0]]]) / det


def inverse_3x3(matrix: np.ndarray) -> np.ndarray:
    m = np.asarray(matrix, dtype=float)
    if abs(float(np.linalg.det(m))) < SINGULAR_EPS:
        raise np.linalg.LinAlgError("3x3 matrix is singular")
    return np.linalg.inv(m)


# ---------------------------------------------------------------------------
# Affine transforms
# ---------------------------------------------------------------------------


class AffineTransform:
    """A 2x3 affine map (rotation/scale/shear plus translation)."""

    def __init__(self, matrix: Sequence[Sequence[float]]) -> None:
        self.matrix = np.asarray(matrix, dtype=float).reshape(2, 3)

    @staticmethod
    def identity() -> "AffineTransform":
        return AffineTransform([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])

    @staticmethod
    def translation(dx: float, dy: float) -> "AffineTransform":
        return AffineTransform([[1.0, 0.0, dx], [0.0, 1.0, dy]])

    @staticmethod
    def from_homogeneous(matrix: np.ndarray) -> "AffineTransform":
        return AffineTransform(np.asarray(matrix, dtype=float)[:2, :])

    def homogeneous(self) -> np.ndarray:
        return np.vstack([self.matrix, [0.0, 0.0, 1.0]])

    def then(self, other: "AffineTransform") -> "AffineTransform":
        """Return the transform applying ``self`` followed by ``other``."""
        return AffineTransform.from_homogeneous(other.homogeneous() @ self.homogeneous())

    def inverse(self) -> "AffineTransform":
        return AffineTransform.from_homogeneous(inverse_3x3(self.homogeneous()))

    def apply_xy(self, x: float, y: float) -> Tuple[float, float]:
        out = self.matrix @ np.array([x, y, 1.0])
        return float(out[0]), float(out[1])

    def apply(self, point: PointLike) -> Point:
        x, y = as_xy(point)
        return Point.rounded(*self.apply_xy(x, y))

    def is_identity(self, tolerance: float = 1e-9) -> bool:
        return bool(np.allclose(self.matrix, AffineTransform.identity().matrix, atol=tolerance))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AffineTransform):
            return NotImplemented
        return bool(np.allclose(self.matrix, other.matrix))

    def __repr__(self) -> str:
        rows = ", ".join("[" + ", ".join(f"{v:.4g}" for v in row) + "]" for row in self.matrix)
        return f"AffineTransform([{rows}])"
