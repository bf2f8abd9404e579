"""
Geometry Types – points, quadrilaterals, detection candidates
==============================================================

Corner ordering is always ``[TL, TR, BR, BL]``, fixed by the
sum / difference heuristic:

  • TL has the smallest ``x + y``
  • BR has the largest  ``x + y``
  • TR has the largest  ``x - y``
  • BL has the smallest ``x - y``
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, List, Tuple

import numpy as np


class DetectionSource(str, enum.Enum):
    """Which strategy of the corner-detection chain produced a candidate."""
    PATTERN_MATCH = "pattern_match"
    CONTOUR_APPROX = "contour_approx"
    FEATURE_CLUSTER = "feature_cluster"


@dataclass(frozen=True)
class Point2D:
    x: float
    y: float

    def as_tuple(self) -> Tuple[float, float]:
        return (self.x, self.y)


@dataclass(frozen=True)
class Quadrilateral:
    """Four ordered corners ``(TL, TR, BR, BL)``.

    Construction does not check for degeneracy; that is the job of
    :class:`~boardscan.detection.geometry.GeometryValidator`.
    """
    tl: Point2D
    tr: Point2D
    br: Point2D
    bl: Point2D

    @classmethod
    def from_points(cls, pts: Iterable) -> "Quadrilateral":
        """Build a quadrilateral from 4 unordered points."""
        arr = np.asarray(list(pts), dtype=np.float64).reshape(-1, 2)
        if arr.shape[0] != 4:
            raise ValueError(f"Expected 4 points, got {arr.shape[0]}")
        ordered = order_corners(arr)
        return cls(*(Point2D(float(x), float(y)) for x, y in ordered))

    @property
    def corners(self) -> List[Point2D]:
        return [self.tl, self.tr, self.br, self.bl]

    def to_array(self) -> np.ndarray:
        """Return a 4×2 float32 array in ``[TL, TR, BR, BL]`` order."""
        return np.array([p.as_tuple() for p in self.corners], dtype=np.float32)

    def area(self) -> float:
        """Unsigned polygon area (shoelace formula)."""
        pts = self.to_array().astype(np.float64)
        x, y = pts[:, 0], pts[:, 1]
        return float(abs(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1))) / 2.0)

    def centroid(self) -> Point2D:
        c = self.to_array().mean(axis=0)
        return Point2D(float(c[0]), float(c[1]))

    def scaled(self, factor: float) -> "Quadrilateral":
        """Multiply every coordinate by *factor* (working ↔ source mapping)."""
        return Quadrilateral(
            *(Point2D(p.x * factor, p.y * factor) for p in self.corners)
        )


@dataclass(frozen=True)
class DetectionCandidate:
    """Best-guess board outline plus the strategy that produced it."""
    quad: Quadrilateral
    source: DetectionSource
    area: float


def order_corners(pts: np.ndarray) -> np.ndarray:
    """Order 4 points as: top-left, top-right, bottom-right, bottom-left."""
    pts = np.asarray(pts, dtype=np.float64).reshape(4, 2)
    s = pts.sum(axis=1)
    d = pts[:, 0] - pts[:, 1]
    ordered = np.zeros((4, 2), dtype=np.float64)
    ordered[0] = pts[np.argmin(s)]   # TL
    ordered[1] = pts[np.argmax(d)]   # TR
    ordered[2] = pts[np.argmax(s)]   # BR
    ordered[3] = pts[np.argmin(d)]   # BL
    return ordered
