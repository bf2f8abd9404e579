"""
Geometry Validation – accept, reject and score a board quadrilateral
====================================================================

Measurements (working resolution):

  • four side lengths and their opposite-side ratios (each ≥ 1)
  • average width / height, which fix the canonical output size
  • edge cross-product signs, for a non-fatal crossed-quad warning

Hard rejections are degenerate outlines, boards smaller than
``min_board_px`` and boards whose side ratios exceed ``max_distortion``.
The :class:`QualityScore` is advisory only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from boardscan.config import PipelineConfig
from boardscan.detection.types import Quadrilateral
from boardscan.errors import (
    BoardTooDistorted,
    BoardTooSmall,
    DegenerateQuadrilateral,
    OutputSizeTooSmall,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class QualityScore:
    """Advisory shape / size score."""
    ratio_score: float          # 0–50, 50 at ratio 1.0, 0 at ratio 2.0
    size_score: float           # 0–50, 0 at 100 px, 50 at 200 px
    total: float                # clamp(ratio + size, 0, 100)

    @classmethod
    def compute(cls, ratio: float, min_side: float) -> "QualityScore":
        ratio_score = _clamp(50.0 * (2.0 - ratio), 0.0, 50.0)
        size_score = _clamp(50.0 * (min_side - 100.0) / 100.0, 0.0, 50.0)
        return cls(
            ratio_score=ratio_score,
            size_score=size_score,
            total=_clamp(ratio_score + size_score, 0.0, 100.0),
        )


@dataclass(frozen=True)
class GeometryReport:
    """Everything the validator measured about an accepted quadrilateral."""
    sides: List[float]          # top, right, bottom, left
    width_ratio: float
    height_ratio: float
    avg_width: float
    avg_height: float
    output_size: int            # S of the canonical S×S board
    crossed: bool               # inconsistent cross-product signs
    quality: QualityScore

    @property
    def distortion(self) -> float:
        return max(self.width_ratio, self.height_ratio)


class GeometryValidator:
    """Validate a candidate quadrilateral and choose the canonical size."""

    def __init__(self, config: Optional[PipelineConfig] = None) -> None:
        self.config = config or PipelineConfig()

    def validate(self, quad: Quadrilateral) -> GeometryReport:
        """Measure *quad*; raise a typed error if it cannot be rectified.

        Raises
        ------
        DegenerateQuadrilateral
            Non-finite corners or (near) zero area, e.g. collinear points.
        BoardTooSmall
            ``min(avg_width, avg_height) < min_board_px``.
        BoardTooDistorted
            ``max(width_ratio, height_ratio) > max_distortion``.
        OutputSizeTooSmall
            Canonical size below ``min_output_size``.
        """
        pts = quad.to_array().astype(np.float64)
        if not np.all(np.isfinite(pts)):
            raise DegenerateQuadrilateral("corner coordinates are not finite")

        area = quad.area()
        sides = side_lengths(pts)
        if area < 1.0 or min(sides) < 1e-6:
            raise DegenerateQuadrilateral(
                f"quadrilateral has zero area ({area:.2f} px²)",
                area=area,
            )

        top, right, bottom, left = sides
        width_ratio = max(top, bottom) / min(top, bottom)
        height_ratio = max(left, right) / min(left, right)
        avg_width = (top + bottom) / 2.0
        avg_height = (left + right) / 2.0
        min_side = min(avg_width, avg_height)

        crossed = is_crossed(pts)
        if crossed:
            log.warning("Quadrilateral edges turn inconsistently (crossed outline?)")

        if min_side < self.config.min_board_px:
            raise BoardTooSmall(
                f"board is {min_side:.0f}px across, need at least "
                f"{self.config.min_board_px:.0f}px",
                min_side=round(min_side, 2),
                threshold=self.config.min_board_px,
            )

        distortion = max(width_ratio, height_ratio)
        if distortion > self.config.max_distortion:
            raise BoardTooDistorted(
                f"opposite sides differ by a factor of {distortion:.2f} "
                f"(limit {self.config.max_distortion:.2f})",
                ratio=round(distortion, 4),
                limit=self.config.max_distortion,
            )

        output_size = int(round(max(avg_width, avg_height)))
        if output_size < self.config.min_output_size:
            raise OutputSizeTooSmall(
                f"canonical board would be {output_size}px, need at least "
                f"{self.config.min_output_size}px",
                output_size=output_size,
                threshold=self.config.min_output_size,
            )

        quality = QualityScore.compute(distortion, min_side)
        log.debug(
            "Geometry ok  sides=%s  ratios=(%.3f, %.3f)  S=%d  quality=%.1f",
            [round(s, 1) for s in sides], width_ratio, height_ratio,
            output_size, quality.total,
        )
        return GeometryReport(
            sides=sides,
            width_ratio=width_ratio,
            height_ratio=height_ratio,
            avg_width=avg_width,
            avg_height=avg_height,
            output_size=output_size,
            crossed=crossed,
            quality=quality,
        )


# ── Geometry helpers ───────────────────────────────────────────────────

def side_lengths(pts: np.ndarray) -> List[float]:
    """Lengths of top, right, bottom and left sides of ``[TL, TR, BR, BL]``."""
    tl, tr, br, bl = np.asarray(pts, dtype=np.float64).reshape(4, 2)
    return [
        float(np.linalg.norm(tr - tl)),
        float(np.linalg.norm(br - tr)),
        float(np.linalg.norm(br - bl)),
        float(np.linalg.norm(bl - tl)),
    ]


def is_crossed(pts: np.ndarray) -> bool:
    """True if consecutive edge cross products do not share one sign."""
    pts = np.asarray(pts, dtype=np.float64).reshape(4, 2)
    signs = set()
    for i in range(4):
        a = pts[(i + 1) % 4] - pts[i]
        b = pts[(i + 2) % 4] - pts[(i + 1) % 4]
        cross = a[0] * b[1] - a[1] * b[0]
        if cross != 0:
            signs.add(cross > 0)
    return len(signs) > 1


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))
