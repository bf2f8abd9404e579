"""
Pipeline configuration – every tunable policy value in one place.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class PipelineConfig:
    """Tuning knobs for board extraction and recognition.

    All pixel thresholds are expressed at *working* resolution, i.e. after
    the source image has been downscaled so its longest side is at most
    ``working_max_side``.
    """

    # Working resolution
    working_max_side: int = 1200

    # Pattern match: interior-corner grid of a full 8×8 board
    pattern_size: Tuple[int, int] = (7, 7)

    # Contour approximation
    blur_kernel: int = 5                 # odd
    canny_low: int = 30
    canny_high: int = 120
    dilate_iterations: int = 2
    approx_epsilon: float = 0.02         # fraction of contour perimeter
    median_kernel: int = 21              # Otsu pass, odd
    min_area_fraction: float = 0.01
    max_area_fraction: float = 0.88      # larger is probably the frame itself
    edge_margin_fraction: float = 0.01   # of the shorter image side

    # Feature cluster
    max_features: int = 500
    feature_quality: float = 0.01
    min_feature_distance: int = 10
    min_feature_points: int = 16
    subpixel_refine: bool = True

    # Geometry validation
    min_board_px: float = 80.0
    max_distortion: float = 1.5
    min_output_size: int = 64

    # Rectification
    crop_padding: float = 0.03
    inner_margin: float = 0.01

    # Checker verification of the rectified board
    checker_grid_px: int = 8             # pixels per square in the correlation grid
    min_checker_score: float = 0.3       # |correlation| with an ideal 8×8 checker

    # Classification
    confidence_floor: float = 0.5
    low_quality_threshold: float = 60.0

    def validate(self) -> "PipelineConfig":
        """Raise ``ValueError`` on nonsensical settings; return self."""
        if self.working_max_side <= 0:
            raise ValueError("working_max_side must be positive")
        if self.blur_kernel % 2 == 0 or self.median_kernel % 2 == 0:
            raise ValueError("blur_kernel and median_kernel must be odd")
        if min(self.pattern_size) < 2:
            raise ValueError(f"pattern_size too small: {self.pattern_size}")
        for name in (
            "approx_epsilon", "min_area_fraction", "max_area_fraction",
            "edge_margin_fraction", "crop_padding", "inner_margin",
            "feature_quality", "confidence_floor", "min_checker_score",
        ):
            value = getattr(self, name)
            if not 0.0 <= value < 1.0:
                raise ValueError(f"{name} must be in [0, 1), got {value}")
        if self.min_area_fraction >= self.max_area_fraction:
            raise ValueError("min_area_fraction must be below max_area_fraction")
        if self.max_distortion < 1.0:
            raise ValueError("max_distortion must be >= 1.0")
        if self.min_board_px <= 0 or self.min_output_size <= 0:
            raise ValueError("size thresholds must be positive")
        if self.checker_grid_px < 1:
            raise ValueError("checker_grid_px must be positive")
        if self.min_feature_points < 4:
            raise ValueError("min_feature_points must be at least 4")
        return self
