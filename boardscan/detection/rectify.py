"""
Perspective Rectification – quadrilateral → canonical S×S board
===============================================================

Steps:
  1. Crop box around the *unmargined* quadrilateral, padded outward by
     ``crop_padding`` and clamped to the image.
  2. Corners pulled ``inner_margin`` toward the centroid, trimming the
     board frame and partial edge squares.
  3. Homography from the (margined) corners, in crop coordinates, onto
     ``[0, S-1]²`` and a single ``warpPerspective`` of the crop.

Every crop / warp parameter is checked before warping so a degenerate
transform never reaches OpenCV.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np

from boardscan.config import PipelineConfig
from boardscan.detection.types import Quadrilateral
from boardscan.errors import CropRegionInvalid

log = logging.getLogger(__name__)


@dataclass
class RectifiedBoard:
    """Top-down view of the board."""
    image: np.ndarray                        # S×S, same channel depth as input
    source_crop: Tuple[int, int, int, int]   # x, y, w, h in working coords
    homography: np.ndarray                   # 3×3, crop coords → board coords

    @property
    def size(self) -> int:
        return int(self.image.shape[0])


class PerspectiveRectifier:
    """Warp the board region of a working image onto a square canvas."""

    def __init__(self, config: Optional[PipelineConfig] = None) -> None:
        self.config = config or PipelineConfig()

    def rectify(
        self,
        image: np.ndarray,
        quad: Quadrilateral,
        size: int,
    ) -> RectifiedBoard:
        """Return the S×S rectified board for *quad* inside *image*.

        Parameters
        ----------
        image : np.ndarray
            Working-resolution image (grayscale or BGR).
        quad : Quadrilateral
            Validated board outline in working coordinates.
        size : int
            Side length ``S`` of the canonical square.

        Raises
        ------
        CropRegionInvalid
            Empty crop, a corner outside the image, or a singular homography.
        """
        h, w = image.shape[:2]
        corners = quad.to_array().astype(np.float64)
        if size <= 0:
            raise CropRegionInvalid(f"output size must be positive, got {size}", size=size)

        x1, y1, x2, y2 = crop_box(corners, w, h, self.config.crop_padding)
        if x2 <= x1 or y2 <= y1:
            raise CropRegionInvalid(
                "crop box is empty after clamping to the image",
                crop=(x1, y1, x2 - x1, y2 - y1),
                image_size=(w, h),
            )

        src = shrink_toward_centroid(corners, self.config.inner_margin)
        outside = (
            (src[:, 0] < -0.5) | (src[:, 0] > w - 0.5)
            | (src[:, 1] < -0.5) | (src[:, 1] > h - 0.5)
        )
        if np.any(outside):
            raise CropRegionInvalid(
                f"{int(outside.sum())} board corner(s) fall outside the image",
                corners=[[round(float(v), 1) for v in p] for p in src],
                image_size=(w, h),
            )

        src_in_crop = (src - np.array([x1, y1], dtype=np.float64)).astype(np.float32)
        dst = np.array(
            [[0, 0], [size - 1, 0], [size - 1, size - 1], [0, size - 1]],
            dtype=np.float32,
        )
        M = cv2.getPerspectiveTransform(src_in_crop, dst)
        if not np.all(np.isfinite(M)) or abs(np.linalg.det(M)) < 1e-12:
            raise CropRegionInvalid("perspective transform is singular")

        crop = image[y1:y2, x1:x2]
        warped = cv2.warpPerspective(
            crop, M, (size, size),
            flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_REPLICATE,
        )
        log.debug("Rectified crop=(%d,%d,%d,%d) → %dx%d", x1, y1, x2 - x1, y2 - y1, size, size)
        return RectifiedBoard(
            image=warped,
            source_crop=(x1, y1, x2 - x1, y2 - y1),
            homography=M,
        )


def crop_box(
    corners: np.ndarray, width: int, height: int, padding: float,
) -> Tuple[int, int, int, int]:
    """Padded bounding box of *corners* as ``(x1, y1, x2, y2)``, clamped."""
    xs, ys = corners[:, 0], corners[:, 1]
    bw = float(xs.max() - xs.min())
    bh = float(ys.max() - ys.min())
    pad = padding * max(bw, bh)
    x1 = max(0, int(np.floor(xs.min() - pad)))
    y1 = max(0, int(np.floor(ys.min() - pad)))
    x2 = min(width, int(np.ceil(xs.max() + pad)) + 1)
    y2 = min(height, int(np.ceil(ys.max() + pad)) + 1)
    return x1, y1, x2, y2


def shrink_toward_centroid(corners: np.ndarray, margin: float) -> np.ndarray:
    """Move each corner *margin* of the way toward the centroid."""
    corners = np.asarray(corners, dtype=np.float64)
    if margin <= 0:
        return corners.copy()
    center = corners.mean(axis=0)
    return center + (corners - center) * (1.0 - margin)
