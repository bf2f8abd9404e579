"""
Corner Candidate Detection – ordered fallback chain
===================================================

Strategy chain (first plausible quadrilateral wins):

    1. **Pattern match**
        ``cv2.findChessboardCorners`` on the 7×7 interior-corner grid.
        The exact interior corners are lifted onto an ideal lattice with a
        homography and the four outer board corners are projected from it.

    2. **Contour approximation**
        Blur → Canny → dilate, plus a median-blur / Otsu binarisation.
        Every contour is approximated to a polygon (tolerance ∝ perimeter);
        convex quadrilaterals that neither swallow the whole frame nor hug
        its border survive, and the largest one is taken.

    3. **Feature cluster**
        Salient corners (``goodFeaturesToTrack``) are split into quadrants
        around their centroid; each quadrant contributes its extremal point
        (min/max of ``x + y`` or ``x - y``), optionally refined to sub-pixel
        accuracy.

All coordinates are in *working* resolution; see :func:`to_working_resolution`.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Tuple

import cv2
import numpy as np

from boardscan.config import PipelineConfig
from boardscan.detection.types import (
    DetectionCandidate,
    DetectionSource,
    Quadrilateral,
)
from boardscan.errors import NotEnoughCorners

log = logging.getLogger(__name__)

_SUBPIX_CRITERIA = (cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER, 30, 0.01)


# ── Working resolution ─────────────────────────────────────────────────

def to_working_resolution(
    gray: np.ndarray, max_side: int,
) -> Tuple[np.ndarray, float]:
    """Downscale *gray* so its longest side is at most *max_side*.

    Returns ``(working_image, scale)`` where ``scale`` maps source
    coordinates to working coordinates (``working = source * scale``).
    """
    h, w = gray.shape[:2]
    side = max(h, w)
    if side <= max_side:
        return gray, 1.0
    scale = max_side / side
    new_w, new_h = max(1, int(round(w * scale))), max(1, int(round(h * scale)))
    resized = cv2.resize(gray, (new_w, new_h), interpolation=cv2.INTER_AREA)
    return resized, scale


# ── Detector ───────────────────────────────────────────────────────────

class CornerCandidateDetector:
    """Find the best-guess board quadrilateral in a grayscale image.

    Parameters
    ----------
    config : PipelineConfig
        Detection thresholds (pattern size, Canny limits, area fractions…).
    """

    def __init__(self, config: Optional[PipelineConfig] = None) -> None:
        self.config = config or PipelineConfig()
        self._strategies: List[
            Tuple[DetectionSource, Callable[[np.ndarray], Optional[np.ndarray]]]
        ] = [
            (DetectionSource.PATTERN_MATCH, self._strategy_pattern),
            (DetectionSource.CONTOUR_APPROX, self._strategy_contour),
            (DetectionSource.FEATURE_CLUSTER, self._strategy_features),
        ]

    def detect(self, gray: np.ndarray) -> DetectionCandidate:
        """Run the strategy chain on a single-channel working image.

        Raises
        ------
        NotEnoughCorners
            When no strategy yields a plausible quadrilateral.
        """
        if gray.ndim != 2:
            raise ValueError(f"Expected a single-channel image, got shape {gray.shape}")
        h, w = gray.shape[:2]
        tried: List[str] = []

        for source, strategy in self._strategies:
            tried.append(source.value)
            pts = strategy(gray)
            if pts is None:
                log.debug("Strategy %s found nothing", source.value)
                continue

            quad = Quadrilateral.from_points(pts)
            area = quad.area()
            if not self._is_plausible(quad, area, h, w, source):
                log.debug("Strategy %s produced an implausible quad (area=%.1f)",
                          source.value, area)
                continue

            log.info("Board detected via %s (area=%.0f px²)", source.value, area)
            return DetectionCandidate(quad=quad, source=source, area=area)

        raise NotEnoughCorners(
            "no strategy produced four separable board corners",
            strategies=tried,
            width=w,
            height=h,
        )

    # ── Strategy 1: interior-corner pattern ────────────────────────────

    def _strategy_pattern(self, gray: np.ndarray) -> Optional[np.ndarray]:
        cols, rows = self.config.pattern_size
        flags = cv2.CALIB_CB_ADAPTIVE_THRESH + cv2.CALIB_CB_NORMALIZE_IMAGE
        found, corners = cv2.findChessboardCorners(gray, (cols, rows), flags=flags)
        if not found or corners is None:
            return None

        if self.config.subpixel_refine:
            corners = cv2.cornerSubPix(gray, corners, (5, 5), (-1, -1), _SUBPIX_CRITERIA)

        return extrapolate_outer_corners(corners.reshape(-1, 2), cols, rows)

    # ── Strategy 2: largest valid convex quadrilateral ─────────────────

    def _strategy_contour(self, gray: np.ndarray) -> Optional[np.ndarray]:
        h, w = gray.shape[:2]
        best: Optional[np.ndarray] = None
        best_area: float = 0.0

        for edges, mode in self._edge_maps(gray):
            contours, _ = cv2.findContours(edges, mode, cv2.CHAIN_APPROX_SIMPLE)
            for cnt in contours:
                peri = cv2.arcLength(cnt, True)
                approx = cv2.approxPolyDP(cnt, self.config.approx_epsilon * peri, True)
                if len(approx) != 4 or not cv2.isContourConvex(approx):
                    continue

                area = float(cv2.contourArea(approx))
                if area > self.config.max_area_fraction * h * w:
                    continue

                pts = approx.reshape(4, 2).astype(np.float32)
                if _near_border(pts, h, w, self._edge_margin(h, w)):
                    continue

                if area > best_area:
                    best_area = area
                    best = pts

        return best

    def _edge_maps(self, gray: np.ndarray) -> List[Tuple[np.ndarray, int]]:
        """Binary maps searched for contours, with the retrieval mode for each."""
        k = self.config.blur_kernel
        blurred = cv2.GaussianBlur(gray, (k, k), 0)
        edges = cv2.Canny(blurred, self.config.canny_low, self.config.canny_high)
        kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (3, 3))
        edges = cv2.dilate(edges, kernel, iterations=self.config.dilate_iterations)

        median = cv2.medianBlur(gray, self.config.median_kernel)
        _, thresh = cv2.threshold(median, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)

        return [(edges, cv2.RETR_LIST), (thresh, cv2.RETR_EXTERNAL)]

    # ── Strategy 3: quadrant extremes of salient corners ───────────────

    def _strategy_features(self, gray: np.ndarray) -> Optional[np.ndarray]:
        found = cv2.goodFeaturesToTrack(
            gray,
            maxCorners=self.config.max_features,
            qualityLevel=self.config.feature_quality,
            minDistance=self.config.min_feature_distance,
            blockSize=7,
        )
        if found is None or len(found) < self.config.min_feature_points:
            return None

        chosen = quadrant_extremes(found.reshape(-1, 2))
        if chosen is None:
            return None

        if self.config.subpixel_refine:
            refined = cv2.cornerSubPix(
                gray, chosen.reshape(-1, 1, 2).copy(), (5, 5), (-1, -1),
                _SUBPIX_CRITERIA,
            )
            chosen = refined.reshape(4, 2)

        return chosen

    # ── Helpers ────────────────────────────────────────────────────────

    def _edge_margin(self, h: int, w: int) -> float:
        return max(3.0, self.config.edge_margin_fraction * min(h, w))

    def _is_plausible(
        self, quad: Quadrilateral, area: float, h: int, w: int, source: DetectionSource,
    ) -> bool:
        pts = quad.to_array()
        if not np.all(np.isfinite(pts)):
            return False
        # Ordering by sum/diff can pick the same point twice
        if len({(round(float(x), 3), round(float(y), 3)) for x, y in pts}) != 4:
            return False
        if area < self.config.min_area_fraction * h * w:
            return False
        if source is DetectionSource.FEATURE_CLUSTER:
            # Scattered texture clusters toward the frame corners
            if area > self.config.max_area_fraction * h * w:
                return False
            if _near_border(pts, h, w, self._edge_margin(h, w)):
                return False
        return True


def extrapolate_outer_corners(
    interior: np.ndarray, cols: int, rows: int,
) -> Optional[np.ndarray]:
    """Project the outer board corners from a detected interior-corner grid.

    *interior* holds ``cols × rows`` points in row-major pattern order.
    Interior point ``(c, r)`` sits at lattice position ``(c + 1, r + 1)``;
    the board outline is the lattice rectangle ``(0, 0)–(cols+1, rows+1)``.
    """
    pts = np.asarray(interior, dtype=np.float32).reshape(-1, 2)
    if pts.shape[0] != cols * rows:
        return None

    ideal = np.array(
        [[c + 1, r + 1] for r in range(rows) for c in range(cols)],
        dtype=np.float32,
    )
    H, _ = cv2.findHomography(ideal, pts, 0)
    if H is None:
        return None

    outer = np.array(
        [[[0, 0]], [[cols + 1, 0]], [[cols + 1, rows + 1]], [[0, rows + 1]]],
        dtype=np.float32,
    )
    projected = cv2.perspectiveTransform(outer, H).reshape(4, 2)
    if not np.all(np.isfinite(projected)):
        return None
    return projected


def quadrant_extremes(pts: np.ndarray) -> Optional[np.ndarray]:
    """Pick one extremal point per quadrant around the centroid of *pts*.

    Returns a 4×2 float32 array ``[TL, TR, BR, BL]`` or ``None`` if any
    quadrant is empty.
    """
    pts = np.asarray(pts, dtype=np.float32).reshape(-1, 2)
    cx, cy = pts.mean(axis=0)
    x, y = pts[:, 0], pts[:, 1]
    s = x + y
    d = x - y

    picks = [
        ((x < cx) & (y < cy), s, np.argmin),     # TL
        ((x >= cx) & (y < cy), d, np.argmax),    # TR
        ((x >= cx) & (y >= cy), s, np.argmax),   # BR
        ((x < cx) & (y >= cy), d, np.argmin),    # BL
    ]
    chosen = []
    for mask, metric, pick in picks:
        idx = np.flatnonzero(mask)
        if idx.size == 0:
            return None
        chosen.append(pts[idx[pick(metric[idx])]])
    return np.array(chosen, dtype=np.float32)


def _near_border(pts: np.ndarray, h: int, w: int, margin: float) -> bool:
    """True if any corner lies within *margin* pixels of the frame edge."""
    x, y = pts[:, 0], pts[:, 1]
    return bool(
        np.any(x < margin) or np.any(y < margin)
        or np.any(x > w - 1 - margin) or np.any(y > h - 1 - margin)
    )
