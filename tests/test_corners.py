"""Corner ordering, pattern extrapolation and the detection strategy chain."""
from __future__ import annotations

import cv2
import numpy as np
import pytest

from boardscan.config import PipelineConfig
from boardscan.detection.corners import (
    CornerCandidateDetector,
    extrapolate_outer_corners,
    quadrant_extremes,
    to_working_resolution,
)
from boardscan.detection.types import DetectionSource, Quadrilateral, order_corners
from boardscan.errors import NotEnoughCorners

from fakes import render_board

BOARD_CORNERS = np.array([[120, 120], [520, 120], [520, 520], [120, 520]], dtype=np.float32)


def _gray(image: np.ndarray) -> np.ndarray:
    return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)


class TestOrdering:
    def test_shuffled_points(self):
        pts = np.array([[300, 310], [10, 20], [12, 290], [305, 15]], dtype=np.float32)
        ordered = order_corners(pts)
        assert ordered.tolist() == [[10, 20], [305, 15], [300, 310], [12, 290]]

    def test_from_points_rejects_wrong_count(self):
        with pytest.raises(ValueError):
            Quadrilateral.from_points([(0, 0), (1, 0), (1, 1)])

    def test_scaled(self):
        quad = Quadrilateral.from_points([(0, 0), (10, 0), (10, 10), (0, 10)])
        assert quad.scaled(2.0).br.as_tuple() == (20.0, 20.0)
        assert quad.area() == pytest.approx(100.0)


class TestExtrapolation:
    def test_axis_aligned_lattice(self):
        interior = np.array(
            [[100 + 50 * (c + 1), 100 + 50 * (r + 1)] for r in range(7) for c in range(7)],
            dtype=np.float32,
        )
        outer = extrapolate_outer_corners(interior, 7, 7)
        expected = [[100, 100], [500, 100], [500, 500], [100, 500]]
        np.testing.assert_allclose(outer, expected, atol=1e-2)

    def test_perspective_lattice(self):
        H = np.array([[1.1, 0.2, 40.0], [0.05, 0.9, 30.0], [0.0005, 0.0003, 1.0]])
        ideal = np.array(
            [[[c + 1, r + 1]] for r in range(7) for c in range(7)], dtype=np.float64,
        )
        interior = cv2.perspectiveTransform(ideal * 40.0, H).reshape(-1, 2)
        outer = extrapolate_outer_corners(interior, 7, 7)

        lattice = np.array([[[0, 0]], [[8, 0]], [[8, 8]], [[0, 8]]], dtype=np.float64)
        expected = cv2.perspectiveTransform(lattice * 40.0, H).reshape(4, 2)
        np.testing.assert_allclose(outer, expected, atol=0.05)

    def test_wrong_point_count(self):
        assert extrapolate_outer_corners(np.zeros((10, 2)), 7, 7) is None


class TestQuadrantExtremes:
    def test_picks_outermost_per_quadrant(self):
        pts = np.array(
            [[10, 10], [40, 40], [90, 12], [60, 40], [88, 92], [60, 60],
             [11, 89], [40, 60]],
            dtype=np.float32,
        )
        chosen = quadrant_extremes(pts)
        assert chosen.tolist() == [[10, 10], [90, 12], [88, 92], [11, 89]]

    def test_empty_quadrant(self):
        pts = np.array([[0, 0], [10, 0], [20, 0], [30, 0]], dtype=np.float32)
        assert quadrant_extremes(pts) is None


class TestWorkingResolution:
    def test_downscale(self):
        img = np.zeros((1800, 2400), dtype=np.uint8)
        working, scale = to_working_resolution(img, 1200)
        assert working.shape == (900, 1200)
        assert scale == pytest.approx(0.5)

    def test_small_image_untouched(self):
        img = np.zeros((300, 400), dtype=np.uint8)
        working, scale = to_working_resolution(img, 1200)
        assert working is img
        assert scale == 1.0


class TestDetector:
    def test_rendered_board(self):
        detector = CornerCandidateDetector(PipelineConfig())
        candidate = detector.detect(_gray(render_board()))
        assert candidate.source in (
            DetectionSource.PATTERN_MATCH, DetectionSource.CONTOUR_APPROX,
        )
        np.testing.assert_allclose(candidate.quad.to_array(), BOARD_CORNERS, atol=6)

    def test_blank_image(self):
        detector = CornerCandidateDetector(PipelineConfig())
        with pytest.raises(NotEnoughCorners) as excinfo:
            detector.detect(np.full((480, 640), 140, dtype=np.uint8))
        assert excinfo.value.measurements["strategies"] == [
            "pattern_match", "contour_approx", "feature_cluster",
        ]

    def test_rejects_color_input(self):
        with pytest.raises(ValueError):
            CornerCandidateDetector().detect(np.zeros((10, 10, 3), dtype=np.uint8))

    def test_contour_finds_plain_rectangle(self):
        img = np.full((480, 640), 60, dtype=np.uint8)
        img[100:400, 150:450] = 220
        pts = CornerCandidateDetector()._strategy_contour(img)
        assert pts is not None
        quad = Quadrilateral.from_points(pts)
        expected = [[150, 100], [449, 100], [449, 399], [150, 399]]
        np.testing.assert_allclose(quad.to_array(), expected, atol=6)

    def test_contour_ignores_frame_filling_region(self):
        img = np.full((480, 640), 60, dtype=np.uint8)
        img[1:479, 1:639] = 220
        assert CornerCandidateDetector()._strategy_contour(img) is None

    def test_feature_cluster_on_board(self):
        pts = CornerCandidateDetector()._strategy_features(_gray(render_board()))
        assert pts is not None
        quad = Quadrilateral.from_points(pts)
        np.testing.assert_allclose(quad.to_array(), BOARD_CORNERS, atol=8)
