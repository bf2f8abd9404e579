"""Perspective rectification and 8×8 tile segmentation."""
from __future__ import annotations

import numpy as np
import pytest

from boardscan.config import PipelineConfig
from boardscan.detection.rectify import (
    PerspectiveRectifier,
    crop_box,
    shrink_toward_centroid,
)
from boardscan.detection.tiles import TileSegmenter
from boardscan.detection.types import Quadrilateral
from boardscan.errors import CropRegionInvalid


def _quad(x1, y1, x2, y2) -> Quadrilateral:
    return Quadrilateral.from_points([(x1, y1), (x2, y1), (x2, y2), (x1, y2)])


@pytest.fixture()
def marked_board() -> np.ndarray:
    """400×400 image, board at [50, 350) with only its top-left quarter bright."""
    img = np.zeros((400, 400), dtype=np.uint8)
    img[50:200, 50:200] = 255
    return img


class TestRectifier:
    def test_orientation_preserved(self, marked_board):
        rectifier = PerspectiveRectifier(PipelineConfig(inner_margin=0.0))
        board = rectifier.rectify(marked_board, _quad(50, 50, 349, 349), 300)

        assert board.image.shape == (300, 300)
        assert board.size == 300
        assert board.image[:100, :100].mean() > 200
        assert board.image[:100, 200:].mean() < 50
        assert board.image[200:, :100].mean() < 50
        assert board.image[200:, 200:].mean() < 50

    def test_color_input_keeps_channels(self, marked_board):
        bgr = np.dstack([marked_board] * 3)
        board = PerspectiveRectifier().rectify(bgr, _quad(50, 50, 349, 349), 120)
        assert board.image.shape == (120, 120, 3)

    def test_source_crop_is_padded_and_clamped(self, marked_board):
        board = PerspectiveRectifier().rectify(marked_board, _quad(50, 50, 349, 349), 100)
        x, y, w, h = board.source_crop
        assert x < 50 and y < 50
        assert x + w <= 400 and y + h <= 400
        assert board.homography.shape == (3, 3)

    def test_corner_outside_image(self, marked_board):
        with pytest.raises(CropRegionInvalid) as excinfo:
            PerspectiveRectifier().rectify(marked_board, _quad(-40, -40, 300, 300), 300)
        assert excinfo.value.measurements["image_size"] == (400, 400)

    def test_non_positive_size(self, marked_board):
        with pytest.raises(CropRegionInvalid):
            PerspectiveRectifier().rectify(marked_board, _quad(50, 50, 349, 349), 0)


class TestCropHelpers:
    def test_crop_box_padding(self):
        corners = np.array([[50, 50], [350, 50], [350, 350], [50, 350]], dtype=np.float64)
        assert crop_box(corners, 400, 400, 0.1) == (20, 20, 381, 381)

    def test_crop_box_clamped(self):
        corners = np.array([[10, 10], [390, 10], [390, 390], [10, 390]], dtype=np.float64)
        assert crop_box(corners, 400, 400, 0.1) == (0, 0, 400, 400)

    def test_shrink_toward_centroid(self):
        corners = np.array([[0, 0], [100, 0], [100, 100], [0, 100]], dtype=np.float64)
        shrunk = shrink_toward_centroid(corners, 0.1)
        np.testing.assert_allclose(shrunk, [[5, 5], [95, 5], [95, 95], [5, 95]])

    def test_zero_margin_copies(self):
        corners = np.array([[0, 0], [100, 0], [100, 100], [0, 100]], dtype=np.float64)
        shrunk = shrink_toward_centroid(corners, 0.0)
        assert shrunk is not corners
        np.testing.assert_array_equal(shrunk, corners)


class TestSegmenter:
    @pytest.fixture()
    def indexed_board(self) -> np.ndarray:
        board = np.zeros((400, 400), dtype=np.uint8)
        for row in range(8):
            for col in range(8):
                board[row * 50:(row + 1) * 50, col * 50:(col + 1) * 50] = row * 8 + col
        return board

    def test_row_major_without_rotation(self, indexed_board):
        tiles = TileSegmenter().segment(indexed_board)
        assert len(tiles) == 64
        for i, tile in enumerate(tiles):
            assert tile.index == i
            assert (tile.row, tile.col) == divmod(i, 8)
            assert tile.image.shape == (50, 50)
            assert int(tile.image.mean()) == i

    def test_square_names(self, indexed_board):
        tiles = TileSegmenter().segment(indexed_board)
        assert tiles[0].square_name == "a8"
        assert tiles[7].square_name == "h8"
        assert tiles[56].square_name == "a1"
        assert tiles[63].square_name == "h1"

    def test_size_not_divisible_by_eight(self):
        tiles = TileSegmenter().segment(np.zeros((403, 403), dtype=np.uint8))
        heights = {t.image.shape[0] for t in tiles}
        assert heights <= {50, 51}
        assert sum(t.image.shape[1] for t in tiles[:8]) == 403

    def test_too_small(self):
        with pytest.raises(ValueError):
            TileSegmenter().segment(np.zeros((7, 7), dtype=np.uint8))
