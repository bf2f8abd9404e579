"""
Tile Segmentation – canonical board → 8×8 grid
==============================================

Row 0 is the top of the rectified image (assumed rank 8) and col 0 its
left edge (assumed file a).  No rotation or flip is ever applied; board
orientation is a standing assumption, not something this stage detects.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

import numpy as np

BOARD_DIM: int = 8


@dataclass
class Tile:
    """One square of the rectified board."""
    row: int                   # 0–7, 0 = top of the rectified image
    col: int                   # 0–7, 0 = left
    image: np.ndarray

    @property
    def index(self) -> int:
        """Row-major position, 0 = top-left, 63 = bottom-right."""
        return self.row * BOARD_DIM + self.col

    @property
    def square_name(self) -> str:
        """Algebraic name under the rank-8-at-top assumption (``a8`` … ``h1``)."""
        return f"{'abcdefgh'[self.col]}{BOARD_DIM - self.row}"


class TileSegmenter:
    """Split an S×S board image into 64 tiles in row-major order."""

    def segment(self, board_img: np.ndarray) -> List[Tile]:
        h, w = board_img.shape[:2]
        if h < BOARD_DIM or w < BOARD_DIM:
            raise ValueError(f"Board image too small to segment: {w}x{h}")
        cell_h = h / BOARD_DIM
        cell_w = w / BOARD_DIM
        tiles: List[Tile] = []

        for row in range(BOARD_DIM):
            for col in range(BOARD_DIM):
                y1 = int(row * cell_h)
                y2 = int((row + 1) * cell_h)
                x1 = int(col * cell_w)
                x2 = int((col + 1) * cell_w)
                tiles.append(Tile(row=row, col=col, image=board_img[y1:y2, x1:x2]))

        return tiles
