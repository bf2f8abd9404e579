"""
Checker Verification – is the rectified region really a chessboard?
===================================================================

The rectified board is shrunk to an 8×8 grid of ``grid_px`` squares and
correlated with an ideal checker kernel (+1 on light squares, −1 on dark
ones).  Both sides are zero-mean and unit-variance, so the score is a
Pearson coefficient; its absolute value is used because the colour of
the top-left square is unknown.

A plain rectangle (paper, a screen, a table top) scores near 0; an empty
board near 1; pieces pull the score down but leave the alternation
clearly visible.
"""

from __future__ import annotations

import cv2
import numpy as np

from boardscan.detection.tiles import BOARD_DIM


def checker_kernel(grid_px: int) -> np.ndarray:
    """Ideal 8×8 checker of ``grid_px``-pixel squares with values ±1."""
    side = BOARD_DIM * grid_px
    rows, cols = np.indices((side, side))
    light = ((rows // grid_px + cols // grid_px) % 2) == 0
    return np.where(light, 1.0, -1.0)


def checker_score(board_img: np.ndarray, grid_px: int = 8) -> float:
    """Absolute correlation of *board_img* with :func:`checker_kernel`.

    Returns a value in ``[0, 1]``; a flat image scores 0.
    """
    gray = board_img
    if gray.ndim == 3:
        gray = cv2.cvtColor(gray, cv2.COLOR_BGR2GRAY)
    side = BOARD_DIM * grid_px
    small = cv2.resize(gray, (side, side), interpolation=cv2.INTER_AREA).astype(np.float64)

    std = small.std()
    if std < 1e-6:
        return 0.0
    normed = (small - small.mean()) / std
    return float(abs(np.mean(normed * checker_kernel(grid_px))))
