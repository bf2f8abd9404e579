"""
Board Scan
==========

Turns a photograph of a physical chessboard into a FEN position string.

Architecture:
    1. Corner detection   – pattern match → contour approx → feature cluster
    2. Geometry check     – side ratios, minimum size, advisory quality score
    3. Perspective rect.  – homography onto an S×S canonical square
    4. Tile segmentation  – 8×8 grid, row 0 = top, col 0 = left
    5. Classification     – injectable 13-class tile classifier
    6. FEN assembly       – run-length encoded board field
"""

__version__ = "1.0.0"
