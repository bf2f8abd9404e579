"""
Root entry point – delegates to the boardscan package.

Usage:
    python scan_board.py recognize --image board.jpg --weights checkpoints/tile_classifier.pt
    python scan_board.py isolate   --image board.jpg --output board_topdown.png
"""

from boardscan.main import main

if __name__ == "__main__":
    main()
