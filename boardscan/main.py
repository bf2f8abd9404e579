"""
Board Scan – Main Entry Point
=============================

Commands:

  1. **Recognize**  – Run the full pipeline on a photo and print the FEN.
  2. **Isolate**    – Locate and rectify the board only; write the
                      top-down board image (no classifier needed).

Usage examples
--------------

**Recognition**::

    python scan_board.py recognize \\
        --image board.jpg \\
        --weights checkpoints/tile_classifier.pt \\
        --save-annotated debug_source.png

**Board isolation**::

    python scan_board.py isolate \\
        --image board.jpg \\
        --output board_topdown.png
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path

import cv2

from boardscan.config import PipelineConfig
from boardscan.errors import RecognitionError

log = logging.getLogger("boardscan")

EXIT_BAD_INPUT = 1
EXIT_RECOGNITION_FAILED = 2


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _config_from_args(args: argparse.Namespace) -> PipelineConfig:
    overrides = {}
    for name in ("max_distortion", "min_board_px", "confidence_floor", "working_max_side"):
        value = getattr(args, name, None)
        if value is not None:
            overrides[name] = value
    return dataclasses.replace(PipelineConfig(), **overrides)


def _read_image_bytes(path: str) -> bytes:
    p = Path(path)
    if not p.is_file():
        log.error("Could not read image: %s", path)
        sys.exit(EXIT_BAD_INPUT)
    return p.read_bytes()


def _fail(exc: RecognitionError) -> None:
    print(f"{exc.code}: {exc.detail} ({exc.hint})", file=sys.stderr)
    sys.exit(EXIT_RECOGNITION_FAILED)


# ═══════════════════════════════════════════════════════════════════════
# Recognition
# ═══════════════════════════════════════════════════════════════════════

def cmd_recognize(args: argparse.Namespace) -> None:
    """Run the recognition pipeline on a photo."""
    from boardscan.inference.pipeline import BoardRecognitionPipeline, annotate_board
    from boardscan.models.classifier import TorchPieceClassifier

    image_bytes = _read_image_bytes(args.image)
    diagnostics = bool(args.save_board or args.save_annotated)

    try:
        classifier = TorchPieceClassifier(args.weights, device=args.device)
        with BoardRecognitionPipeline(classifier, _config_from_args(args)) as pipeline:
            result = pipeline.recognize(image_bytes, diagnostics=diagnostics)
    except RecognitionError as exc:
        _fail(exc)
        return
    except ValueError as exc:
        log.error("Invalid configuration: %s", exc)
        sys.exit(EXIT_BAD_INPUT)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print("\n" + "=" * 60)
        print("  BOARD RECOGNITION RESULT")
        print("=" * 60)
        print(f"  FEN (board)    : {result.board_field}")
        print(f"  FEN (full)     : {result.full_fen}")
        print(f"  Quality        : {result.quality.total:.1f}/100"
              f"{'  (LOW CONFIDENCE)' if result.low_confidence else ''}")
        print(f"  Confidence     : {result.mean_confidence:.2%}")
        print(f"  Detection      : {result.detection_source}")
        if result.violations:
            print(f"  Violations     : {result.violations}")
        print("  Orientation    : rank 8 assumed at the top of the photo")
        print("=" * 60 + "\n")

    if args.save_annotated:
        cv2.imwrite(args.save_annotated, result.annotated_image)
        log.info("Saved annotated source image to %s", args.save_annotated)
    if args.save_board:
        cv2.imwrite(args.save_board, annotate_board(result))
        log.info("Saved annotated board image to %s", args.save_board)


# ═══════════════════════════════════════════════════════════════════════
# Board isolation
# ═══════════════════════════════════════════════════════════════════════

def cmd_isolate(args: argparse.Namespace) -> None:
    """Write the rectified board image for a photo."""
    from boardscan.inference.pipeline import BoardRecognitionPipeline

    image_bytes = _read_image_bytes(args.image)
    ext = Path(args.output).suffix or ".png"

    try:
        with BoardRecognitionPipeline(config=_config_from_args(args)) as pipeline:
            encoded = pipeline.isolate_board(image_bytes, ext=ext)
    except RecognitionError as exc:
        _fail(exc)
        return
    except ValueError as exc:
        log.error("Invalid configuration: %s", exc)
        sys.exit(EXIT_BAD_INPUT)

    Path(args.output).write_bytes(encoded)
    log.info("Saved isolated board to %s", args.output)


# ═══════════════════════════════════════════════════════════════════════
# CLI
# ═══════════════════════════════════════════════════════════════════════

def _add_policy_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--max-distortion", type=float, default=None,
                   help="Largest accepted opposite-side length ratio")
    p.add_argument("--min-board-px", type=float, default=None,
                   help="Smallest accepted board side at working resolution")
    p.add_argument("--working-max-side", type=int, default=None,
                   help="Downscale bound for the longest image side")
    p.add_argument("--verbose", action="store_true", help="Debug logging")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="boardscan",
        description="Chessboard photo to FEN recognition.",
    )
    sub = parser.add_subparsers(dest="command", help="Available commands")

    # ── recognize ──
    p_rec = sub.add_parser("recognize", help="Recognize a board photo")
    p_rec.add_argument("--image", required=True, help="Path to a JPEG / PNG photo")
    p_rec.add_argument("--weights", required=True,
                       help="Path to classifier .pt checkpoint")
    p_rec.add_argument("--device", default="cpu", choices=["auto", "cpu", "cuda"])
    p_rec.add_argument("--confidence-floor", type=float, default=None,
                       help="Predictions below this probability become empty")
    p_rec.add_argument("--json", action="store_true", help="Print the result as JSON")
    p_rec.add_argument("--save-annotated", default=None,
                       help="Save the source photo with the detected outline")
    p_rec.add_argument("--save-board", default=None,
                       help="Save the rectified board with per-tile labels")
    _add_policy_args(p_rec)

    # ── isolate ──
    p_iso = sub.add_parser("isolate", help="Write the rectified board image")
    p_iso.add_argument("--image", required=True, help="Path to a JPEG / PNG photo")
    p_iso.add_argument("--output", required=True, help="Output image path")
    _add_policy_args(p_iso)

    return parser


def main(argv=None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    _setup_logging(args.verbose)

    dispatch = {
        "recognize": cmd_recognize,
        "isolate": cmd_isolate,
    }

    dispatch[args.command](args)


if __name__ == "__main__":
    main()
