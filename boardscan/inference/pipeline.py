"""
Inference Pipeline – End-to-End Photo → FEN
===========================================

This is the single-call entry point for production inference.

Pipeline stages:
  1. Prepare      – grayscale + downscale to working resolution
  2. Detect       – corner-candidate strategy chain
  3. Validate     – geometry checks, canonical size, quality score
  4. Rectify      – homography onto an S×S board
  5. Verify       – the rectified region must correlate with an 8×8 checker
  6. Segment      – 8×8 tiles, row 0 = top
  7. Classify     – one batched classifier call for all 64 tiles
  8. Assemble     – FEN board field + advisory legality report

Every stage runs inside :meth:`BoardRecognitionPipeline._stage`, which
times it and turns foreign exceptions into
:class:`~boardscan.errors.UnexpectedError`.  Intermediates are freed
by reference counting: the full-resolution grayscale copy is never bound
to a name, so after a downscale it goes as soon as the working image
exists; edge maps, contours and crops never leave the stage that made
them; the working image goes when :meth:`~BoardRecognitionPipeline.locate_board` returns.
Only the rectified board (and, with diagnostics, the source image)
outlives a call.
The first failing stage ends the call; there are no retries.

A pipeline holds no per-call state; the one-time classifier load is
guarded by a lock, so one instance with a thread-safe classifier can
serve concurrent calls.
Run it off any interactive thread; a call cannot be interrupted midway.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

import cv2
import numpy as np

from boardscan.config import PipelineConfig
from boardscan.detection.checker import checker_score
from boardscan.detection.corners import CornerCandidateDetector, to_working_resolution
from boardscan.detection.geometry import GeometryReport, GeometryValidator, QualityScore
from boardscan.detection.rectify import PerspectiveRectifier, RectifiedBoard
from boardscan.detection.tiles import Tile, TileSegmenter
from boardscan.detection.types import DetectionCandidate, Quadrilateral
from boardscan.errors import (
    ClassifierUnavailable,
    EncodingFailed,
    ImageDecodeFailed,
    NotEnoughCorners,
    RecognitionError,
    UnexpectedError,
)
from boardscan.inference.fen_utils import (
    BoardPosition,
    assemble_board_field,
    validate_position,
)
from boardscan.models.contract import PieceClassifier, PieceLabel

log = logging.getLogger(__name__)


# ── Result dataclasses ────────────────────────────────────────────────

@dataclass
class ClassificationResult:
    """Label assigned to one tile."""
    tile: Tile
    label: PieceLabel
    confidence: float                  # arg-max probability

    def to_dict(self) -> Dict[str, Any]:
        return {
            "row": self.tile.row,
            "col": self.tile.col,
            "square": self.tile.square_name,
            "label": self.label.fen_char,
            "confidence": round(self.confidence, 4),
        }


@dataclass
class BoardLocation:
    """Output of the geometric half of the pipeline."""
    candidate: DetectionCandidate      # working coordinates
    geometry: GeometryReport
    board: RectifiedBoard
    scale: float                       # working = source * scale

    @property
    def source_quad(self) -> Quadrilateral:
        return self.candidate.quad.scaled(1.0 / self.scale)


@dataclass
class RecognitionResult:
    """Full output of the recognition pipeline."""
    position: BoardPosition
    classifications: List[ClassificationResult]
    quality: QualityScore
    low_confidence: bool               # quality below the advisory threshold
    mean_confidence: float             # average arg-max probability
    detection_source: str              # strategy that found the board
    corners: List[Tuple[float, float]] # TL, TR, BR, BL in source pixels
    violations: List[str] = field(default_factory=list)
    annotated_image: Optional[np.ndarray] = None
    board_image: Optional[np.ndarray] = None

    @property
    def board_field(self) -> str:
        return self.position.board_field

    @property
    def full_fen(self) -> str:
        return self.position.full_fen

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fen": self.board_field,
            "full_fen": self.full_fen,
            "quality": {
                "ratio_score": round(self.quality.ratio_score, 2),
                "size_score": round(self.quality.size_score, 2),
                "total": round(self.quality.total, 2),
            },
            "low_confidence": self.low_confidence,
            "mean_confidence": round(self.mean_confidence, 4),
            "detection_source": self.detection_source,
            "corners": [[round(x, 1), round(y, 1)] for x, y in self.corners],
            "violations": list(self.violations),
            "squares": [c.to_dict() for c in self.classifications],
        }


# ── Pipeline class ─────────────────────────────────────────────────────

class BoardRecognitionPipeline:
    """End-to-end chessboard photo → FEN pipeline.

    Parameters
    ----------
    classifier : PieceClassifier, optional
        Tile classifier backend.  Only needed for :meth:`recognize`;
        board isolation works without one.  Loaded lazily on first use
        and released by :meth:`close`.
    config : PipelineConfig, optional
        Policy values; defaults to :class:`PipelineConfig()`.
    """

    def __init__(
        self,
        classifier: Optional[PieceClassifier] = None,
        config: Optional[PipelineConfig] = None,
    ) -> None:
        self.config = (config or PipelineConfig()).validate()
        self.classifier = classifier
        self.detector = CornerCandidateDetector(self.config)
        self.validator = GeometryValidator(self.config)
        self.rectifier = PerspectiveRectifier(self.config)
        self.segmenter = TileSegmenter()
        self._classifier_loaded = False
        self._load_lock = threading.Lock()

        log.info(
            "Pipeline ready  classifier=%s  working_max_side=%d  max_distortion=%.2f",
            getattr(getattr(classifier, "contract", None), "name", None),
            self.config.working_max_side,
            self.config.max_distortion,
        )

    def __enter__(self) -> "BoardRecognitionPipeline":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Release the classifier if this pipeline loaded it."""
        with self._load_lock:
            if self._classifier_loaded and self.classifier is not None:
                self.classifier.release()
            self._classifier_loaded = False

    # ── Public API ─────────────────────────────────────────────────────

    def recognize(self, image_bytes: bytes, diagnostics: bool = False) -> RecognitionResult:
        """Run the full pipeline on encoded JPEG / PNG bytes."""
        with self._stage("decode"):
            image = decode_image(image_bytes)
        return self.recognize_image(image, diagnostics=diagnostics)

    def recognize_image(
        self, image: np.ndarray, diagnostics: bool = False,
    ) -> RecognitionResult:
        """Run the full pipeline on a BGR or grayscale image.

        Parameters
        ----------
        image : np.ndarray
            Source pixels (OpenCV convention).
        diagnostics : bool
            Attach the annotated source image and the rectified board.

        Returns
        -------
        RecognitionResult
        """
        location = self.locate_board(image)

        with self._stage("segment"):
            tiles = self.segmenter.segment(location.board.image)

        with self._stage("classify"):
            classifications = self._classify_tiles(tiles)

        with self._stage("assemble"):
            position = assemble_board_field([c.label for c in classifications])
            violations = validate_position(position.board_field)

        quality = location.geometry.quality
        low_confidence = quality.total < self.config.low_quality_threshold
        if low_confidence:
            log.warning(
                "Low-confidence result: quality %.1f below %.1f",
                quality.total, self.config.low_quality_threshold,
            )
        if violations:
            log.warning("Recognised position looks illegal: %s", "; ".join(violations))

        source_quad = location.source_quad
        result = RecognitionResult(
            position=position,
            classifications=classifications,
            quality=quality,
            low_confidence=low_confidence,
            mean_confidence=float(np.mean([c.confidence for c in classifications])),
            detection_source=location.candidate.source.value,
            corners=[p.as_tuple() for p in source_quad.corners],
            violations=violations,
        )
        if diagnostics:
            result.annotated_image = annotate_source(
                image, source_quad, location.candidate.source.value,
            )
            result.board_image = location.board.image

        log.info("Recognised %s (quality=%.1f)", position.board_field, quality.total)
        return result

    def locate_board(self, image: np.ndarray) -> BoardLocation:
        """Run detection, validation, rectification and checker verification."""
        if image is None or image.size == 0:
            raise ImageDecodeFailed("image is empty")

        with self._stage("prepare"):
            working, scale = to_working_resolution(
                to_grayscale(image), self.config.working_max_side,
            )

        with self._stage("detect"):
            candidate = self.detector.detect(working)

        with self._stage("validate"):
            report = self.validator.validate(candidate.quad)

        with self._stage("rectify"):
            board = self.rectifier.rectify(working, candidate.quad, report.output_size)

        with self._stage("verify"):
            score = checker_score(board.image, self.config.checker_grid_px)
            if score < self.config.min_checker_score:
                raise NotEnoughCorners(
                    f"outline found via {candidate.source.value} does not enclose a "
                    f"checker pattern (score {score:.2f})",
                    checker_score=round(score, 4),
                    threshold=self.config.min_checker_score,
                    source=candidate.source.value,
                )
            log.debug("Checker score %.3f", score)

        return BoardLocation(candidate=candidate, geometry=report, board=board, scale=scale)

    def isolate_board(self, image_bytes: bytes, ext: str = ".png") -> bytes:
        """Return the encoded rectified board for *image_bytes*."""
        with self._stage("decode"):
            image = decode_image(image_bytes)
        location = self.locate_board(image)
        with self._stage("encode"):
            return encode_image(location.board.image, ext)

    # ── Square classification ──────────────────────────────────────────

    def _ensure_classifier(self) -> PieceClassifier:
        if self.classifier is None:
            raise ClassifierUnavailable("no piece classifier configured")
        with self._load_lock:
            if not self._classifier_loaded:
                try:
                    self.classifier.load()
                except RecognitionError:
                    raise
                except Exception as exc:
                    raise ClassifierUnavailable(
                        f"classifier failed to load: {exc}"
                    ) from exc
                self._classifier_loaded = True
        return self.classifier

    def _classify_tiles(self, tiles: List[Tile]) -> List[ClassificationResult]:
        """Batch-classify all tiles, apply arg-max and the confidence floor."""
        classifier = self._ensure_classifier()
        contract = classifier.contract

        probs = np.asarray(classifier.classify_batch([t.image for t in tiles]), dtype=np.float64)
        expected = (len(tiles), contract.num_classes)
        if probs.shape != expected:
            raise ClassifierUnavailable(
                f"classifier returned shape {probs.shape}, expected {expected}",
                contract=contract.name,
            )

        results: List[ClassificationResult] = []
        for tile, p in zip(tiles, probs):
            idx = int(np.argmax(p))
            conf = float(p[idx])
            label = contract.labels[idx]
            if conf < self.config.confidence_floor:
                label = PieceLabel.EMPTY
            results.append(ClassificationResult(tile=tile, label=label, confidence=conf))
        return results

    # ── Stage scope ────────────────────────────────────────────────────

    @contextmanager
    def _stage(self, name: str) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        except RecognitionError as exc:
            log.debug("Stage %s failed: %s", name, exc)
            raise
        except Exception as exc:
            raise UnexpectedError(f"{name} stage failed: {exc}", stage=name) from exc
        finally:
            log.debug("Stage %s took %.1f ms", name, (time.perf_counter() - start) * 1000)


# ── Codec helpers ──────────────────────────────────────────────────────

def decode_image(image_bytes: bytes) -> np.ndarray:
    """Decode JPEG / PNG bytes to a BGR image (EXIF orientation applied)."""
    if not image_bytes:
        raise ImageDecodeFailed("no image data")
    buf = np.frombuffer(image_bytes, dtype=np.uint8)
    image = cv2.imdecode(buf, cv2.IMREAD_COLOR)
    if image is None or image.size == 0:
        raise ImageDecodeFailed(
            "image data could not be decoded", num_bytes=len(image_bytes),
        )
    return image


def encode_image(image: np.ndarray, ext: str = ".png") -> bytes:
    """Encode an image with OpenCV; ``EncodingFailed`` if the codec refuses."""
    try:
        ok, buf = cv2.imencode(ext, image)
    except cv2.error as exc:
        raise EncodingFailed(f"could not encode image as {ext}: {exc}", ext=ext) from exc
    if not ok:
        raise EncodingFailed(f"could not encode image as {ext}", ext=ext)
    return buf.tobytes()


def to_grayscale(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return image
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)


# ── Debug visualisation ────────────────────────────────────────────────

def annotate_source(
    image: np.ndarray, quad: Quadrilateral, label: str = "",
) -> np.ndarray:
    """Draw the detected board outline and corner indices on a copy of *image*."""
    vis = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR) if image.ndim == 2 else image.copy()
    thickness = max(2, int(round(max(vis.shape[:2]) / 400)))
    pts = np.round(quad.to_array()).astype(np.int32)

    cv2.polylines(vis, [pts.reshape(-1, 1, 2)], True, (0, 255, 0), thickness)
    for i, (x, y) in enumerate(pts):
        cv2.circle(vis, (int(x), int(y)), thickness * 3, (0, 0, 255), -1)
        cv2.putText(
            vis, ("TL", "TR", "BR", "BL")[i],
            (int(x) + 6, int(y) - 6),
            cv2.FONT_HERSHEY_SIMPLEX, 0.5 * thickness, (255, 0, 0), thickness,
        )
    if label:
        cv2.putText(
            vis, label, (10, 30 * thickness),
            cv2.FONT_HERSHEY_SIMPLEX, 0.6 * thickness, (0, 255, 0), thickness,
        )
    return vis


def annotate_board(result: RecognitionResult) -> np.ndarray:
    """Draw piece labels and confidence on the rectified board image.

    Requires a result produced with ``diagnostics=True``.
    """
    if result.board_image is None:
        raise ValueError("result has no board image; recognise with diagnostics=True")

    board = result.board_image
    vis = cv2.cvtColor(board, cv2.COLOR_GRAY2BGR) if board.ndim == 2 else board.copy()
    h, w = vis.shape[:2]
    cell_h, cell_w = h // 8, w // 8

    for c in result.classifications:
        x = c.tile.col * cell_w
        y = c.tile.row * cell_h

        # Colour: green if confident, yellow if marginal, red if low
        if c.confidence >= 0.8:
            color = (0, 200, 0)
        elif c.confidence >= 0.5:
            color = (0, 200, 255)
        else:
            color = (0, 0, 255)

        label = "" if c.label.is_empty else c.label.fen_char
        cv2.putText(
            vis, label,
            (x + 4, y + cell_h // 2 + 6),
            cv2.FONT_HERSHEY_SIMPLEX, 0.6, color, 2,
        )
        cv2.putText(
            vis, f"{c.confidence:.0%}",
            (x + 4, y + cell_h - 6),
            cv2.FONT_HERSHEY_SIMPLEX, 0.35, color, 1,
        )
        cv2.rectangle(vis, (x, y), (x + cell_w, y + cell_h), (80, 80, 80), 1)

    return vis
