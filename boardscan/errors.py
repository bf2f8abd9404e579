"""
Error taxonomy for the recognition pipeline.

Every failure carries a stable ``code``, a ``detail`` string, the measured
quantities that caused it and a ``hint`` a caller can show to a user.
"""

from __future__ import annotations

from typing import Any, Dict


class RecognitionError(Exception):
    """Base class for all pipeline failures."""

    code: str = "UNEXPECTED_ERROR"
    hint: str = "Try again with a different photo."

    def __init__(self, detail: str = "", **measurements: Any) -> None:
        self.detail = detail or self.__class__.__name__
        self.measurements: Dict[str, Any] = measurements
        super().__init__(self.detail)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "detail": self.detail,
            "hint": self.hint,
            "measurements": dict(self.measurements),
        }

    def __str__(self) -> str:
        return f"{self.code}: {self.detail}"


class ImageDecodeFailed(RecognitionError):
    code = "IMAGE_DECODE_FAILED"
    hint = "The file is not a readable JPEG or PNG image."


class NotEnoughCorners(RecognitionError):
    code = "NOT_ENOUGH_CORNERS"
    hint = "No chessboard found; make sure the whole board is in the frame."


class DegenerateQuadrilateral(RecognitionError):
    code = "DEGENERATE_QUADRILATERAL"
    hint = "The detected board outline is degenerate; retake the photo."


class BoardTooSmall(RecognitionError):
    code = "BOARD_TOO_SMALL"
    hint = "Move closer so the board fills more of the photo."


class BoardTooDistorted(RecognitionError):
    code = "BOARD_TOO_DISTORTED"
    hint = "Capture the board more straight-on."


class OutputSizeTooSmall(RecognitionError):
    code = "OUTPUT_SIZE_TOO_SMALL"
    hint = "Move closer or use a higher resolution photo."


class CropRegionInvalid(RecognitionError):
    code = "CROP_REGION_INVALID"
    hint = "Part of the board is outside the photo; keep all four corners visible."


class EncodingFailed(RecognitionError):
    code = "ENCODING_FAILED"
    hint = "The rectified board could not be encoded."


class ClassifierUnavailable(RecognitionError):
    code = "CLASSIFIER_UNAVAILABLE"
    hint = "Check that the piece classifier weights exist and match the model contract."


class UnexpectedError(RecognitionError):
    code = "UNEXPECTED_ERROR"
