"""
Piece Classifier Contract – labels, input format, backend protocol
==================================================================

A trained tile classifier is only meaningful together with the exact
label order, input size and normalisation it was trained with.  Those
three facts travel together as a :class:`ModelContract`; the pipeline
never infers them from the model.

Pinned contract (``MOBILENET_V3_CONTRACT``)::

    index  0  1  2  3  4  5  6  7  8  9  10 11 12
    label  .  P  N  B  R  Q  K  p  n  b  r  q  k

    input  64×64, grayscale tile replicated to 3 channels,
           scaled to [0, 1] then ImageNet mean/std normalised
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Dict, Protocol, Sequence, Tuple, runtime_checkable

import numpy as np


class PieceLabel(str, enum.Enum):
    """The 13 tile classes, valued by their FEN character."""
    EMPTY = "1"
    WHITE_PAWN = "P"
    WHITE_KNIGHT = "N"
    WHITE_BISHOP = "B"
    WHITE_ROOK = "R"
    WHITE_QUEEN = "Q"
    WHITE_KING = "K"
    BLACK_PAWN = "p"
    BLACK_KNIGHT = "n"
    BLACK_BISHOP = "b"
    BLACK_ROOK = "r"
    BLACK_QUEEN = "q"
    BLACK_KING = "k"

    @property
    def fen_char(self) -> str:
        return self.value

    @property
    def is_empty(self) -> bool:
        return self is PieceLabel.EMPTY

    @classmethod
    def from_fen_char(cls, ch: str) -> "PieceLabel":
        try:
            return FEN_CHAR_TO_LABEL[ch]
        except KeyError:
            raise ValueError(f"Not a FEN piece character: {ch!r}") from None


FEN_CHAR_TO_LABEL: Dict[str, PieceLabel] = {label.value: label for label in PieceLabel}

IMAGENET_MEAN: Tuple[float, float, float] = (0.485, 0.456, 0.406)
IMAGENET_STD: Tuple[float, float, float] = (0.229, 0.224, 0.225)


@dataclass(frozen=True)
class ModelContract:
    """Everything about a trained artifact the pipeline relies on."""
    name: str
    version: str
    labels: Tuple[PieceLabel, ...]        # output index → label
    input_size: int                       # square side in pixels
    grayscale: bool                       # tile converted to gray first
    mean: Tuple[float, ...] = IMAGENET_MEAN
    std: Tuple[float, ...] = IMAGENET_STD

    @property
    def num_classes(self) -> int:
        return len(self.labels)

    def __post_init__(self) -> None:
        if len(set(self.labels)) != len(self.labels):
            raise ValueError(f"{self.name}: duplicate labels in contract")
        if self.input_size <= 0:
            raise ValueError(f"{self.name}: input_size must be positive")


MOBILENET_V3_CONTRACT = ModelContract(
    name="mobilenet_v3_small_tiles",
    version="1",
    labels=(
        PieceLabel.EMPTY,
        PieceLabel.WHITE_PAWN,
        PieceLabel.WHITE_KNIGHT,
        PieceLabel.WHITE_BISHOP,
        PieceLabel.WHITE_ROOK,
        PieceLabel.WHITE_QUEEN,
        PieceLabel.WHITE_KING,
        PieceLabel.BLACK_PAWN,
        PieceLabel.BLACK_KNIGHT,
        PieceLabel.BLACK_BISHOP,
        PieceLabel.BLACK_ROOK,
        PieceLabel.BLACK_QUEEN,
        PieceLabel.BLACK_KING,
    ),
    input_size=64,
    grayscale=True,
)


@runtime_checkable
class PieceClassifier(Protocol):
    """Backend interface: tile image(s) → probability vectors.

    ``load`` is called once and amortised across tiles and invocations;
    ``release`` frees whatever ``load`` acquired.
    """

    contract: ModelContract

    def load(self) -> None: ...

    def classify(self, tile: np.ndarray) -> np.ndarray: ...

    def classify_batch(self, tiles: Sequence[np.ndarray]) -> np.ndarray: ...

    def release(self) -> None: ...
