"""
FEN Utilities – Assembly, Expansion & Advisory Validation
=========================================================

Responsibilities:
  1. Turn 64 row-major tile labels into a FEN board field.
  2. Expand a board field back into 64 labels.
  3. Report (never repair) basic legality problems of a recognised
     position so a caller can flag a doubtful result.

Only the board field is derived from pixels.  Side to move, castling
rights, en-passant square and move counters cannot be seen in a photo;
``fen_to_full`` appends a fixed placeholder for them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from boardscan.models.contract import PieceLabel

FULL_FEN_PLACEHOLDER: str = "w - - 0 1"


# ── Data structures ────────────────────────────────────────────────────

@dataclass(frozen=True)
class BoardPosition:
    """A recognised position: one string per rank plus the joined field."""
    rank_strings: Tuple[str, ...]       # top rank first
    board_field: str                    # "rank8/rank7/…/rank1"

    @property
    def full_fen(self) -> str:
        return fen_to_full(self.board_field)


# ── FEN construction ───────────────────────────────────────────────────

def encode_rank(labels: Sequence[PieceLabel]) -> str:
    """Run-length encode one rank of 8 labels, files left → right."""
    row_chars: List[str] = []
    empty_count = 0

    for label in labels:
        if label.is_empty:
            empty_count += 1
        else:
            if empty_count > 0:
                row_chars.append(str(empty_count))
                empty_count = 0
            row_chars.append(label.fen_char)

    if empty_count > 0:
        row_chars.append(str(empty_count))

    return "".join(row_chars)


def assemble_board_field(labels: Sequence[PieceLabel]) -> BoardPosition:
    """Convert 64 row-major labels (top-left first) into a board field.

    Raises
    ------
    ValueError
        If *labels* does not hold exactly 64 entries.
    """
    if len(labels) != 64:
        raise ValueError(f"Expected 64 labels, got {len(labels)}")

    ranks = tuple(encode_rank(labels[start:start + 8]) for start in range(0, 64, 8))
    return BoardPosition(rank_strings=ranks, board_field="/".join(ranks))


def expand_board_field(board_field: str) -> List[PieceLabel]:
    """Inverse of :func:`assemble_board_field`.

    Accepts a bare board field or a full FEN (only the first field is
    read).  Raises ``ValueError`` on malformed input.
    """
    field_str = board_field.strip().split(" ")[0]
    rows = field_str.split("/")
    if len(rows) != 8:
        raise ValueError(f"Expected 8 ranks, got {len(rows)}")

    labels: List[PieceLabel] = []
    for rank_idx, row in enumerate(rows):
        rank: List[PieceLabel] = []
        prev_digit = False
        for ch in row:
            if ch.isdigit():
                if ch == "0":
                    raise ValueError(f"Rank {8 - rank_idx}: zero-length empty run")
                if prev_digit:
                    raise ValueError(f"Rank {8 - rank_idx}: adjacent empty-run digits in {row!r}")
                prev_digit = True
                rank.extend([PieceLabel.EMPTY] * int(ch))
            else:
                prev_digit = False
                rank.append(PieceLabel.from_fen_char(ch))
        if len(rank) != 8:
            raise ValueError(
                f"Rank {8 - rank_idx} has {len(rank)} squares (expected 8)"
            )
        labels.extend(rank)
    return labels


def fen_to_full(board_field: str, placeholder: Optional[str] = None) -> str:
    """Append placeholder move / castling / en-passant / counter fields.

    Produces ``"<board> w - - 0 1"`` by default.
    """
    return f"{board_field} {placeholder or FULL_FEN_PLACEHOLDER}"


def flip_ranks(board_field: str) -> str:
    """Reverse rank order (top ↔ bottom).

    For callers that *know* the photo was taken from Black's side; the
    pipeline itself never applies this.
    """
    return "/".join(reversed(board_field.split("/")))


# ── Validation ─────────────────────────────────────────────────────────

def validate_position(board_field: str) -> List[str]:
    """Return basic legality violations of a board field (empty if none).

    Checks: exactly one king per side, at most 8 pawns per side, no pawns
    on the first or last rank.  Advisory only.
    """
    try:
        labels = expand_board_field(board_field)
    except ValueError as exc:
        return [str(exc)]

    violations: List[str] = []
    chars = [label.fen_char for label in labels]

    # King counts
    wk = chars.count("K")
    bk = chars.count("k")
    if wk != 1:
        violations.append(f"White king count = {wk} (expected 1)")
    if bk != 1:
        violations.append(f"Black king count = {bk} (expected 1)")

    # Pawn counts
    wp = chars.count("P")
    bp = chars.count("p")
    if wp > 8:
        violations.append(f"White pawn count = {wp} (max 8)")
    if bp > 8:
        violations.append(f"Black pawn count = {bp} (max 8)")

    # Pawns on rank 1 or 8
    back_ranks = chars[:8] + chars[56:]
    if "P" in back_ranks or "p" in back_ranks:
        violations.append("Pawn found on rank 1 or 8 (illegal)")

    return violations
