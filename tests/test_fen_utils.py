"""FEN board-field assembly, expansion and advisory validation."""
from __future__ import annotations

import random

import pytest

from boardscan.inference.fen_utils import (
    BoardPosition,
    assemble_board_field,
    encode_rank,
    expand_board_field,
    fen_to_full,
    flip_ranks,
    validate_position,
)
from boardscan.models.contract import PieceLabel

from fakes import START_POSITION, expand

E = PieceLabel.EMPTY


class TestEncodeRank:
    def test_all_empty(self):
        assert encode_rank([E] * 8) == "8"

    def test_no_empty(self):
        rank = [PieceLabel.WHITE_ROOK, PieceLabel.WHITE_KNIGHT, PieceLabel.WHITE_BISHOP,
                PieceLabel.WHITE_QUEEN, PieceLabel.WHITE_KING, PieceLabel.WHITE_BISHOP,
                PieceLabel.WHITE_KNIGHT, PieceLabel.WHITE_ROOK]
        assert encode_rank(rank) == "RNBQKBNR"

    def test_runs_flushed_before_pieces_and_at_end(self):
        rank = [E, E, PieceLabel.BLACK_PAWN, E, E, E, PieceLabel.WHITE_KING, E]
        assert encode_rank(rank) == "2p3K1"

    def test_leading_piece_trailing_run(self):
        rank = [PieceLabel.BLACK_QUEEN] + [E] * 7
        assert encode_rank(rank) == "q7"


class TestAssembleBoardField:
    def test_start_position(self):
        position = assemble_board_field(expand(START_POSITION))
        assert isinstance(position, BoardPosition)
        assert position.board_field == START_POSITION
        assert position.rank_strings[0] == "rnbqkbnr"
        assert position.rank_strings[7] == "RNBQKBNR"
        assert len(position.rank_strings) == 8

    def test_empty_board(self):
        assert assemble_board_field([E] * 64).board_field == "8/8/8/8/8/8/8/8"

    def test_wrong_length_rejected(self):
        with pytest.raises(ValueError):
            assemble_board_field([E] * 63)

    def test_full_fen_placeholder(self):
        position = assemble_board_field([E] * 64)
        assert position.full_fen == "8/8/8/8/8/8/8/8 w - - 0 1"


class TestExpandBoardField:
    def test_recovers_random_grids(self):
        rng = random.Random(7)
        labels = list(PieceLabel)
        for _ in range(25):
            grid = [rng.choice(labels) for _ in range(64)]
            field = assemble_board_field(grid).board_field
            assert expand_board_field(field) == grid

    def test_accepts_full_fen(self):
        labels = expand_board_field(START_POSITION + " w KQkq - 0 1")
        assert labels[0] is PieceLabel.BLACK_ROOK
        assert labels[63] is PieceLabel.WHITE_ROOK

    @pytest.mark.parametrize("bad", [
        "8/8/8/8/8/8/8",           # seven ranks
        "9/8/8/8/8/8/8/8",         # rank too long
        "7/8/8/8/8/8/8/8",         # rank too short
        "8/8/8/8/8/8/8/7x",        # unknown piece
        "08/8/8/8/8/8/8/8",        # zero run
        "44/8/8/8/8/8/8/8",        # adjacent runs
        "8/8/8/8/8/8/8/p511",      # adjacent runs after a piece
    ])
    def test_malformed(self, bad):
        with pytest.raises(ValueError):
            expand_board_field(bad)


class TestHelpers:
    def test_fen_to_full_custom_placeholder(self):
        assert fen_to_full("8/8/8/8/8/8/8/8", "b - - 3 40").endswith(" b - - 3 40")

    def test_flip_ranks(self):
        assert flip_ranks(START_POSITION) == "RNBQKBNR/PPPPPPPP/8/8/8/8/pppppppp/rnbqkbnr"

    def test_flip_twice_is_identity(self):
        assert flip_ranks(flip_ranks(START_POSITION)) == START_POSITION


class TestValidatePosition:
    def test_start_position_is_legal(self):
        assert validate_position(START_POSITION) == []

    def test_missing_kings(self):
        violations = validate_position("8/8/8/8/8/8/8/8")
        assert any("White king" in v for v in violations)
        assert any("Black king" in v for v in violations)

    def test_too_many_pawns(self):
        violations = validate_position("k7/pppppppp/p7/8/8/8/8/K7")
        assert any("Black pawn count = 9" in v for v in violations)

    def test_pawn_on_back_rank(self):
        violations = validate_position("k6P/8/8/8/8/8/8/K7")
        assert "Pawn found on rank 1 or 8 (illegal)" in violations

    def test_malformed_reported_not_raised(self):
        assert validate_position("8/8") == ["Expected 8 ranks, got 2"]
