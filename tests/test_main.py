"""Command-line entry point."""
from __future__ import annotations

import json

import pytest

from boardscan.inference.pipeline import decode_image
from boardscan.main import EXIT_BAD_INPUT, EXIT_RECOGNITION_FAILED, main


@pytest.fixture()
def board_path(tmp_path, start_board_png):
    path = tmp_path / "board.png"
    path.write_bytes(start_board_png)
    return path


class TestIsolateCommand:
    def test_writes_board(self, tmp_path, board_path):
        out = tmp_path / "topdown.png"
        main(["isolate", "--image", str(board_path), "--output", str(out)])
        board = decode_image(out.read_bytes())
        assert board.shape[0] == board.shape[1]

    def test_no_board_exit_code(self, tmp_path, blank_png, capsys):
        path = tmp_path / "blank.png"
        path.write_bytes(blank_png)
        with pytest.raises(SystemExit) as excinfo:
            main(["isolate", "--image", str(path), "--output", str(tmp_path / "o.png")])
        assert excinfo.value.code == EXIT_RECOGNITION_FAILED
        assert "NOT_ENOUGH_CORNERS" in capsys.readouterr().err

    def test_policy_override(self, tmp_path, board_path, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main([
                "isolate", "--image", str(board_path),
                "--output", str(tmp_path / "o.png"), "--min-board-px", "600",
            ])
        assert excinfo.value.code == EXIT_RECOGNITION_FAILED
        assert "BOARD_TOO_SMALL" in capsys.readouterr().err

    def test_invalid_config(self, tmp_path, board_path):
        with pytest.raises(SystemExit) as excinfo:
            main([
                "isolate", "--image", str(board_path),
                "--output", str(tmp_path / "o.png"), "--max-distortion", "0.5",
            ])
        assert excinfo.value.code == EXIT_BAD_INPUT


class TestRecognizeCommand:
    def test_banner(self, board_path, checkpoint, capsys):
        main(["recognize", "--image", str(board_path), "--weights", str(checkpoint)])
        out = capsys.readouterr().out
        assert "BOARD RECOGNITION RESULT" in out
        assert "FEN (board)" in out
        assert " w - - 0 1" in out

    def test_json(self, board_path, checkpoint, capsys):
        main([
            "recognize", "--image", str(board_path),
            "--weights", str(checkpoint), "--json",
        ])
        payload = json.loads(capsys.readouterr().out)
        assert len(payload["fen"].split("/")) == 8
        assert payload["full_fen"].startswith(payload["fen"])
        assert len(payload["squares"]) == 64
        assert payload["detection_source"] in ("pattern_match", "contour_approx")

    def test_saves_diagnostic_images(self, tmp_path, board_path, checkpoint, start_board):
        annotated = tmp_path / "annotated.png"
        board = tmp_path / "board.png"
        main([
            "recognize", "--image", str(board_path), "--weights", str(checkpoint),
            "--save-annotated", str(annotated), "--save-board", str(board),
        ])
        assert decode_image(annotated.read_bytes()).shape == start_board.shape
        rectified = decode_image(board.read_bytes())
        assert rectified.shape[0] == rectified.shape[1]

    def test_missing_image(self, tmp_path):
        with pytest.raises(SystemExit) as excinfo:
            main([
                "recognize", "--image", str(tmp_path / "nope.png"),
                "--weights", str(tmp_path / "w.pt"),
            ])
        assert excinfo.value.code == EXIT_BAD_INPUT

    def test_missing_weights(self, tmp_path, board_path, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main([
                "recognize", "--image", str(board_path),
                "--weights", str(tmp_path / "w.pt"),
            ])
        assert excinfo.value.code == EXIT_RECOGNITION_FAILED
        assert "CLASSIFIER_UNAVAILABLE" in capsys.readouterr().err


def test_no_command_prints_help(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main([])
    assert excinfo.value.code == 0
    assert "recognize" in capsys.readouterr().out
