"""Shared fixtures: synthetic board photos and classifier doubles.

No trained model is needed; pieces are intensity-coded (see fakes.py).
"""
from __future__ import annotations

import numpy as np
import pytest

from boardscan.config import PipelineConfig
from boardscan.inference.pipeline import BoardRecognitionPipeline
from fakes import IntensityCodedClassifier, encode_png, render_board


@pytest.fixture()
def start_board() -> np.ndarray:
    return render_board()


@pytest.fixture()
def start_board_png(start_board) -> bytes:
    return encode_png(start_board)


@pytest.fixture()
def blank_png() -> bytes:
    return encode_png(np.full((480, 640, 3), 140, dtype=np.uint8))


@pytest.fixture()
def coded_classifier() -> IntensityCodedClassifier:
    return IntensityCodedClassifier()


@pytest.fixture()
def pipeline(coded_classifier):
    with BoardRecognitionPipeline(coded_classifier, PipelineConfig()) as p:
        yield p


@pytest.fixture(scope="session")
def checkpoint(tmp_path_factory):
    """State dict of a randomly initialised tile network."""
    import torch

    from boardscan.models.classifier import BoardTileNet

    torch.manual_seed(0)
    path = tmp_path_factory.mktemp("weights") / "tile_classifier.pt"
    torch.save(BoardTileNet(pretrained=False).state_dict(), path)
    return path
