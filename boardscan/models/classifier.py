"""
Board Tile Classifier – MobileNetV3-Small backend
=================================================

Architectural decisions:
  • MobileNetV3-Small chosen for CPU-friendliness (~2.5 M params) while
    retaining strong accuracy via squeeze-and-excite blocks and h-swish.
  • The classifier head is a lightweight MLP
    (dropout → 256-d → ReLU → dropout → 13-class logits).
  • ``forward`` returns raw logits; softmax is applied in
    ``predict_proba``.
  • :class:`TorchPieceClassifier` wraps the network behind the
    :class:`~boardscan.models.contract.PieceClassifier` protocol: the
    checkpoint is loaded once, all 64 tiles go through a single batched
    forward pass, and ``release`` drops the weights.
"""

from __future__ import annotations

import logging
import pickle
from pathlib import Path
from typing import List, Optional, Sequence

import cv2
import numpy as np
import torch
import torch.nn as nn
from torchvision import models, transforms

from boardscan.errors import ClassifierUnavailable
from boardscan.models.contract import MOBILENET_V3_CONTRACT, ModelContract

log = logging.getLogger(__name__)


# ── Network ────────────────────────────────────────────────────────────

class BoardTileNet(nn.Module):
    """MobileNetV3-Small with a custom 13-class head for board tiles.

    Parameters
    ----------
    num_classes : int
        Number of output classes (default 13).
    pretrained : bool
        Initialise the backbone from ImageNet weights (downloads them).
        Inference from a checkpoint never needs this.
    dropout : float
        Dropout probability used in the classifier head.
    """

    def __init__(
        self,
        num_classes: int = MOBILENET_V3_CONTRACT.num_classes,
        pretrained: bool = False,
        dropout: float = 0.3,
    ) -> None:
        super().__init__()

        weights = models.MobileNet_V3_Small_Weights.IMAGENET1K_V1 if pretrained else None
        self.backbone = models.mobilenet_v3_small(weights=weights)

        # Original: Linear(576, 1024) → Hardswish → Dropout → Linear(1024, 1000)
        in_features: int = self.backbone.classifier[0].in_features
        self.backbone.classifier = nn.Sequential(
            nn.Dropout(p=dropout),
            nn.Linear(in_features, 256),
            nn.ReLU(inplace=True),
            nn.Dropout(p=dropout),
            nn.Linear(256, num_classes),
        )

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """Return **logits** of shape ``(B, num_classes)``."""
        return self.backbone(x)

    def predict_proba(self, x: torch.Tensor) -> torch.Tensor:
        """Return softmax probabilities of shape ``(B, num_classes)``."""
        with torch.no_grad():
            logits = self.forward(x)
            return torch.softmax(logits, dim=1)


# ── Protocol implementation ────────────────────────────────────────────

class TorchPieceClassifier:
    """Checkpoint-backed tile classifier.

    Parameters
    ----------
    weights : str | Path
        Path to a ``state_dict`` checkpoint for :class:`BoardTileNet`.
    device : str
        ``"cpu"``, ``"cuda"`` or ``"auto"``.
    contract : ModelContract
        Label order and input format the checkpoint was trained with.
    """

    def __init__(
        self,
        weights: str | Path,
        device: str = "cpu",
        contract: ModelContract = MOBILENET_V3_CONTRACT,
    ) -> None:
        self.weights = Path(weights)
        if device == "auto":
            device = "cuda" if torch.cuda.is_available() else "cpu"
        self.device = torch.device(device)
        self.contract = contract
        self.model: Optional[BoardTileNet] = None
        self.transform = transforms.Compose([
            transforms.ToTensor(),
            transforms.Normalize(mean=list(contract.mean), std=list(contract.std)),
        ])

    # ── Lifecycle ──────────────────────────────────────────────────────

    def load(self) -> None:
        if self.model is not None:
            return
        if not self.weights.is_file():
            raise ClassifierUnavailable(
                f"classifier checkpoint not found: {self.weights}",
                weights=str(self.weights),
            )
        try:
            model = BoardTileNet(num_classes=self.contract.num_classes)
            state = torch.load(self.weights, map_location=self.device, weights_only=True)
            model.load_state_dict(state)
        except (RuntimeError, OSError, ValueError, pickle.UnpicklingError) as exc:
            raise ClassifierUnavailable(
                f"could not load classifier checkpoint {self.weights}: {exc}",
                weights=str(self.weights),
            ) from exc
        model.to(self.device)
        model.eval()
        self.model = model
        log.info(
            "Classifier ready  model=%s v%s  weights=%s  device=%s",
            self.contract.name, self.contract.version, self.weights, self.device,
        )

    def release(self) -> None:
        self.model = None

    def __enter__(self) -> "TorchPieceClassifier":
        self.load()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()

    # ── Inference ──────────────────────────────────────────────────────

    def classify(self, tile: np.ndarray) -> np.ndarray:
        return self.classify_batch([tile])[0]

    @torch.no_grad()
    def classify_batch(self, tiles: Sequence[np.ndarray]) -> np.ndarray:
        """Return an ``(N, num_classes)`` array of softmax probabilities."""
        if self.model is None:
            raise ClassifierUnavailable("classifier used before load()")
        if len(tiles) == 0:
            return np.zeros((0, self.contract.num_classes), dtype=np.float32)

        tensors: List[torch.Tensor] = [self.transform(self.preprocess(t)) for t in tiles]
        batch = torch.stack(tensors).to(self.device)      # (N, 3, S, S)
        probs = self.model.predict_proba(batch)
        return probs.cpu().numpy()

    def preprocess(self, tile: np.ndarray) -> np.ndarray:
        """Resize a tile to the contract input and return an RGB uint8 array."""
        size = self.contract.input_size
        img = tile
        if img.ndim == 3 and self.contract.grayscale:
            img = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
        img = cv2.resize(img, (size, size), interpolation=cv2.INTER_AREA)
        if img.ndim == 2:
            img = cv2.cvtColor(img, cv2.COLOR_GRAY2RGB)
        else:
            img = cv2.cvtColor(img, cv2.COLOR_BGR2RGB)
        return img
