import asyncio
import io
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np
import pytest
from PIL import Image

from providers.types import ModelConfig
from wordlens.core.settings import VOCAB, settings_from_dict

TEST_CONFIG = {
    "detection": {"default": "tiny_det"},
    "recognition": {"default": "tiny_reco", "batch_size": 32, "max_concurrent_batches": 2},
    "models": {
        "detection": {
            "tiny_det": {"path": "models/missing_det.onnx", "height": 100, "width": 100},
            "other_det": {"path": "models/missing_det2.onnx", "height": 100, "width": 100},
        },
        "recognition": {
            "tiny_reco": {"path": "models/missing_reco.onnx", "height": 32, "width": 128},
        },
    },
}


def heatmap_with_blobs(size: Tuple[int, int], rects: Sequence[Tuple[int, int, int, int]], value: float = 1.0) -> np.ndarray:
    """Probability map (H, W) with filled (x, y, w, h) rectangles."""
    prob = np.zeros(size, dtype=np.float32)
    for x, y, w, h in rects:
        prob[y:y + h, x:x + w] = value
    return prob


def logits_for(texts: Sequence[str], vocab: str = VOCAB, steps: int = 32) -> np.ndarray:
    """(N, T, C) logits whose best path spells each text, blanks between characters."""
    blank = len(vocab)
    logits = np.zeros((len(texts), steps, blank + 1), dtype=np.float32)
    logits[:, :, blank] = 5.0
    for n, text in enumerate(texts):
        for k, ch in enumerate(text):
            logits[n, 2 * k, vocab.index(ch)] = 10.0
    return logits


class FakeDetector:
    def __init__(self, config: ModelConfig, rects=(), on_run: Optional[Callable[[], None]] = None, error: Optional[Exception] = None):
        self.config = config
        self.rects = list(rects)
        self.on_run = on_run
        self.error = error
        self.is_ready = True
        self.inputs: List[np.ndarray] = []

    def run(self, tensor):
        self.inputs.append(tensor)
        if self.on_run is not None:
            self.on_run()
        if self.error is not None:
            raise self.error
        prob = heatmap_with_blobs((self.config.height, self.config.width), self.rects)
        return [prob[None, :, :, None]]


class FakeRecognizer:
    """Spells a text per crop; `text_fn` receives the normalized crop tensor."""

    def __init__(self, config: ModelConfig, text_fn: Callable[[np.ndarray], str] = lambda crop: "word", fail_if: Optional[Callable[[np.ndarray], bool]] = None):
        self.config = config
        self.text_fn = text_fn
        self.fail_if = fail_if
        self.is_ready = True
        self.batch_sizes: List[int] = []

    def run(self, tensor):
        self.batch_sizes.append(tensor.shape[0])
        if self.fail_if is not None and self.fail_if(tensor):
            raise RuntimeError("recognizer exploded")
        return [logits_for([self.text_fn(crop) for crop in tensor])]


class FakeProvider:
    """Stand-in for OnnxModelProvider in session tests."""

    def __init__(self, config: ModelConfig, delay: float = 0.0, ok: bool = True, model=None):
        self.config = config
        self.delay = delay
        self.ok = ok
        self.model = model
        self.is_ready = False
        self.cleared = False

    async def aload(self) -> bool:
        await asyncio.sleep(self.delay)
        self.is_ready = self.ok
        return self.ok

    def run(self, tensor):
        return self.model.run(tensor)

    def clear(self) -> None:
        self.is_ready = False
        self.cleared = True


def png_bytes(width: int = 100, height: int = 100, color=(255, 255, 255)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color=color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def settings():
    return settings_from_dict(TEST_CONFIG)


@pytest.fixture
def det_config(settings):
    return settings.detection_models["tiny_det"]


@pytest.fixture
def reco_config(settings):
    return settings.recognition_models["tiny_reco"]
