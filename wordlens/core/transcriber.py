from __future__ import annotations

import asyncio
import logging
import math
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

import numpy as np

from providers.types import AnnotationShape, ModelConfig, PixelBox, TranscribedCrop

from .codec import decode_recognition, encode_recognition, validate_image
from .geometry import denormalize_rect, shape_to_rect

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BATCH_SIZE = 32


class PipelineCancelled(Exception):
    """The run was superseded by a newer upload or model change."""


def chunk(items: Sequence[T], size: int) -> List[List[T]]:
    if size <= 0:
        raise ValueError("batch size must be positive")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def crop_box(shape: AnnotationShape, image_size: Tuple[int, int]) -> PixelBox:
    """Pixel bounding box of a normalized shape against the original image."""
    height, width = image_size
    x1, y1, x2, y2 = denormalize_rect(shape_to_rect(shape), image_size)
    x0 = min(max(int(math.floor(x1)), 0), width - 1)
    y0 = min(max(int(math.floor(y1)), 0), height - 1)
    x1 = min(max(int(math.ceil(x2)), x0 + 1), width)
    y1 = min(max(int(math.ceil(y2)), y0 + 1), height)
    return x0, y0, x1, y1


def get_crops(image: np.ndarray, shapes: Sequence[AnnotationShape]) -> Tuple[List[np.ndarray], List[PixelBox]]:
    image = validate_image(image)
    size = image.shape[:2]
    boxes = [crop_box(shape, size) for shape in shapes]
    crops = [image[y0:y1, x0:x1] for x0, y0, x1, y1 in boxes]
    return crops, boxes


class BatchTranscriber:
    """Runs the recognition graph over word crops in fixed-size batches.

    All batches are issued at once; at most `max_concurrency` of them execute
    the model at a time. A failing batch only marks its own crops.
    """

    def __init__(
        self,
        recognizer,
        config: ModelConfig,
        vocab: str,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_concurrency: int = 4,
    ) -> None:
        self.recognizer = recognizer
        self.config = config
        self.vocab = vocab
        self.batch_size = batch_size
        self.max_concurrency = max(1, max_concurrency)
        self.logger = logging.getLogger(__name__)

    def recognize_batch(self, crops: Sequence[np.ndarray]) -> List[str]:
        tensor = encode_recognition(crops, self.config)
        outputs = self.recognizer.run(tensor)
        texts = decode_recognition(outputs, self.vocab)
        if len(texts) != len(crops):
            raise ValueError(f"recognizer returned {len(texts)} sequences for {len(crops)} crops")
        return texts

    async def _run_batch(
        self,
        index: int,
        crops: Sequence[np.ndarray],
        semaphore: asyncio.Semaphore,
        is_cancelled: Optional[Callable[[], bool]],
    ) -> List[str]:
        async with semaphore:
            if is_cancelled is not None and is_cancelled():
                raise PipelineCancelled(f"batch {index} cancelled")
            self.logger.debug(f"Recognizing batch {index} ({len(crops)} crops)")
            return await asyncio.to_thread(self.recognize_batch, crops)

    async def transcribe(
        self,
        image: np.ndarray,
        shapes: Sequence[AnnotationShape],
        is_cancelled: Optional[Callable[[], bool]] = None,
    ) -> List[TranscribedCrop]:
        if self.recognizer is None or not getattr(self.recognizer, "is_ready", True):
            return []
        if not shapes:
            return []

        crops, boxes = get_crops(image, shapes)
        batches = chunk(list(range(len(crops))), self.batch_size)
        semaphore = asyncio.Semaphore(self.max_concurrency)
        tasks = [
            self._run_batch(i, [crops[j] for j in batch], semaphore, is_cancelled)
            for i, batch in enumerate(batches)
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        if is_cancelled is not None and is_cancelled():
            raise PipelineCancelled("transcription superseded")

        out: List[TranscribedCrop] = []
        for batch, result in zip(batches, results):
            if isinstance(result, BaseException):
                if isinstance(result, PipelineCancelled):
                    raise result
                self.logger.warning(f"Recognition batch of {len(batch)} crops failed: {result!r}")
                for j in batch:
                    out.append(TranscribedCrop(shape=shapes[j], box=boxes[j], words=[], error=str(result) or type(result).__name__))
                continue
            for j, text in zip(batch, result):
                out.append(TranscribedCrop(shape=shapes[j], box=boxes[j], words=[text] if text else []))
        return out
