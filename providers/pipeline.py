from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, List, Optional

import numpy as np

from wordlens.core.codec import decode_detection, encode_detection, validate_image
from wordlens.core.geometry import extract_bounding_boxes
from wordlens.core.overlay import word_color
from wordlens.core.settings import Settings
from wordlens.core.transcriber import BatchTranscriber, PipelineCancelled

from .types import HeatMap, MalformedImageError, OcrOutcome, OutcomeStatus, Word

logger = logging.getLogger(__name__)


def _ready(provider) -> bool:
    return provider is not None and getattr(provider, "is_ready", False)


def _check(is_cancelled: Optional[Callable[[], bool]], stage: str) -> None:
    if is_cancelled is not None and is_cancelled():
        raise PipelineCancelled(f"cancelled before {stage}")


async def get_heatmap(image: np.ndarray, detector) -> Optional[HeatMap]:
    """Run the detection graph; None when no detector is loaded."""
    if not _ready(detector):
        return None
    tensor = encode_detection(image, detector.config)
    output = await asyncio.to_thread(detector.run, tensor)
    return decode_detection(output, sigmoid=detector.config.sigmoid)


async def analyze_image(
    image: np.ndarray,
    detector,
    recognizer,
    settings: Settings,
    generation: int = 0,
    is_cancelled: Optional[Callable[[], bool]] = None,
) -> OcrOutcome:
    """Detect and transcribe the words of one image.

    Never raises for expected failures: missing models, bad images, empty
    detections, failed batches and superseded runs all map to an OutcomeStatus.
    """
    started = time.perf_counter()
    meta = {
        "detection_model": detector.config.name if detector is not None else None,
        "recognition_model": recognizer.config.name if recognizer is not None else None,
    }

    try:
        validate_image(image)
    except MalformedImageError as e:
        return OcrOutcome(status=OutcomeStatus.INVALID_IMAGE, generation=generation, errors=[str(e)], meta=meta)
    meta["image_height"], meta["image_width"] = image.shape[:2]

    missing: List[str] = []
    if not _ready(detector):
        missing.append("detection model not loaded")
    if not _ready(recognizer):
        missing.append("recognition model not loaded")
    if missing:
        logger.warning(f"Pipeline cannot run: {', '.join(missing)}")
        return OcrOutcome(status=OutcomeStatus.MODEL_UNAVAILABLE, generation=generation, errors=missing, meta=meta)

    try:
        _check(is_cancelled, "detection")
        heatmap = await get_heatmap(image, detector)
        _check(is_cancelled, "box extraction")
        shapes = extract_bounding_boxes(heatmap, detector.config.size, settings.geometry)
        meta["shape_count"] = len(shapes)
        if not shapes:
            meta["elapsed_s"] = round(time.perf_counter() - started, 4)
            return OcrOutcome(status=OutcomeStatus.NO_TEXT, generation=generation, meta=meta)

        transcriber = BatchTranscriber(
            recognizer,
            recognizer.config,
            settings.vocab,
            batch_size=settings.batch_size,
            max_concurrency=settings.max_concurrent_batches,
        )
        crops = await transcriber.transcribe(image, shapes, is_cancelled=is_cancelled)
    except PipelineCancelled:
        logger.info(f"Discarding superseded run (generation {generation})")
        return OcrOutcome(status=OutcomeStatus.STALE, generation=generation, meta=meta)
    except MalformedImageError as e:
        return OcrOutcome(status=OutcomeStatus.INVALID_IMAGE, generation=generation, errors=[str(e)], meta=meta)
    except Exception as e:
        logger.exception(f"Pipeline failed: {e}")
        return OcrOutcome(status=OutcomeStatus.FAILED, generation=generation, errors=[str(e) or type(e).__name__], meta=meta)

    words = [
        Word(id=c.shape.id, text=" ".join(c.words), color=word_color(c.shape.id))
        for c in crops
    ]
    errors = sorted({c.error for c in crops if c.error})
    meta["elapsed_s"] = round(time.perf_counter() - started, 4)
    status = OutcomeStatus.PARTIAL if errors else OutcomeStatus.OK
    logger.info(f"Recognized {sum(1 for w in words if w.text)} words in {meta['elapsed_s']}s")
    return OcrOutcome(
        status=status,
        generation=generation,
        shapes=shapes,
        words=words,
        crops=crops,
        errors=errors,
        meta=meta,
    )
