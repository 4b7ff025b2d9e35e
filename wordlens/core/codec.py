"""
Tensor pre/post-processing for the detection and recognition graphs.

Encoders take RGB uint8 arrays (HxWxC) and return NHWC float32 batches
normalized with the model family's statistics. Decoders turn raw graph output
into a heatmap (detection) or one string per crop (recognition).
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from providers.types import HeatMap, MalformedImageError, ModelConfig

logger = logging.getLogger(__name__)


def validate_image(image: Optional[np.ndarray]) -> np.ndarray:
    if image is None:
        raise MalformedImageError("no image data")
    if not isinstance(image, np.ndarray) or image.ndim not in (2, 3):
        raise MalformedImageError(f"expected HxW or HxWxC array, got {getattr(image, 'shape', type(image))}")
    h, w = image.shape[:2]
    if h == 0 or w == 0:
        raise MalformedImageError(f"image has zero size ({w}x{h})")
    if image.ndim == 3 and image.shape[2] == 0:
        raise MalformedImageError("image has no channels")
    return image


def _as_rgb(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_RGBA2RGB)
    return image


def _normalize(tensor: np.ndarray, mean: float, std: float) -> np.ndarray:
    return (tensor - np.float32(255.0 * mean)) / np.float32(255.0 * std)


def encode_detection(image: np.ndarray, config: ModelConfig) -> np.ndarray:
    """Resize to the detection input size and normalize; returns (1, H, W, C)."""
    image = _as_rgb(validate_image(image))
    resized = cv2.resize(image, (config.width, config.height), interpolation=cv2.INTER_NEAREST)
    tensor = resized.astype(np.float32)
    return np.expand_dims(_normalize(tensor, config.mean, config.std), axis=0)


def decode_detection(output, sigmoid: bool = False) -> HeatMap:
    """Turn the detection graph output into an 8-bit heatmap."""
    if isinstance(output, (list, tuple)):
        if not output:
            raise ValueError("detection model returned no outputs")
        output = output[0]
    prob = np.squeeze(np.asarray(output, dtype=np.float32))
    if prob.ndim != 2:
        raise ValueError(f"expected a single-channel probability map, got shape {prob.shape}")
    if sigmoid:
        prob = 1.0 / (1.0 + np.exp(-prob))
    pixels = np.round(np.clip(prob, 0.0, 1.0) * 255.0).astype(np.uint8)
    height, width = pixels.shape
    return HeatMap(pixels=pixels, width=width, height=height)


def compute_resize_and_padding(height: int, width: int, size: Tuple[int, int]) -> Tuple[Tuple[int, int], Tuple[int, int]]:
    """Aspect-preserving resize target and (pad_bottom, pad_right) for one crop.

    Crops relatively narrower than the target are fitted to the full height and
    padded on the right; the rest are fitted to the full width and padded at the
    bottom.
    """
    if height <= 0 or width <= 0:
        raise MalformedImageError(f"crop has zero size ({width}x{height})")
    target_h, target_w = size
    aspect_ratio = target_w / target_h
    if aspect_ratio * height > width:
        new_w = min(target_w, max(1, int(round(target_h * width / height))))
        return (target_h, new_w), (0, target_w - new_w)
    new_h = min(target_h, max(1, int(round(target_w * height / width))))
    return (new_h, target_w), (target_h - new_h, 0)


def encode_recognition(crops: Sequence[np.ndarray], config: ModelConfig) -> np.ndarray:
    """Resize, zero-pad and stack crops into one (N, H, W, C) batch."""
    if not crops:
        raise ValueError("no crops to encode")
    batch = []
    for crop in crops:
        crop = _as_rgb(validate_image(crop))
        (new_h, new_w), (pad_bottom, pad_right) = compute_resize_and_padding(
            crop.shape[0], crop.shape[1], config.size
        )
        resized = cv2.resize(crop, (new_w, new_h), interpolation=cv2.INTER_NEAREST)
        if resized.ndim == 2:
            resized = resized[:, :, None]
        padded = np.pad(resized, ((0, pad_bottom), (0, pad_right), (0, 0)), constant_values=0)
        batch.append(padded.astype(np.float32))
    return _normalize(np.stack(batch, axis=0), config.mean, config.std)


def softmax(x: np.ndarray, axis: int = -1) -> np.ndarray:
    shifted = x - np.max(x, axis=axis, keepdims=True)
    exp = np.exp(shifted)
    return exp / np.sum(exp, axis=axis, keepdims=True)


def ctc_collapse(labels: Sequence[int], vocab: str, blank: Optional[int] = None) -> str:
    """Collapse a best-path label sequence into text.

    A character is emitted only for the first non-blank label after a blank (or
    at the start); further non-blank steps are ignored until the next blank.
    """
    if blank is None:
        blank = len(vocab)
    collapsed: List[str] = []
    added = False
    for k in labels:
        k = int(k)
        if k == blank:
            added = False
            continue
        if added:
            continue
        added = True
        if 0 <= k < len(vocab):
            collapsed.append(vocab[k])
        else:
            logger.debug(f"Label {k} outside vocabulary of size {len(vocab)}")
    return "".join(collapsed)


def decode_recognition(logits, vocab: str, blank: Optional[int] = None) -> List[str]:
    """Decode (N, T, C) recognition output into one string per sequence."""
    if isinstance(logits, (list, tuple)):
        logits = logits[0]
    logits = np.asarray(logits, dtype=np.float32)
    if logits.ndim == 2:
        logits = logits[None, ...]
    if logits.ndim != 3:
        raise ValueError(f"expected (N, T, C) recognition output, got shape {logits.shape}")
    best_path = np.argmax(softmax(logits, axis=-1), axis=-1)
    return [ctc_collapse(sequence, vocab, blank) for sequence in best_path]
