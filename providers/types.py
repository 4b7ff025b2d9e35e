from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np


Point = Tuple[float, float]
PixelBox = Tuple[int, int, int, int]


class MalformedImageError(ValueError):
    """Raised for images that cannot be decoded or turned into a model input."""


class ModelKind(str, Enum):
    DETECTION = "detection"
    RECOGNITION = "recognition"


class OutcomeStatus(str, Enum):
    OK = "ok"
    NO_TEXT = "no_text"
    MODEL_UNAVAILABLE = "model_unavailable"
    INVALID_IMAGE = "invalid_image"
    PARTIAL = "partial"
    STALE = "stale"
    FAILED = "failed"


@dataclass(frozen=True)
class ModelConfig:
    """A selectable detection or recognition graph.

    `height`/`width` are the fixed input size of the graph; `mean`/`std` are the
    per-channel statistics of the model family, expressed on a 0..1 scale.
    """

    name: str
    path: str
    height: int
    width: int
    mean: float
    std: float
    label: str = ""
    layout: str = "NHWC"
    sigmoid: bool = False

    def __post_init__(self) -> None:
        if self.height <= 0 or self.width <= 0:
            raise ValueError(f"{self.name}: input size must be positive, got {self.height}x{self.width}")
        if self.std <= 0:
            raise ValueError(f"{self.name}: std must be positive")
        if self.layout not in ("NHWC", "NCHW"):
            raise ValueError(f"{self.name}: unsupported layout {self.layout!r}")

    @property
    def size(self) -> Tuple[int, int]:
        return self.height, self.width

    @property
    def display_name(self) -> str:
        return self.label or self.name


@dataclass
class HeatMap:
    pixels: np.ndarray  # uint8 HxW, probability * 255
    width: int
    height: int


@dataclass
class AnnotationShape:
    id: int
    coordinates: List[Point]  # tl, tr, br, bl in [0, 1]


@dataclass
class Word:
    id: int
    text: str
    color: str
    is_active: bool = False


@dataclass
class UploadedFile:
    image: bytes | str
    filename: Optional[str] = None


@dataclass
class TranscribedCrop:
    shape: AnnotationShape
    box: PixelBox
    words: List[str]
    error: Optional[str] = None


@dataclass
class OcrOutcome:
    status: OutcomeStatus
    generation: int = 0
    shapes: List[AnnotationShape] = field(default_factory=list)
    words: List[Word] = field(default_factory=list)
    crops: List[TranscribedCrop] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status in (OutcomeStatus.OK, OutcomeStatus.NO_TEXT, OutcomeStatus.PARTIAL)
