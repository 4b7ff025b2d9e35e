from .types import (
    AnnotationShape,
    HeatMap,
    MalformedImageError,
    ModelConfig,
    ModelKind,
    OcrOutcome,
    OutcomeStatus,
    TranscribedCrop,
    UploadedFile,
    Word,
)
from .model_provider import OnnxModelProvider

__all__ = [
    "AnnotationShape",
    "HeatMap",
    "MalformedImageError",
    "ModelConfig",
    "ModelKind",
    "OcrOutcome",
    "OutcomeStatus",
    "TranscribedCrop",
    "UploadedFile",
    "Word",
    "OnnxModelProvider",
]
