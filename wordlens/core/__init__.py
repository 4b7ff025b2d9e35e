from .codec import (
    MalformedImageError,
    ctc_collapse,
    decode_detection,
    decode_recognition,
    encode_detection,
    encode_recognition,
)
from .geometry import GeometryParams, extract_bounding_boxes
from .transcriber import BatchTranscriber, PipelineCancelled, get_crops

__all__ = [
    "MalformedImageError",
    "ctc_collapse",
    "decode_detection",
    "decode_recognition",
    "encode_detection",
    "encode_recognition",
    "GeometryParams",
    "extract_bounding_boxes",
    "BatchTranscriber",
    "PipelineCancelled",
    "get_crops",
]
