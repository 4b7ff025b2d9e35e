from __future__ import annotations

"""
Adapter between pipeline results and the drawing surface / HTTP clients.

Exposes:
  outcome_to_dict(outcome) -> dict
  models_to_dict(settings) -> dict

Shapes carry normalized corners relative to the uploaded image; words share
the shape's id so clients can sync hover/click between the two.
"""

from typing import Any, Dict

from providers.types import AnnotationShape, ModelConfig, ModelKind, OcrOutcome, Word
from wordlens.core.settings import Settings


def shape_to_dict(shape: AnnotationShape) -> Dict[str, Any]:
    return {"id": shape.id, "coordinates": [[float(x), float(y)] for x, y in shape.coordinates]}


def word_to_dict(word: Word) -> Dict[str, Any]:
    return {"id": word.id, "text": word.text, "color": word.color, "is_active": word.is_active}


def outcome_to_dict(outcome: OcrOutcome) -> Dict[str, Any]:
    return {
        "status": outcome.status.value,
        "generation": outcome.generation,
        "shapes": [shape_to_dict(s) for s in outcome.shapes],
        "words": [word_to_dict(w) for w in outcome.words],
        "errors": list(outcome.errors),
        "meta": dict(outcome.meta),
    }


def model_to_dict(config: ModelConfig) -> Dict[str, Any]:
    return {
        "name": config.name,
        "label": config.display_name,
        "height": config.height,
        "width": config.width,
    }


def models_to_dict(settings: Settings) -> Dict[str, Any]:
    return {
        kind.value: {
            "default": settings.default_detection if kind == ModelKind.DETECTION else settings.default_recognition,
            "options": [model_to_dict(c) for c in settings.models(kind).values()],
        }
        for kind in ModelKind
    }
