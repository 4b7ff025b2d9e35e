"""
Application settings.

Values come from `config.yaml` (path overridable with WORDLENS_CONFIG) and a
`.env` file; anything missing falls back to the defaults below, which match the
docTR web demo models.
"""

from __future__ import annotations

import logging
import os
import string
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from providers.types import ModelConfig, ModelKind

from .geometry import GeometryParams

load_dotenv()

logger = logging.getLogger(__name__)

DET_MEAN = 0.785
DET_STD = 0.275
REC_MEAN = 0.694
REC_STD = 0.298

VOCAB = (
    string.digits
    + string.ascii_letters
    + string.punctuation
    + "°£€¥¢฿"
    + "àâéèêëîïôùûüçÀÂÉÈÊËÎÏÔÙÛÜÇ"
)

DEFAULT_MODELS: Dict[str, Dict[str, Dict[str, Any]]] = {
    "detection": {
        "db_mobilenet_v2": {
            "label": "DB (MobileNet V2)",
            "path": "models/db_mobilenet_v2.onnx",
            "height": 512,
            "width": 512,
        },
        "db_resnet50": {
            "label": "DB (ResNet 50)",
            "path": "models/db_resnet50.onnx",
            "height": 512,
            "width": 512,
        },
    },
    "recognition": {
        "crnn_vgg16_bn": {
            "label": "CRNN (VGG16)",
            "path": "models/crnn_vgg16_bn.onnx",
            "height": 32,
            "width": 128,
        },
        "crnn_mobilenet_v2": {
            "label": "CRNN (MobileNet V2)",
            "path": "models/crnn_mobilenet_v2.onnx",
            "height": 32,
            "width": 128,
        },
    },
}

BASE_DIR = Path(__file__).resolve().parents[2]


@dataclass
class Settings:
    detection_models: Dict[str, ModelConfig]
    recognition_models: Dict[str, ModelConfig]
    default_detection: str
    default_recognition: str
    geometry: GeometryParams = field(default_factory=GeometryParams)
    batch_size: int = 32
    max_concurrent_batches: int = 4
    vocab: str = VOCAB
    model_root: Path = BASE_DIR
    model_cache_dir: Path = BASE_DIR / ".cache" / "models"
    debug: bool = False

    def __post_init__(self) -> None:
        if self.default_detection not in self.detection_models:
            raise ValueError(f"Unknown default detection model: {self.default_detection}")
        if self.default_recognition not in self.recognition_models:
            raise ValueError(f"Unknown default recognition model: {self.default_recognition}")
        if self.batch_size <= 0:
            raise ValueError("batch_size must be positive")

    def models(self, kind: ModelKind) -> Dict[str, ModelConfig]:
        if kind == ModelKind.DETECTION:
            return self.detection_models
        if kind == ModelKind.RECOGNITION:
            return self.recognition_models
        raise ValueError(f"Unsupported model kind: {kind}")

    def model(self, kind: ModelKind, name: str) -> ModelConfig:
        registry = self.models(kind)
        if name not in registry:
            raise ValueError(f"Unknown {kind.value} model {name!r}; choose from {sorted(registry)}")
        return registry[name]

    def model_names(self, kind: ModelKind) -> List[str]:
        return list(self.models(kind))


def _build_registry(entries: Dict[str, Dict[str, Any]], mean: float, std: float) -> Dict[str, ModelConfig]:
    registry: Dict[str, ModelConfig] = {}
    for name, entry in (entries or {}).items():
        registry[name] = ModelConfig(
            name=name,
            label=str(entry.get("label", name)),
            path=str(entry["path"]),
            height=int(entry["height"]),
            width=int(entry["width"]),
            mean=float(entry.get("mean", mean)),
            std=float(entry.get("std", std)),
            layout=str(entry.get("layout", "NHWC")).upper(),
            sigmoid=bool(entry.get("sigmoid", False)),
        )
    return registry


def read_config_file(path: Optional[str | Path] = None) -> Dict[str, Any]:
    path = Path(path or os.getenv("WORDLENS_CONFIG") or BASE_DIR / "config.yaml")
    if not path.exists():
        logger.info(f"No config file at {path}, using built-in defaults")
        return {}
    with open(path, "r", encoding="utf-8") as file:
        return yaml.safe_load(file) or {}


def settings_from_dict(config: Dict[str, Any]) -> Settings:
    models = config.get("models") or DEFAULT_MODELS
    det_config = config.get("detection", {}) or {}
    rec_config = config.get("recognition", {}) or {}

    detection_models = _build_registry(models.get("detection", {}), DET_MEAN, DET_STD)
    recognition_models = _build_registry(models.get("recognition", {}), REC_MEAN, REC_STD)

    geometry = GeometryParams(
        threshold=int(det_config.get("threshold", 77)),
        kernel_size=int(det_config.get("morph_kernel", 2)),
        min_box_size=int(det_config.get("min_box_size", 2)),
        padding_ratio=float(det_config.get("padding_ratio", 1.8)),
    )

    model_root = Path(os.getenv("WORDLENS_MODEL_DIR") or config.get("model_root") or BASE_DIR)
    cache_dir = Path(os.getenv("WORDLENS_CACHE_DIR") or config.get("model_cache_dir") or BASE_DIR / ".cache" / "models")
    if not model_root.is_absolute():
        model_root = BASE_DIR / model_root
    if not cache_dir.is_absolute():
        cache_dir = BASE_DIR / cache_dir

    return Settings(
        detection_models=detection_models,
        recognition_models=recognition_models,
        default_detection=det_config.get("default", next(iter(detection_models), "")),
        default_recognition=rec_config.get("default", next(iter(recognition_models), "")),
        geometry=geometry,
        batch_size=int(rec_config.get("batch_size", 32)),
        max_concurrent_batches=int(rec_config.get("max_concurrent_batches", 4)),
        vocab=str(config.get("vocab") or VOCAB),
        model_root=model_root,
        model_cache_dir=cache_dir,
        debug=os.getenv("WORDLENS_DEBUG") == "1" or bool(config.get("debug", False)),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return settings_from_dict(read_config_file())
