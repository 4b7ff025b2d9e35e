from __future__ import annotations

import asyncio
import hashlib
import importlib.util
import logging
import os
from pathlib import Path
from typing import Any, List, Optional
from urllib.parse import urlparse

import numpy as np
import requests

from .types import ModelConfig


def resolve_model_path(path: str, model_root: Path, cache_dir: Path, timeout_s: float = 60.0) -> Path:
    """Local file for a model URI, downloading http(s) URIs into the cache once."""
    parsed = urlparse(path)
    if parsed.scheme in ("http", "https"):
        suffix = Path(parsed.path).suffix or ".onnx"
        target = Path(cache_dir) / f"{hashlib.sha1(path.encode('utf-8')).hexdigest()}{suffix}"
        if target.exists():
            return target
        target.parent.mkdir(parents=True, exist_ok=True)
        response = requests.get(path, timeout=timeout_s)
        response.raise_for_status()
        tmp = target.with_suffix(target.suffix + ".part")
        with open(tmp, "wb") as f:
            f.write(response.content)
        os.replace(tmp, target)
        return target
    if parsed.scheme == "file":
        return Path(parsed.path)
    local = Path(path)
    if not local.is_absolute():
        local = Path(model_root) / local
    return local


class OnnxModelProvider:
    """Holds one ONNX graph selected by a ModelConfig.

    Loading never raises: on failure the handle stays unset and callers see
    `is_ready == False`.
    """

    def __init__(self, config: ModelConfig, model_root: Path | str = ".", cache_dir: Path | str = ".cache/models") -> None:
        self.config = config
        self.model_root = Path(model_root)
        self.cache_dir = Path(cache_dir)
        self._session = None  # type: ignore[var-annotated]
        self._input_name: Optional[str] = None
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def available() -> bool:
        return importlib.util.find_spec("onnxruntime") is not None

    @property
    def is_ready(self) -> bool:
        return self._session is not None

    def _create_session(self, model_path: Path):
        import onnxruntime as ort  # type: ignore

        return ort.InferenceSession(str(model_path), providers=["CPUExecutionProvider"])

    def load(self) -> bool:
        try:
            model_path = resolve_model_path(self.config.path, self.model_root, self.cache_dir)
            if not model_path.exists():
                raise FileNotFoundError(f"model file not found: {model_path}")
            session = self._create_session(model_path)
            self._input_name = session.get_inputs()[0].name
            self._session = session
            self.logger.info(f"Loaded model {self.config.name} from {model_path}")
            return True
        except Exception as e:
            self.logger.warning(f"Failed to load model {self.config.name} ({self.config.path}): {e}")
            self._session = None
            self._input_name = None
            return False

    async def aload(self) -> bool:
        return await asyncio.to_thread(self.load)

    def run(self, tensor: np.ndarray) -> List[Any]:
        if self._session is None:
            raise RuntimeError(f"model {self.config.name} is not loaded")
        if self.config.layout == "NCHW":
            tensor = np.transpose(tensor, (0, 3, 1, 2))
        return self._session.run(None, {self._input_name: np.ascontiguousarray(tensor, dtype=np.float32)})

    def clear(self) -> None:
        self._session = None
        self._input_name = None
