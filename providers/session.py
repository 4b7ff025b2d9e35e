from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

import numpy as np

from wordlens.core.geometry import shape_to_rect
from wordlens.core.settings import Settings, get_settings

from .model_provider import OnnxModelProvider
from .pipeline import analyze_image
from .types import (
    AnnotationShape,
    MalformedImageError,
    ModelConfig,
    ModelKind,
    OcrOutcome,
    OutcomeStatus,
    UploadedFile,
    Word,
)
from .utils import load_image

ProviderFactory = Callable[[ModelConfig, Settings], OnnxModelProvider]


def _default_factory(config: ModelConfig, settings: Settings) -> OnnxModelProvider:
    return OnnxModelProvider(config, model_root=settings.model_root, cache_dir=settings.model_cache_dir)


class OcrSession:
    """State of one viewer: selected models, the current image and its words.

    Every upload, model change and clear bumps `generation`; pipeline runs and model
    loads started under an older generation/token are discarded when they
    finish, so a slow stale result can never overwrite newer state.
    """

    def __init__(self, settings: Optional[Settings] = None, provider_factory: Optional[ProviderFactory] = None) -> None:
        self.settings = settings or get_settings()
        self._factory = provider_factory or _default_factory
        self.configs: Dict[ModelKind, ModelConfig] = {
            ModelKind.DETECTION: self.settings.model(ModelKind.DETECTION, self.settings.default_detection),
            ModelKind.RECOGNITION: self.settings.model(ModelKind.RECOGNITION, self.settings.default_recognition),
        }
        self.providers: Dict[ModelKind, Optional[OnnxModelProvider]] = {
            ModelKind.DETECTION: None,
            ModelKind.RECOGNITION: None,
        }
        self._load_tokens: Dict[ModelKind, int] = {ModelKind.DETECTION: 0, ModelKind.RECOGNITION: 0}
        self.generation = 0
        self._loads_in_flight = 0
        self._runs_in_flight = 0
        self.image: Optional[np.ndarray] = None
        self.shapes: List[AnnotationShape] = []
        self.words: List[Word] = []
        self.last_outcome: Optional[OcrOutcome] = None
        self.logger = logging.getLogger(__name__)

    @property
    def detection_config(self) -> ModelConfig:
        return self.configs[ModelKind.DETECTION]

    @property
    def recognition_config(self) -> ModelConfig:
        return self.configs[ModelKind.RECOGNITION]

    @property
    def detector(self) -> Optional[OnnxModelProvider]:
        return self.providers[ModelKind.DETECTION]

    @property
    def recognizer(self) -> Optional[OnnxModelProvider]:
        return self.providers[ModelKind.RECOGNITION]

    def _bump(self) -> int:
        self.generation += 1
        return self.generation

    def is_stale(self, generation: int) -> bool:
        return generation != self.generation

    def clear(self) -> int:
        """Drop the visible state; runs started before this point become stale."""
        self.image = None
        self.shapes = []
        self.words = []
        self.last_outcome = None
        return self._bump()

    @property
    def loading_model(self) -> bool:
        return self._loads_in_flight > 0

    @property
    def extracting_words(self) -> bool:
        return self._runs_in_flight > 0

    @property
    def busy(self) -> bool:
        return self.loading_model or self.extracting_words

    async def _load(self, kind: ModelKind) -> bool:
        if kind not in (ModelKind.DETECTION, ModelKind.RECOGNITION):
            raise ValueError(f"Unsupported model kind: {kind}")
        self._load_tokens[kind] += 1
        token = self._load_tokens[kind]
        self.providers[kind] = None
        provider = self._factory(self.configs[kind], self.settings)
        self._loads_in_flight += 1
        try:
            loaded = await provider.aload()
        finally:
            self._loads_in_flight -= 1
        if token != self._load_tokens[kind]:
            self.logger.info(f"Dropping stale {kind.value} model load ({provider.config.name})")
            provider.clear()
            return False
        self.providers[kind] = provider if loaded else None
        return loaded

    async def load_models(self) -> Dict[ModelKind, bool]:
        return {
            ModelKind.DETECTION: await self._load(ModelKind.DETECTION),
            ModelKind.RECOGNITION: await self._load(ModelKind.RECOGNITION),
        }

    async def select_model(self, kind: ModelKind, name: str) -> bool:
        """Switch one of the two model configurations and reload it."""
        if kind == ModelKind.DETECTION:
            config = self.settings.model(ModelKind.DETECTION, name)
        elif kind == ModelKind.RECOGNITION:
            config = self.settings.model(ModelKind.RECOGNITION, name)
        else:
            raise ValueError(f"Unsupported model kind: {kind}")
        self.configs[kind] = config
        self.clear()
        return await self._load(kind)

    async def analyze(self, image: np.ndarray) -> OcrOutcome:
        generation = self.clear()
        self.image = image
        self._runs_in_flight += 1
        try:
            outcome = await analyze_image(
                image,
                self.detector,
                self.recognizer,
                self.settings,
                generation=generation,
                is_cancelled=lambda: self.is_stale(generation),
            )
        finally:
            self._runs_in_flight -= 1
        if self.is_stale(generation):
            outcome.status = OutcomeStatus.STALE
            outcome.shapes, outcome.words, outcome.crops = [], [], []
            return outcome
        self.shapes = outcome.shapes
        self.words = outcome.words
        self.last_outcome = outcome
        return outcome

    async def upload(self, uploaded: UploadedFile) -> OcrOutcome:
        try:
            image = load_image(uploaded)
        except MalformedImageError as e:
            generation = self.clear()
            self.logger.warning(f"Rejected upload {uploaded.filename or ''}: {e}")
            return OcrOutcome(status=OutcomeStatus.INVALID_IMAGE, generation=generation, errors=[str(e)])
        return await self.analyze(image)

    def word_index(self, shape_id: int) -> Optional[int]:
        """Position of the word for a shape in the word list, for scrolling it into view."""
        for i, word in enumerate(self.words):
            if word.id == shape_id:
                return i
        return None

    def set_active(self, shape_id: int, active: bool = True) -> bool:
        index = self.word_index(shape_id)
        if index is None:
            return False
        self.words[index].is_active = active
        return True

    def shape_at(self, x: float, y: float) -> Optional[int]:
        """Id of the smallest shape containing the normalized point, if any."""
        hits = []
        for shape in self.shapes:
            x1, y1, x2, y2 = shape_to_rect(shape)
            if x1 <= x <= x2 and y1 <= y <= y2:
                hits.append(((x2 - x1) * (y2 - y1), shape.id))
        return min(hits)[1] if hits else None

    def active_ids(self) -> List[int]:
        return [w.id for w in self.words if w.is_active]
