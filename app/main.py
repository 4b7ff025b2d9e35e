import logging
import os
import traceback
from typing import Dict, Optional, Tuple

from fastapi import FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

import wordlens
from app.adapter import models_to_dict, outcome_to_dict
from providers.model_provider import OnnxModelProvider
from providers.pipeline import analyze_image
from providers.types import MalformedImageError, ModelKind, OcrOutcome, OutcomeStatus
from providers.utils import load_image
from wordlens.core.settings import get_settings

logging.basicConfig(level=logging.DEBUG if os.getenv("WORDLENS_DEBUG") == "1" else logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="wordlens OCR API", version=wordlens.__version__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Loaded graphs, one per (kind, model name)
_PROVIDERS: Dict[Tuple[ModelKind, str], OnnxModelProvider] = {}

_STATUS_CODES = {
    OutcomeStatus.OK: 200,
    OutcomeStatus.NO_TEXT: 200,
    OutcomeStatus.PARTIAL: 200,
    OutcomeStatus.INVALID_IMAGE: 422,
    OutcomeStatus.MODEL_UNAVAILABLE: 503,
    OutcomeStatus.STALE: 409,
    OutcomeStatus.FAILED: 500,
}


async def get_provider(kind: ModelKind, name: str) -> Optional[OnnxModelProvider]:
    settings = get_settings()
    try:
        config = settings.model(kind, name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    provider = _PROVIDERS.get((kind, name))
    if provider is not None and provider.is_ready:
        return provider
    provider = OnnxModelProvider(config, model_root=settings.model_root, cache_dir=settings.model_cache_dir)
    if await provider.aload():
        _PROVIDERS[(kind, name)] = provider
        return provider
    return None


@app.get("/")
def read_root():
    return {"message": "wordlens OCR API", "version": wordlens.__version__}


@app.get("/diag")
def diag():
    settings = get_settings()
    return {
        "debug": settings.debug,
        "onnxruntime": OnnxModelProvider.available(),
        "model_root": str(settings.model_root),
        "loaded_models": sorted(f"{kind.value}:{name}" for kind, name in _PROVIDERS),
        "batch_size": settings.batch_size,
    }


@app.get("/models")
def list_models():
    return models_to_dict(get_settings())


@app.post("/ocr")
async def ocr(
    file: UploadFile = File(...),
    det: Optional[str] = Query(None, description="Detection model name"),
    reco: Optional[str] = Query(None, description="Recognition model name"),
):
    settings = get_settings()
    try:
        content = await file.read()
        try:
            image = load_image(content)
        except MalformedImageError as e:
            logger.warning(f"Rejected upload {file.filename}: {e}")
            outcome = OcrOutcome(status=OutcomeStatus.INVALID_IMAGE, errors=[str(e)])
            return JSONResponse(outcome_to_dict(outcome), status_code=_STATUS_CODES[outcome.status])

        detector = await get_provider(ModelKind.DETECTION, det or settings.default_detection)
        recognizer = await get_provider(ModelKind.RECOGNITION, reco or settings.default_recognition)
        outcome = await analyze_image(image, detector, recognizer, settings)
        outcome.meta["filename"] = file.filename
        return JSONResponse(outcome_to_dict(outcome), status_code=_STATUS_CODES[outcome.status])

    except HTTPException:
        raise
    except Exception as e:
        tb = traceback.format_exc()
        logger.error(f"/ocr failed: {e!r}\n{tb}")
        if settings.debug:
            return PlainTextResponse(tb, status_code=500)
        return PlainTextResponse("Internal Server Error", status_code=500)
