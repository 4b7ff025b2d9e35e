from __future__ import annotations

import base64
import io
import os
from pathlib import Path
from typing import Tuple
from urllib.parse import unquote_to_bytes

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from .types import MalformedImageError, UploadedFile


def data_uri_to_bytes(data_uri: str) -> Tuple[bytes, str]:
    """Decode a `data:` URI into (payload, mime type)."""
    header, sep, data = data_uri.partition(",")
    if not sep or not header.startswith("data:"):
        raise MalformedImageError("not a data URI")
    mime = header[len("data:"):].split(";")[0] or "text/plain"
    if ";base64" in header:
        try:
            return base64.b64decode(data, validate=False), mime
        except (ValueError, TypeError) as e:
            raise MalformedImageError(f"invalid base64 payload: {e}") from e
    return unquote_to_bytes(data), mime


def _payload_bytes(payload: bytes | str | os.PathLike) -> bytes:
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    if isinstance(payload, str) and payload.startswith("data:"):
        return data_uri_to_bytes(payload)[0]
    path = Path(payload)
    if not path.exists():
        raise MalformedImageError(f"image file not found: {path}")
    return path.read_bytes()


def load_image(payload: bytes | str | os.PathLike | UploadedFile) -> np.ndarray:
    """Decode an uploaded image into an RGB uint8 array."""
    if isinstance(payload, UploadedFile):
        payload = payload.image
    raw = _payload_bytes(payload)
    if not raw:
        raise MalformedImageError("empty image payload")
    try:
        with Image.open(io.BytesIO(raw)) as img:
            rgb = np.array(ImageOps.exif_transpose(img).convert("RGB"))
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise MalformedImageError(f"unsupported image format: {e}") from e
    if rgb.shape[0] == 0 or rgb.shape[1] == 0:
        raise MalformedImageError("image has zero size")
    return rgb