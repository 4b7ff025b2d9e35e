import base64
import io

import numpy as np
import pytest
from PIL import Image

from conftest import png_bytes
from providers.types import MalformedImageError, UploadedFile
from providers.utils import data_uri_to_bytes, load_image


def test_data_uri_base64():
    payload, mime = data_uri_to_bytes("data:image/png;base64," + base64.b64encode(b"abc").decode())
    assert payload == b"abc"
    assert mime == "image/png"


def test_data_uri_percent_encoded():
    payload, mime = data_uri_to_bytes("data:,hello%20world")
    assert payload == b"hello world"
    assert mime == "text/plain"


def test_data_uri_rejects_other_strings():
    with pytest.raises(MalformedImageError):
        data_uri_to_bytes("http://example.com/a.png")


def test_load_image_from_bytes_path_and_data_uri(tmp_path):
    raw = png_bytes(30, 20, color=(10, 20, 30))
    path = tmp_path / "img.png"
    path.write_bytes(raw)
    uri = "data:image/png;base64," + base64.b64encode(raw).decode()

    for payload in (raw, str(path), path, uri, UploadedFile(raw, filename="img.png")):
        image = load_image(payload)
        assert image.shape == (20, 30, 3)
        assert image.dtype == np.uint8
        assert tuple(image[0, 0]) == (10, 20, 30)


@pytest.mark.parametrize("payload", [b"", b"\x89PNG garbage", "/no/such/file.png"])
def test_load_image_rejects_garbage(payload):
    with pytest.raises(MalformedImageError):
        load_image(payload)


def test_load_image_applies_exif_orientation():
    exif = Image.Exif()
    exif[0x0112] = 6  # rotate 90 degrees clockwise when displayed
    buf = io.BytesIO()
    Image.new("RGB", (30, 20), color=(200, 200, 200)).save(buf, format="JPEG", exif=exif.tobytes())
    assert load_image(buf.getvalue()).shape == (30, 20, 3)


def test_oversized_image_is_rejected(monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)
    with pytest.raises(MalformedImageError):
        load_image(png_bytes(100, 100))
