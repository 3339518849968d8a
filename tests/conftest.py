from __future__ import annotations

import base64
import io
from typing import Any, Dict

import pytest
from PIL import Image

from geocam.config import validate_settings
from geocam.models import (GeoSnapshot, OverlayAsset, RenderConfig, RenderRequest,
                           SourceFrame)


def make_image(width: int, height: int, color=(40, 90, 160), mode: str = "RGB") -> Image.Image:
    img = Image.new(mode, (width, height), color)
    # a stripe so orientation and crop are visible in the pixels
    img.paste((220, 30, 30) if mode == "RGB" else (220, 30, 30, 255), (0, 0, max(1, width // 4), height))
    return img


def encode(img: Image.Image, fmt: str = "JPEG") -> bytes:
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def data_url(img: Image.Image, fmt: str = "PNG") -> str:
    mime = "image/png" if fmt == "PNG" else "image/jpeg"
    return f"data:{mime};base64," + base64.b64encode(encode(img, fmt)).decode("ascii")


def make_settings(**overrides: Any) -> Dict[str, Any]:
    return validate_settings(overrides)


def make_config(is_front_camera: bool = False, has_fix: bool = True, **overrides: Any) -> RenderConfig:
    return RenderConfig.from_settings(make_settings(**overrides), is_front_camera=is_front_camera,
                                      has_fix=has_fix)


def make_request(width: int = 800, height: int = 600, sensor_landscape=None, logo=None, qr=None,
                 config: RenderConfig = None, **strings: Any) -> RenderRequest:
    return RenderRequest(
        source=SourceFrame(make_image(width, height), sensor_landscape=sensor_landscape),
        config=config or make_config(),
        logo=OverlayAsset(logo) if logo is not None else None,
        qr=OverlayAsset(qr) if qr is not None else None,
        time_string=strings.get("time_string", "Saturday, 17 October 2026 14:03:05"),
        geo_string=strings.get("geo_string", "Lat: -6.200000 | Long: 106.816666 (±5,0m)"),
        address_lines=tuple(strings.get("address_lines", ())),
    )


@pytest.fixture
def settings() -> Dict[str, Any]:
    return make_settings()


@pytest.fixture
def jpeg_bytes() -> bytes:
    return encode(make_image(640, 480))


@pytest.fixture
def geo() -> GeoSnapshot:
    return GeoSnapshot(lat=-6.2, lng=106.816666, accuracy=5.0)
