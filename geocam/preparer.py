"""Resource preparation: everything the compositor needs, decoded up front.

Runs on the caller's thread. Nothing here draws; it decodes the capture and
the logo, builds the QR image, and formats the strings so the render itself
is a pure function of its request.
"""
from __future__ import annotations
import base64
import binascii
import io
import logging
from datetime import datetime
from typing import Any, Mapping, Optional, Union

import numpy as np
import qrcode
from qrcode.image.pil import PilImage
from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import ImageLoadError, RenderError
from .formatting import TIME_FORMAT, format_address_lines, format_current_time, format_geo_string, maps_url
from .models import Address, GeoSnapshot, OverlayAsset, RenderConfig, RenderRequest, SourceFrame

log = logging.getLogger(__name__)

QR_SIZE = 256
QR_BORDER = 2

RawCapture = Union[bytes, bytearray, str, np.ndarray, Image.Image]


def _decode_bytes(data: Union[bytes, bytearray, str]) -> bytes:
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    text = data.strip()
    if text.startswith("data:"):
        text = text.split(",", 1)[-1]
    text = "".join(text.split())
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ImageLoadError(f"capture is not valid base64: {e}") from e


def decode_image(data: Union[bytes, bytearray, str]) -> Image.Image:
    """Decode an encoded still (bytes, base64 or data URL) into RGB pixels."""
    raw = _decode_bytes(data)
    if not raw:
        raise ImageLoadError("empty image data")
    try:
        with Image.open(io.BytesIO(raw)) as im:
            im.load()
            upright = ImageOps.exif_transpose(im)
            has_alpha = "A" in upright.getbands()
            return upright.convert("RGBA" if has_alpha else "RGB")
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise ImageLoadError(f"failed to decode image: {e}") from e


def frame_from_array(frame: np.ndarray) -> Image.Image:
    """Live video frame (HxWx3 RGB or HxWx4 RGBA, uint8) to an image."""
    if frame.ndim != 3 or frame.shape[2] not in (3, 4) or frame.size == 0:
        raise ImageLoadError(f"unsupported frame shape {frame.shape}")
    if frame.dtype != np.uint8:
        raise ImageLoadError(f"unsupported frame dtype {frame.dtype}")
    return Image.fromarray(np.ascontiguousarray(frame)).convert("RGB")


def load_source(raw: RawCapture, orientation: Optional[str] = None) -> SourceFrame:
    if isinstance(raw, np.ndarray):
        img = frame_from_array(raw)
    elif isinstance(raw, Image.Image):
        try:
            img = raw.convert("RGB")
        except (OSError, ValueError) as e:
            raise ImageLoadError(f"failed to read video frame: {e}") from e
    elif isinstance(raw, (bytes, bytearray, str)):
        img = decode_image(raw).convert("RGB")
    else:
        raise ImageLoadError(f"unsupported capture type {type(raw).__name__}")
    return SourceFrame(img, sensor_landscape=sensor_landscape_hint(img.size[0], img.size[1], orientation))


def sensor_landscape_hint(width: int, height: int, orientation: Optional[str]) -> Optional[bool]:
    """Resolve the device orientation hint into the rotate-the-frame decision.

    None leaves the width > height heuristic to the crop planner.
    """
    if orientation is None:
        return None
    orientation = orientation.lower()
    if orientation.startswith("landscape"):
        return False
    if orientation == "portrait":
        return width > height
    raise ValueError(f"unknown orientation {orientation!r}")


def load_logo(logo_data: Optional[Union[bytes, str]]) -> Optional[OverlayAsset]:
    if not logo_data:
        return None
    try:
        return OverlayAsset(decode_image(logo_data))
    except ImageLoadError as e:
        log.warning("logo skipped: %s", e)
        return None


def make_qr(lat: float, lng: float, size: int = QR_SIZE) -> Optional[OverlayAsset]:
    try:
        qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_M, border=QR_BORDER)
        qr.add_data(maps_url(lat, lng))
        qr.make(fit=True)
        # whole pixels per module; the remainder becomes extra white margin
        qr.box_size = max(1, size // (qr.modules_count + 2 * QR_BORDER))
        img = qr.make_image(image_factory=PilImage, fill_color="black", back_color="white").convert("RGB")
        if img.size[0] > size:
            img = img.resize((size, size), Image.Resampling.NEAREST)
        canvas = Image.new("RGB", (size, size), (255, 255, 255))
        offset = (size - img.size[0]) // 2
        canvas.paste(img, (offset, offset))
        return OverlayAsset(canvas)
    except Exception as e:
        # a missing QR never fails the capture
        log.warning("QR generation failed: %s", e)
        return None


def prepare(raw: RawCapture, settings: Mapping[str, Any], geo: Optional[GeoSnapshot] = None,
            address: Optional[Address] = None, is_front_camera: bool = False,
            orientation: Optional[str] = None, now: Optional[datetime] = None) -> RenderRequest:
    """Build a render request from a raw capture and the current settings."""
    geo = geo or GeoSnapshot()
    source = load_source(raw, orientation)
    logo = qr_img = None
    try:
        config = RenderConfig.from_settings(settings, is_front_camera=is_front_camera, has_fix=geo.has_fix)
        time_string = format_current_time(now, settings.get("time_format") or TIME_FORMAT)
        geo_string = format_geo_string(geo)
        address_lines = tuple(format_address_lines(address))

        logo = load_logo(settings.get("logo_data")) if settings.get("show_logo") else None
        if settings.get("show_qr_code") and geo.has_fix and not geo.error:
            qr_img = make_qr(geo.lat, geo.lng)
    except (KeyError, TypeError, ValueError) as e:
        for bmp in (source, logo, qr_img):
            if bmp is not None:
                bmp.close()
        raise RenderError(f"invalid capture settings: {e}") from e

    return RenderRequest(
        source=source,
        config=config,
        logo=logo,
        qr=qr_img,
        time_string=time_string,
        geo_string=geo_string,
        address_lines=address_lines,
    )
