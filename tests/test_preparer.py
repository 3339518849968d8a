"""Resource preparation: decoding, QR synthesis and strings."""

from __future__ import annotations

import base64
from datetime import datetime
from unittest.mock import patch

import numpy as np
import pytest
from PIL import Image

from geocam.errors import ImageLoadError, RenderError
from geocam.models import Address, GeoSnapshot, ItemKind, SourceFrame
from geocam.preparer import (QR_SIZE, decode_image, load_logo, load_source, make_qr, prepare,
                             sensor_landscape_hint)
from tests.conftest import data_url, encode, make_image, make_settings


def test_decode_jpeg_bytes(jpeg_bytes):
    img = decode_image(jpeg_bytes)
    assert img.size == (640, 480)
    assert img.mode == "RGB"


def test_decode_base64_and_data_url(jpeg_bytes):
    b64 = base64.b64encode(jpeg_bytes).decode("ascii")
    assert decode_image(b64).size == (640, 480)
    assert decode_image("data:image/jpeg;base64," + b64).size == (640, 480)


def test_decode_keeps_alpha_for_logos():
    img = decode_image(data_url(Image.new("RGBA", (10, 5), (0, 0, 0, 0))))
    assert img.mode == "RGBA"


@pytest.mark.parametrize("bad", [b"", b"not an image at all", "%%%not-base64%%%",
                                 "data:image/jpeg;base64," + base64.b64encode(b"garbage").decode()])
def test_corrupt_capture_raises_image_load_error(bad):
    with pytest.raises(ImageLoadError):
        load_source(bad)


def test_truncated_jpeg_raises_image_load_error(jpeg_bytes):
    with pytest.raises(ImageLoadError):
        load_source(jpeg_bytes[:200])


def test_live_frame_from_numpy():
    frame = np.zeros((480, 640, 3), dtype=np.uint8)
    frame[:, :10] = (255, 0, 0)

    src = load_source(frame)

    assert (src.width, src.height) == (640, 480)
    assert src.image.getpixel((0, 0)) == (255, 0, 0)
    assert src.sensor_landscape is None


@pytest.mark.parametrize("frame", [np.zeros((4, 4), dtype=np.uint8),
                                   np.zeros((4, 4, 3), dtype=np.float32),
                                   np.zeros((0, 4, 3), dtype=np.uint8)])
def test_bad_frames_rejected(frame):
    with pytest.raises(ImageLoadError):
        load_source(frame)


def test_unsupported_capture_type():
    with pytest.raises(ImageLoadError):
        load_source(12345)


def test_orientation_hint():
    assert sensor_landscape_hint(640, 480, None) is None
    assert sensor_landscape_hint(640, 480, "landscape-left") is False
    assert sensor_landscape_hint(640, 480, "portrait") is True
    assert sensor_landscape_hint(480, 640, "portrait") is False
    with pytest.raises(ValueError):
        sensor_landscape_hint(640, 480, "upside-down")


def test_qr_is_square_image():
    qr = make_qr(-6.2, 106.816666)
    assert qr is not None
    assert (qr.width, qr.height) == (QR_SIZE, QR_SIZE)


def test_qr_modules_have_equal_width():
    img = make_qr(-6.2, 106.816666).image
    w, _ = img.size

    def dark(x, y):
        return img.getpixel((x, y))[0] < 128

    first = next((x, y) for y in range(w) for x in range(w) if dark(x, y))
    x0, y0 = first
    run = 0
    while x0 + run < w and dark(x0 + run, y0):
        run += 1

    # top edge of the finder pattern is seven modules
    assert run % 7 == 0
    assert img.getpixel((0, 0)) == (255, 255, 255)
    assert x0 == y0


def test_qr_failure_degrades_to_none():
    with patch("geocam.preparer.qrcode.QRCode", side_effect=RuntimeError("no qr today")):
        assert make_qr(1.0, 2.0) is None


def test_bad_logo_is_skipped():
    assert load_logo(None) is None
    assert load_logo("data:image/png;base64," + base64.b64encode(b"nope").decode()) is None
    assert load_logo(data_url(make_image(30, 10))).width == 30


def test_prepare_builds_full_request(jpeg_bytes, geo):
    settings = make_settings(logo_data=data_url(make_image(60, 30)), time_format="%H:%M:%S")
    address = Address(village="Sukamaju", district="Cibinong", city="Bogor")

    req = prepare(jpeg_bytes, settings, geo, address, is_front_camera=True,
                  now=datetime(2026, 10, 17, 9, 5, 7))

    assert (req.source.width, req.source.height) == (640, 480)
    assert req.logo is not None and req.logo.width == 60
    assert req.qr is not None
    assert req.config.is_front_camera
    assert req.config.enabled(ItemKind.COORDINATES)
    assert req.time_string == "09:05:07"
    assert req.geo_string == "Lat: -6.200000 | Long: 106.816666 (±5,0m)"
    assert req.address_lines == ("Sukamaju, Cibinong", "Bogor")


def test_prepare_without_fix_or_features(jpeg_bytes):
    settings = make_settings(show_logo=False, logo_data=data_url(make_image(60, 30)))

    req = prepare(jpeg_bytes, settings, GeoSnapshot(accuracy=12.0))

    assert req.logo is None
    assert req.qr is None
    assert req.geo_string == ""
    assert not req.config.enabled(ItemKind.COORDINATES)


def test_prepare_skips_qr_when_geo_in_error(jpeg_bytes):
    geo = GeoSnapshot(lat=1.0, lng=2.0, accuracy=3.0, error="permission denied")
    assert prepare(jpeg_bytes, make_settings(), geo).qr is None


def test_prepare_corrupt_capture(geo):
    with pytest.raises(ImageLoadError):
        prepare(b"\xff\xd8corrupt", make_settings(), geo)


def test_bad_settings_fail_cleanly_and_release_source(jpeg_bytes, geo):
    frame = SourceFrame(make_image(64, 48))
    with patch("geocam.preparer.load_source", return_value=frame), \
            patch("geocam.preparer.format_current_time", side_effect=TypeError("bad format")):
        with pytest.raises(RenderError, match="bad format"):
            prepare(jpeg_bytes, make_settings(), geo)

    assert frame.consumed
