from __future__ import annotations
import base64
import io
import logging
from functools import lru_cache
from typing import Dict, List, Optional, Sequence, Tuple

from PIL import Image, ImageDraw, ImageFilter, ImageFont

from .errors import EncodeError, ImageLoadError, RenderError, WatermarkError
from .models import Corner, ItemKind, OverlayAsset, Placement, RenderConfig, RenderRequest, RenderResult
from .orientation import plan_crop
from .scaling import plan_scale

log = logging.getLogger(__name__)

_FONT_REGULAR = "DejaVuSans.ttf"
_FONT_BOLD = "DejaVuSans-Bold.ttf"
_FONT_MONO = "DejaVuSansMono.ttf"

JPEG_QUALITY = 95
PADDING_RATIO = 0.04
TEXT_RATIO = 0.035
SMALL_TEXT_RATIO = 0.5
ADDRESS_TEXT_RATIO = 0.9
LINE_SPACING = 1.5
SHADOW_OFFSET = 2
SHADOW_BLUR = 3
TEXT_FILL = (255, 255, 255, 255)
SHADOW_FILL = (0, 0, 0, 200)


@lru_cache(maxsize=64)
def _font(name: str, size: int):
    try:
        return ImageFont.truetype(name, size)
    except OSError:
        return ImageFont.load_default(size)


class StackCursors:
    """Distance from the edge already used up, one per corner."""

    def __init__(self, width: int, height: int, padding: float):
        self.width = width
        self.height = height
        self.padding = padding
        self._used: Dict[Corner, float] = {c: padding for c in Corner}

    def x(self, corner: Corner) -> float:
        return self.padding if corner.is_left else self.width - self.padding

    def y(self, corner: Corner) -> float:
        used = self._used[corner]
        return used if corner.is_top else self.height - used

    def offset(self, corner: Corner) -> float:
        return self._used[corner]

    def advance(self, corner: Corner, amount: float) -> None:
        if amount < 0:
            raise ValueError("stack cursors only move away from the edge")
        self._used[corner] += amount


class _Layers:
    """Per-render drawing state: overlay + shadow layers, cursors, layout log."""

    def __init__(self, size: Tuple[int, int]):
        self.width, self.height = size
        self.padding = self.width * PADDING_RATIO
        self.cursors = StackCursors(self.width, self.height, self.padding)
        self.overlay = Image.new("RGBA", size, (0, 0, 0, 0))
        self.shadow = Image.new("RGBA", size, (0, 0, 0, 0))
        self.placements: List[Placement] = []

    def paste_image(self, img: Image.Image, xy: Tuple[int, int]) -> None:
        # clear sheet, then composite: alpha blends once
        sheet = Image.new("RGBA", self.overlay.size, (0, 0, 0, 0))
        sheet.paste(img, xy)
        self.overlay = Image.alpha_composite(self.overlay, sheet)

    def flatten(self, base: Image.Image) -> Image.Image:
        out = base.convert("RGBA")
        out = Image.alpha_composite(out, self.shadow.filter(ImageFilter.GaussianBlur(SHADOW_BLUR)))
        out = Image.alpha_composite(out, self.overlay)
        return out.convert("RGB")


class Compositor:
    """Turns a RenderRequest into an encoded JPEG with the watermark burnt in."""

    def __init__(self, jpeg_quality: int = JPEG_QUALITY):
        self.jpeg_quality = jpeg_quality

    def render(self, request: RenderRequest) -> RenderResult:
        try:
            return self._render(request)
        except WatermarkError as e:
            log.error("render failed (%s): %s", e.kind, e)
            return RenderResult.failure(e.kind, str(e))
        except Exception as e:
            # never let an imaging error escape to the worker loop
            log.exception("unexpected render failure")
            return RenderResult.failure(RenderError.kind, f"{type(e).__name__}: {e}")
        finally:
            request.close()

    # ---------- pipeline ----------
    def _render(self, request: RenderRequest) -> RenderResult:
        cfg = request.config
        if request.source.consumed:
            raise ImageLoadError("source frame is not available")
        raw = request.source.image

        crop = plan_crop(raw.size[0], raw.size[1], cfg.aspect_ratio,
                         cfg.is_front_camera, request.source.sensor_landscape)
        cw, ch = crop.cropped_size
        sp = plan_scale(cw, ch, cfg.resolution)

        try:
            surface = Image.new("RGB", (sp.width, sp.height), (0, 0, 0))
            upright = crop.transform.apply(raw.convert("RGB"))
            drawn = upright.resize((sp.width, sp.height), Image.Resampling.LANCZOS, box=crop.box)
            surface.paste(drawn, (0, 0))
        except (OSError, ValueError, MemoryError) as e:
            raise RenderError(f"could not draw source frame: {e}") from e

        layers = _Layers(surface.size)
        try:
            for kind in cfg.item_order:
                if cfg.enabled(kind):
                    self._draw_item(layers, kind, request)
            final = layers.flatten(surface)
        except WatermarkError:
            raise
        except (OSError, ValueError, MemoryError) as e:
            raise RenderError(f"could not draw overlay: {e}") from e

        data_url = self.encode(final)
        log.debug("rendered %dx%d (scale %.4f, %d overlay elements)",
                  sp.width, sp.height, sp.scale, len(layers.placements))
        return RenderResult.success(data_url, sp.width, sp.height, tuple(layers.placements))

    def encode(self, image: Image.Image) -> str:
        buf = io.BytesIO()
        try:
            image.save(buf, format="JPEG", quality=self.jpeg_quality)
        except (OSError, ValueError) as e:
            raise EncodeError(f"JPEG encoding failed: {e}") from e
        return "data:image/jpeg;base64," + base64.b64encode(buf.getvalue()).decode("ascii")

    # ---------- items ----------
    def _draw_item(self, layers: _Layers, kind: ItemKind, request: RenderRequest) -> None:
        cfg = request.config
        base = layers.width * TEXT_RATIO * cfg.text_scale
        small = base * SMALL_TEXT_RATIO
        if kind is ItemKind.LOGO:
            self._draw_image(layers, cfg, kind, request.logo, square=False)
        elif kind is ItemKind.QR:
            self._draw_image(layers, cfg, kind, request.qr, square=True)
        elif kind is ItemKind.COMPANY:
            self._draw_text(layers, cfg, kind, [(cfg.company_name.upper(), base, _FONT_BOLD)])
        elif kind is ItemKind.PROJECT:
            self._draw_text(layers, cfg, kind, [(cfg.project_name, base, _FONT_BOLD)])
        elif kind is ItemKind.TIME:
            self._draw_text(layers, cfg, kind, [(request.time_string, small, _FONT_BOLD)])
        elif kind is ItemKind.COORDINATES:
            self._draw_coordinates(layers, cfg, request, small)
        else:
            raise RenderError(f"no draw routine for overlay item {kind!r}")

    def _draw_image(self, layers: _Layers, cfg: RenderConfig, kind: ItemKind,
                    asset: Optional[OverlayAsset], square: bool) -> None:
        if asset is None:
            return
        style = cfg.style(kind)
        img = asset.image
        w = layers.width * cfg.size_fraction(style.size)
        h = w if square else img.size[1] * w / img.size[0]
        corner = style.corner
        x = layers.cursors.x(corner) - (0 if corner.is_left else w)
        y = layers.cursors.y(corner) - (0 if corner.is_top else h)

        resized = img.convert("RGBA").resize((max(1, round(w)), max(1, round(h))), Image.Resampling.LANCZOS)
        layers.paste_image(resized, (round(x), round(y)))
        layers.cursors.advance(corner, h + layers.padding / 2)
        layers.placements.append(Placement(kind, corner, (x, y, x + w, y + h)))

    def _draw_text(self, layers: _Layers, cfg: RenderConfig, kind: ItemKind,
                   lines: Sequence[Tuple[str, float, str]]) -> None:
        """Stack ``(text, font_size, font_file)`` lines outward from the item's corner."""
        lines = [ln for ln in lines if ln[0]]
        if not lines:
            return
        corner = cfg.style(kind).corner
        draw = ImageDraw.Draw(layers.overlay)
        shadow = ImageDraw.Draw(layers.shadow)
        for text, size, font_file in lines:
            font = _font(font_file, max(1, round(size)))
            line_h = size * LINE_SPACING
            text_w = draw.textlength(text, font=font)
            x = layers.cursors.x(corner) - (0 if corner.is_left else text_w)
            y = layers.cursors.y(corner) - (0 if corner.is_top else line_h)
            ty = y + (line_h - size) / 2
            shadow.text((x + SHADOW_OFFSET, ty + SHADOW_OFFSET), text, font=font, fill=SHADOW_FILL)
            draw.text((x, ty), text, font=font, fill=TEXT_FILL)
            layers.cursors.advance(corner, line_h)
            layers.placements.append(Placement(kind, corner, (x, y, x + text_w, y + line_h), text))
        layers.cursors.advance(corner, layers.padding / 2)

    def _draw_coordinates(self, layers: _Layers, cfg: RenderConfig,
                          request: RenderRequest, small: float) -> None:
        if not request.geo_string:
            return
        corner = cfg.style(ItemKind.COORDINATES).corner
        geo = (request.geo_string, small, _FONT_MONO)
        address = [(ln, small * ADDRESS_TEXT_RATIO, _FONT_REGULAR) for ln in request.address_lines]
        # bottom corners grow upward: draw last line first so it reads top-down
        if corner.is_top:
            lines = [geo] + address
        else:
            lines = list(reversed(address)) + [geo]
        self._draw_text(layers, cfg, ItemKind.COORDINATES, lines)
