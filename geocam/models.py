from __future__ import annotations
import base64
import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from PIL import Image

from .errors import ConsumedBitmapError, error_for_kind

log = logging.getLogger(__name__)


class ItemKind(str, Enum):
    LOGO = "logo"
    QR = "qr"
    COMPANY = "company"
    PROJECT = "project"
    TIME = "time"
    COORDINATES = "coordinates"


class Corner(str, Enum):
    TOP_LEFT = "top-left"
    TOP_RIGHT = "top-right"
    BOTTOM_LEFT = "bottom-left"
    BOTTOM_RIGHT = "bottom-right"

    @property
    def is_top(self) -> bool:
        return self in (Corner.TOP_LEFT, Corner.TOP_RIGHT)

    @property
    def is_left(self) -> bool:
        return self in (Corner.TOP_LEFT, Corner.BOTTOM_LEFT)


class Resolution(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"

    @property
    def max_side(self) -> int:
        return 4096 if self is Resolution.HIGH else 1920


class AspectRatio(str, Enum):
    FOUR_THREE = "4:3"
    SIXTEEN_NINE = "16:9"


class SizeClass(str, Enum):
    S = "s"
    M = "m"
    L = "l"


class OverlaySize(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


# fraction of the output width taken by logo / qr
SIZE_PERCENTAGES: Dict[str, float] = {"s": 0.10, "m": 0.15, "l": 0.20}
TEXT_SCALE_FACTORS: Dict[str, float] = {"small": 0.8, "medium": 1.0, "large": 1.3}

DEFAULT_ITEM_ORDER: Tuple[ItemKind, ...] = tuple(ItemKind)

# settings keys per item: (enabled, corner, size class)
ITEM_SETTING_KEYS: Dict[ItemKind, Tuple[str, str, Optional[str]]] = {
    ItemKind.LOGO: ("show_logo", "pos_logo", "logo_size"),
    ItemKind.QR: ("show_qr_code", "pos_qr", "qr_size"),
    ItemKind.COMPANY: ("show_company", "pos_company", None),
    ItemKind.PROJECT: ("show_project", "pos_project", None),
    ItemKind.TIME: ("show_time", "pos_time", None),
    ItemKind.COORDINATES: ("show_coordinates", "pos_coordinates", None),
}


class Bitmap:
    """Move-only handle on decoded pixels.

    ``transfer()`` hands the pixels to a new handle and leaves this one
    empty; touching an emptied handle raises ``ConsumedBitmapError``.
    """

    def __init__(self, image: Image.Image):
        self._image: Optional[Image.Image] = image

    @property
    def image(self) -> Image.Image:
        if self._image is None:
            raise ConsumedBitmapError(f"{type(self).__name__} was already handed off or closed")
        return self._image

    @property
    def consumed(self) -> bool:
        return self._image is None

    @property
    def width(self) -> int:
        return self.image.size[0]

    @property
    def height(self) -> int:
        return self.image.size[1]

    def transfer(self) -> "Bitmap":
        moved = self._rebind(self.image)
        self._image = None
        return moved

    def _rebind(self, image: Image.Image) -> "Bitmap":
        return type(self)(image)

    def close(self) -> None:
        if self._image is not None:
            self._image.close()
            self._image = None

    def __copy__(self):
        raise TypeError(f"{type(self).__name__} cannot be copied, use transfer()")

    def __deepcopy__(self, memo):
        raise TypeError(f"{type(self).__name__} cannot be copied, use transfer()")

    def __repr__(self) -> str:
        if self._image is None:
            return f"<{type(self).__name__} consumed>"
        return f"<{type(self).__name__} {self._image.size[0]}x{self._image.size[1]}>"


class SourceFrame(Bitmap):
    """The captured frame. ``sensor_landscape`` of None means infer from width > height."""

    def __init__(self, image: Image.Image, sensor_landscape: Optional[bool] = None):
        super().__init__(image)
        self.sensor_landscape = sensor_landscape

    def _rebind(self, image: Image.Image) -> "SourceFrame":
        return SourceFrame(image, sensor_landscape=self.sensor_landscape)


class OverlayAsset(Bitmap):
    """Logo or QR image drawn on top of the frame."""


@dataclass(frozen=True)
class ItemStyle:
    enabled: bool
    corner: Corner
    size: Optional[SizeClass] = None


@dataclass(frozen=True)
class RenderConfig:
    resolution: Resolution
    aspect_ratio: AspectRatio
    is_front_camera: bool
    items: Mapping[ItemKind, ItemStyle]
    item_order: Tuple[ItemKind, ...] = DEFAULT_ITEM_ORDER
    size_percentages: Mapping[str, float] = field(default_factory=lambda: MappingProxyType(dict(SIZE_PERCENTAGES)))
    text_scale: float = 1.0
    company_name: str = ""
    project_name: str = ""

    def style(self, kind: ItemKind) -> ItemStyle:
        return self.items[kind]

    def enabled(self, kind: ItemKind) -> bool:
        st = self.items.get(kind)
        return bool(st and st.enabled)

    def size_fraction(self, size: Optional[SizeClass]) -> float:
        # unknown or missing size falls back to medium
        key = size.value if size is not None else "m"
        return float(self.size_percentages.get(key, SIZE_PERCENTAGES["m"]))

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any], is_front_camera: bool = False,
                      has_fix: bool = True) -> "RenderConfig":
        """Snapshot a validated settings mapping (see ``config.validate_settings``)."""
        items: Dict[ItemKind, ItemStyle] = {}
        for kind, (show_key, pos_key, size_key) in ITEM_SETTING_KEYS.items():
            enabled = bool(settings[show_key])
            if kind is ItemKind.COORDINATES and not has_fix:
                enabled = False
            size = SizeClass(settings[size_key]) if size_key else None
            items[kind] = ItemStyle(enabled=enabled, corner=Corner(settings[pos_key]), size=size)

        order: List[ItemKind] = []
        for name in settings.get("item_order") or ():
            try:
                order.append(ItemKind(name))
            except ValueError:
                log.warning("ignoring unknown overlay item %r", name)

        scale_key = settings.get("overlay_size", "medium")
        factors = settings.get("overlay_scale_factors") or TEXT_SCALE_FACTORS
        return cls(
            resolution=Resolution(settings["resolution"]),
            aspect_ratio=AspectRatio(settings["aspect_ratio"]),
            is_front_camera=bool(is_front_camera),
            items=MappingProxyType(items),
            item_order=tuple(order),
            size_percentages=MappingProxyType(dict(settings.get("scales") or SIZE_PERCENTAGES)),
            text_scale=float(factors.get(scale_key, 1.0)),
            company_name=str(settings.get("company_name") or ""),
            project_name=str(settings.get("project_name") or ""),
        )


@dataclass
class RenderRequest:
    source: SourceFrame
    config: RenderConfig
    logo: Optional[OverlayAsset] = None
    qr: Optional[OverlayAsset] = None
    time_string: str = ""
    geo_string: str = ""
    address_lines: Tuple[str, ...] = ()

    def hand_off(self) -> "RenderRequest":
        """Move every bitmap into a new request; this one keeps only dead handles."""
        return RenderRequest(
            source=self.source.transfer(),
            config=self.config,
            logo=self.logo.transfer() if self.logo is not None else None,
            qr=self.qr.transfer() if self.qr is not None else None,
            time_string=self.time_string,
            geo_string=self.geo_string,
            address_lines=tuple(self.address_lines),
        )

    def close(self) -> None:
        for bmp in (self.source, self.logo, self.qr):
            if bmp is not None:
                bmp.close()


@dataclass(frozen=True)
class Placement:
    kind: ItemKind
    corner: Corner
    box: Tuple[float, float, float, float]  # x0, y0, x1, y1
    text: Optional[str] = None


@dataclass(frozen=True)
class RenderResult:
    ok: bool
    data_url: Optional[str] = None
    width: int = 0
    height: int = 0
    placements: Tuple[Placement, ...] = ()
    error_kind: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, data_url: str, width: int, height: int,
                placements: Tuple[Placement, ...] = ()) -> "RenderResult":
        return cls(ok=True, data_url=data_url, width=width, height=height, placements=placements)

    @classmethod
    def failure(cls, kind: str, message: str) -> "RenderResult":
        return cls(ok=False, error_kind=kind, message=message)

    @property
    def jpeg_bytes(self) -> bytes:
        if not self.ok or not self.data_url:
            raise error_for_kind(self.error_kind or "RenderError", self.message or "no image")
        return base64.b64decode(self.data_url.split(",", 1)[1])

    def raise_for_error(self) -> "RenderResult":
        if not self.ok:
            raise error_for_kind(self.error_kind or "RenderError", self.message or "render failed")
        return self


@dataclass(frozen=True)
class GeoSnapshot:
    lat: Optional[float] = None
    lng: Optional[float] = None
    accuracy: Optional[float] = None
    error: Optional[str] = None

    @property
    def has_fix(self) -> bool:
        return self.lat is not None and self.lng is not None


@dataclass(frozen=True)
class Address:
    village: Optional[str] = None
    district: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
