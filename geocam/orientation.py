"""Orientation and crop planning.

Pure arithmetic: given the raw frame size, decide which way up the picture
is, which transform puts it right, and which centred rectangle of the
upright picture matches the requested aspect ratio.
"""
from __future__ import annotations
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from PIL import Image

from .models import AspectRatio

RATIO_TOLERANCE = 0.005


def floor_px(value: float) -> int:
    # absorbs float noise such as 2267.9999999999995
    return int(math.floor(value + 1e-6))


class Mirror(str, Enum):
    NONE = "none"
    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"


@dataclass(frozen=True)
class OrientationTransform:
    rotate_degrees: int = 0  # 0 or -90 (counter-clockwise)
    mirror: Mirror = Mirror.NONE

    def apply(self, image: Image.Image) -> Image.Image:
        out = image
        # vertical mirror happens in sensor space, before the rotation
        if self.mirror is Mirror.VERTICAL:
            out = out.transpose(Image.Transpose.FLIP_TOP_BOTTOM)
        if self.rotate_degrees == -90:
            out = out.transpose(Image.Transpose.ROTATE_90)
        if self.mirror is Mirror.HORIZONTAL:
            out = out.transpose(Image.Transpose.FLIP_LEFT_RIGHT)
        return out


@dataclass(frozen=True)
class CropPlan:
    effective_width: int
    effective_height: int
    x: float
    y: float
    width: float
    height: float
    target_ratio: float
    transform: OrientationTransform

    @property
    def portrait(self) -> bool:
        return self.effective_height > self.effective_width

    @property
    def box(self) -> Tuple[float, float, float, float]:
        return (self.x, self.y, self.x + self.width, self.y + self.height)

    @property
    def cropped_size(self) -> Tuple[int, int]:
        return floor_px(self.width), floor_px(self.height)


def target_ratio(aspect_ratio: AspectRatio, portrait: bool) -> float:
    if aspect_ratio is AspectRatio.SIXTEEN_NINE:
        return 9 / 16 if portrait else 16 / 9
    return 3 / 4 if portrait else 4 / 3


def plan_crop(raw_width: int, raw_height: int, aspect_ratio: AspectRatio,
              is_front_camera: bool = False, sensor_landscape: Optional[bool] = None) -> CropPlan:
    if raw_width <= 0 or raw_height <= 0:
        raise ValueError(f"invalid frame size {raw_width}x{raw_height}")
    aspect_ratio = AspectRatio(aspect_ratio)
    if sensor_landscape is None:
        sensor_landscape = raw_width > raw_height

    if sensor_landscape:
        eff_w, eff_h = raw_height, raw_width
    else:
        eff_w, eff_h = raw_width, raw_height

    target = target_ratio(aspect_ratio, eff_h > eff_w)
    x, y, w, h = 0.0, 0.0, float(eff_w), float(eff_h)
    current = eff_w / eff_h
    if abs(current - target) > RATIO_TOLERANCE:
        if current > target:
            w = eff_h * target
            x = (eff_w - w) / 2
        else:
            h = eff_w / target
            y = (eff_h - h) / 2

    if sensor_landscape:
        transform = OrientationTransform(-90, Mirror.VERTICAL if is_front_camera else Mirror.NONE)
    else:
        transform = OrientationTransform(0, Mirror.HORIZONTAL if is_front_camera else Mirror.NONE)

    return CropPlan(eff_w, eff_h, x, y, w, h, target, transform)
