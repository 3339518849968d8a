from __future__ import annotations
from dataclasses import dataclass

from .models import Resolution
from .orientation import floor_px


@dataclass(frozen=True)
class ScalePlan:
    width: int
    height: int
    scale: float


def plan_scale(width: int, height: int, resolution: Resolution) -> ScalePlan:
    """Downscale so the longer side fits the tier cap. Never upscales."""
    cap = Resolution(resolution).max_side
    max_dim = max(width, height)
    scale = cap / max_dim if max_dim > cap else 1.0
    return ScalePlan(max(1, floor_px(width * scale)), max(1, floor_px(height * scale)), scale)
