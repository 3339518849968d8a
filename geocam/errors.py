from __future__ import annotations
from typing import Dict, Type


class WatermarkError(Exception):
    """Base for every failure a capture can end with."""
    kind = "WatermarkError"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ImageLoadError(WatermarkError):
    """A required bitmap could not be decoded."""
    kind = "ImageLoadError"


class RenderError(WatermarkError):
    """The drawing surface or context failed."""
    kind = "RenderError"


class EncodeError(WatermarkError):
    """The finished surface could not be compressed."""
    kind = "EncodeError"


class CommunicationError(WatermarkError):
    """The render worker did not answer, or is gone."""
    kind = "CommunicationError"


class RendererBusyError(CommunicationError):
    """A second request was submitted while one is still in flight."""
    kind = "RendererBusyError"


class ConsumedBitmapError(RenderError):
    """A bitmap handle was used after it was handed off or closed."""
    kind = "ConsumedBitmapError"


_KINDS: Dict[str, Type[WatermarkError]] = {
    cls.kind: cls
    for cls in (WatermarkError, ImageLoadError, RenderError, EncodeError,
                CommunicationError, RendererBusyError, ConsumedBitmapError)
}


def error_for_kind(kind: str, message: str) -> WatermarkError:
    # unknown kinds still surface, as the base error
    return _KINDS.get(kind, WatermarkError)(message)
