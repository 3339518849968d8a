"""Geotagged watermark camera: compose logo, QR, text and GPS overlays onto captures."""
from .bridge import RenderService
from .capture import CaptureController, CaptureOutcome
from .compositor import Compositor
from .errors import (CommunicationError, EncodeError, ImageLoadError, RenderError,
                     RendererBusyError, WatermarkError)
from .models import Address, GeoSnapshot, RenderConfig, RenderRequest, RenderResult
from .preparer import prepare

__version__ = "0.1.0"
