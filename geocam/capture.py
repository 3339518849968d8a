from __future__ import annotations
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from .bridge import RenderService
from .config import validate_settings
from .errors import WatermarkError
from .models import Address, GeoSnapshot, RenderResult
from .preparer import RawCapture, prepare

log = logging.getLogger(__name__)

MESSAGES: Dict[str, str] = {
    "saved": "Photo saved",
    "busy": "A capture is already in progress",
    "failed": "Failed: {reason}",
}


@dataclass(frozen=True)
class CaptureOutcome:
    ok: bool
    message: str
    result: Optional[RenderResult] = None
    error: Optional[BaseException] = None


class CaptureController:
    """Shutter-button logic: prepare on this thread, render on the service, report back."""

    def __init__(self, service: RenderService, settings: Optional[Mapping[str, Any]] = None,
                 on_saved: Optional[Callable[[RenderResult], None]] = None,
                 messages: Optional[Mapping[str, str]] = None):
        self._service = service
        self._lock = threading.Lock()
        self._capturing = False
        self.settings: Dict[str, Any] = validate_settings(settings or {})
        self.on_saved = on_saved
        self.messages = dict(MESSAGES, **(messages or {}))

    @property
    def capturing(self) -> bool:
        return self._capturing

    def update_settings(self, new_settings: Mapping[str, Any]):
        self.settings = validate_settings(new_settings)

    def capture(self, raw: RawCapture, geo: Optional[GeoSnapshot] = None,
                address: Optional[Address] = None, is_front_camera: bool = False,
                orientation: Optional[str] = None) -> CaptureOutcome:
        with self._lock:
            if self._capturing:
                return CaptureOutcome(False, self.messages["busy"])
            self._capturing = True
        try:
            request = prepare(raw, self.settings, geo, address,
                              is_front_camera=is_front_camera, orientation=orientation)
            result = self._service.render(request)
            if self.on_saved:
                self.on_saved(result)
            log.info("capture rendered %dx%d", result.width, result.height)
            return CaptureOutcome(True, self.messages["saved"], result)
        except WatermarkError as e:
            log.error("capture failed (%s): %s", e.kind, e)
            return CaptureOutcome(False, self.messages["failed"].format(reason=str(e) or e.kind), error=e)
        except OSError as e:
            log.error("saving capture failed: %s", e)
            return CaptureOutcome(False, self.messages["failed"].format(reason=str(e)), error=e)
        except Exception as e:
            log.exception("capture failed unexpectedly")
            return CaptureOutcome(False, self.messages["failed"].format(reason=str(e) or type(e).__name__),
                                  error=e)
        finally:
            with self._lock:
                self._capturing = False
