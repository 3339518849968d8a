from __future__ import annotations
import logging
import os
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from . import config as cfgmod
from .bridge import RenderService
from .capture import CaptureController
from .errors import CommunicationError, ImageLoadError, RendererBusyError
from .models import Address, GeoSnapshot

log = logging.getLogger(__name__)

_ORIENTATIONS = ("portrait", "landscape", "landscape-left", "landscape-right")
_TRUE = ("1", "true", "on", "yes")


def _form_float(name: str) -> Optional[float]:
    v = request.form.get(name, "").strip()
    if not v:
        return None
    return float(v)  # ValueError -> 400 in the caller


def _form_str(name: str) -> Optional[str]:
    v = request.form.get(name, "").strip()
    return v or None


def create_app(settings: Optional[Dict[str, Any]] = None, config_path: Optional[str] = None,
               service: Optional[RenderService] = None) -> Flask:
    app = Flask(__name__)
    service = service or RenderService()
    controller = CaptureController(service, settings if settings is not None else cfgmod.load_config())
    app.extensions["geocam.service"] = service
    app.extensions["geocam.capture"] = controller

    @app.get("/healthz")
    def healthz():
        return ("ok", 200)

    @app.get("/settings")
    def settings_get():
        return jsonify(controller.settings)

    @app.post("/settings")
    def settings_post():
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return jsonify(error="BadRequest", message="expected a JSON object"), 400
        merged = cfgmod.update_settings(controller.settings, body)
        if config_path:
            cfgmod.save_config(merged, config_path)
        controller.update_settings(merged)
        return jsonify(controller.settings)

    @app.post("/capture")
    def capture():
        upload = request.files.get("image")
        raw = upload.read() if upload is not None else request.form.get("image", "")
        if not raw:
            return jsonify(error=ImageLoadError.kind, message="no image supplied"), 400
        try:
            geo = GeoSnapshot(lat=_form_float("lat"), lng=_form_float("lng"),
                              accuracy=_form_float("accuracy"), error=_form_str("geo_error"))
        except ValueError as e:
            return jsonify(error="BadRequest", message=f"invalid coordinate: {e}"), 400
        orientation = _form_str("orientation")
        if orientation is not None and orientation.lower() not in _ORIENTATIONS:
            return jsonify(error="BadRequest", message=f"unknown orientation {orientation!r}"), 400
        address = Address(village=_form_str("village"), district=_form_str("district"),
                          city=_form_str("city"), state=_form_str("state"))

        outcome = controller.capture(raw, geo, address,
                                     is_front_camera=request.form.get("front", "").lower() in _TRUE,
                                     orientation=orientation)
        if outcome.ok:
            res = outcome.result
            return jsonify(image=res.data_url, width=res.width, height=res.height, message=outcome.message)
        err = outcome.error
        if err is None or isinstance(err, RendererBusyError):
            return jsonify(error=RendererBusyError.kind, message=outcome.message), 409
        kind = getattr(err, "kind", type(err).__name__)
        if isinstance(err, ImageLoadError):
            return jsonify(error=kind, message=outcome.message), 400
        status = 503 if isinstance(err, CommunicationError) else 500
        return jsonify(error=kind, message=outcome.message), status

    return app


def main():
    logging.basicConfig(
        level=os.environ.get("GEOCAM_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config_path = os.environ.get(cfgmod.CONF_ENV) or cfgmod._first_writable_path()
    service = RenderService()
    app = create_app(cfgmod.load_config(), config_path=config_path, service=service)
    port = int(os.environ.get("PORT", "8000"))
    try:
        app.run(host="0.0.0.0", port=port, threaded=True)
    finally:
        service.shutdown()


if __name__ == "__main__":
    main()
