from __future__ import annotations
import copy, json, logging, math, os, tempfile, shutil
from typing import Any, Dict, Mapping

from .formatting import TIME_FORMAT
from .models import (AspectRatio, Corner, ITEM_SETTING_KEYS, ItemKind, OverlaySize, Resolution,
                     SIZE_PERCENTAGES, SizeClass, TEXT_SCALE_FACTORS)

log = logging.getLogger(__name__)

# Defaults for a fresh install; a settings file only needs the keys it changes
DEFAULT: Dict[str, Any] = {
    "company_name": "PT. KONSTRUKSI MAJU",
    "project_name": "Proyek Infrastruktur A",
    "show_logo": True,
    "show_qr_code": True,
    "show_company": True,
    "show_project": True,
    "show_time": True,
    "show_coordinates": True,
    "pos_logo": "top-right",
    "pos_qr": "bottom-right",
    "pos_company": "top-left",
    "pos_project": "bottom-right",
    "pos_time": "bottom-left",
    "pos_coordinates": "bottom-left",
    "logo_size": "m",
    "qr_size": "m",
    "overlay_size": "medium",
    "item_order": [k.value for k in ItemKind],
    "resolution": "medium",
    "aspect_ratio": "16:9",
    "logo_data": None,
    "time_format": TIME_FORMAT,
    "scales": dict(SIZE_PERCENTAGES),
    "overlay_scale_factors": dict(TEXT_SCALE_FACTORS),
}

CONF_ENV = "GEOCAM_CONFIG"
CONF_NAME = "settings.json"
CONF_PATHS = [
    os.environ.get(CONF_ENV) or "",
    "/etc/geocam/settings.json",
    os.path.expanduser("~/.config/geocam/settings.json"),
]

_ENUM_KEYS = {
    "resolution": Resolution,
    "aspect_ratio": AspectRatio,
    "overlay_size": OverlaySize,
}

for _show, _pos, _size in ITEM_SETTING_KEYS.values():
    _ENUM_KEYS[_pos] = Corner
    if _size:
        _ENUM_KEYS[_size] = SizeClass

_TRUE_WORDS = ("true", "1", "yes", "on")
_FALSE_WORDS = ("false", "0", "no", "off")


def _first_writable_path() -> str:
    candidates = [
        os.path.expanduser("~/.config/geocam/settings.json"),
        os.path.join(tempfile.gettempdir(), "geocam", CONF_NAME),
    ]
    for p in candidates:
        try:
            os.makedirs(os.path.dirname(p), exist_ok=True)
            open(p, "a").close()
            return p
        except OSError:
            continue
    return os.path.join(tempfile.gettempdir(), CONF_NAME)


def load_config(paths=None) -> Dict[str, Any]:
    """First readable settings file merged over DEFAULT, then validated."""
    for p in (CONF_PATHS if paths is None else paths):
        if not p:
            continue
        try:
            with open(p, "r") as f:
                data = json.load(f)
        except FileNotFoundError:
            continue
        except (OSError, ValueError) as e:
            log.warning("ignoring unreadable settings file %s: %s", p, e)
            continue
        if isinstance(data, dict):
            log.info("settings loaded from %s", p)
            return validate_settings(data)
    return validate_settings({})


def save_config(cfg: Dict[str, Any], path: str | None = None) -> str:
    """Write settings next to their final path, then swap them in."""
    path = path or os.environ.get(CONF_ENV) or _first_writable_path()
    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)
    tmp = f"{path}.tmp"
    with open(tmp, "w") as f:
        json.dump(cfg, f, indent=2, sort_keys=True)
    shutil.move(tmp, path)
    log.info("settings saved to %s", path)
    return path


def _positive_numbers(values: Dict[str, Any], defaults: Mapping[str, float], key: str) -> Dict[str, float]:
    out: Dict[str, float] = {}
    for name, v in values.items():
        try:
            if isinstance(v, bool):
                raise TypeError("flag is not a number")
            num = float(v)
            if not math.isfinite(num) or num <= 0:
                raise ValueError("must be a positive number")
        except (TypeError, ValueError):
            log.warning("invalid %s[%r]=%r", key, name, v)
            if name in defaults:
                out[name] = float(defaults[name])
            continue
        out[name] = num
    return out


def validate_settings(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge onto DEFAULT and repair anything a stale or hand-edited file gets wrong."""
    merged = _merge(copy.deepcopy(DEFAULT), dict(raw))
    for key, enum in _ENUM_KEYS.items():
        try:
            enum(merged.get(key))
        except (TypeError, ValueError):
            log.warning("invalid %s=%r, using %r", key, merged.get(key), DEFAULT[key])
            merged[key] = DEFAULT[key]

    for show_key, _pos, _size in ITEM_SETTING_KEYS.values():
        v = merged.get(show_key)
        if isinstance(v, bool):
            continue
        word = v.strip().lower() if isinstance(v, str) else None
        if word in _TRUE_WORDS:
            merged[show_key] = True
        elif word in _FALSE_WORDS:
            merged[show_key] = False
        else:
            log.warning("invalid %s=%r, using %r", show_key, v, DEFAULT[show_key])
            merged[show_key] = DEFAULT[show_key]

    if merged.get("logo_data") is not None and not isinstance(merged["logo_data"], str):
        merged["logo_data"] = None
    if not isinstance(merged.get("time_format"), str) or not merged["time_format"]:
        merged["time_format"] = DEFAULT["time_format"]

    order = merged.get("item_order")
    if not isinstance(order, list):
        order = list(DEFAULT["item_order"])
    known = {k.value for k in ItemKind}
    merged["item_order"] = [name for name in order if name in known]

    for key in ("scales", "overlay_scale_factors"):
        if not isinstance(merged.get(key), dict):
            merged[key] = dict(DEFAULT[key])
        else:
            merged[key] = _positive_numbers(merged[key], DEFAULT[key], key)
    return merged


def _merge(base: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in patch.items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            out[k] = _merge(base[k], v)
        else:
            out[k] = v
    return out


def update_settings(current: Mapping[str, Any], patch: Mapping[str, Any]) -> Dict[str, Any]:
    return validate_settings(_merge(dict(current), dict(patch)))
