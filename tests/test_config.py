from __future__ import annotations

import json

import pytest

from geocam import config as cfgmod


def test_defaults_are_complete():
    cfg = cfgmod.load_config(paths=[])
    assert cfg == cfgmod.validate_settings({})
    assert cfg["resolution"] == "medium"
    assert cfg["aspect_ratio"] == "16:9"
    assert cfg["item_order"] == ["logo", "qr", "company", "project", "time", "coordinates"]
    assert cfg["scales"] == {"s": 0.10, "m": 0.15, "l": 0.20}


def test_file_merged_over_defaults(tmp_path):
    p = tmp_path / "settings.json"
    p.write_text(json.dumps({"company_name": "ACME", "scales": {"l": 0.3}}))

    cfg = cfgmod.load_config(paths=[str(tmp_path / "missing.json"), str(p)])

    assert cfg["company_name"] == "ACME"
    assert cfg["scales"]["l"] == 0.3
    assert cfg["scales"]["s"] == cfgmod.DEFAULT["scales"]["s"]
    assert cfg["show_logo"] is True


def test_corrupt_file_is_skipped(tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    good = tmp_path / "good.json"
    good.write_text(json.dumps({"project_name": "Bridge"}))

    cfg = cfgmod.load_config(paths=[str(bad), str(good)])

    assert cfg["project_name"] == "Bridge"


def test_invalid_values_fall_back():
    cfg = cfgmod.validate_settings({
        "resolution": "8k",
        "aspect_ratio": None,
        "pos_qr": "middle",
        "logo_size": "xl",
        "logo_data": 42,
        "item_order": ["time", "banner", "logo"],
        "scales": "big",
    })

    assert cfg["resolution"] == "medium"
    assert cfg["aspect_ratio"] == "16:9"
    assert cfg["pos_qr"] == cfgmod.DEFAULT["pos_qr"]
    assert cfg["logo_size"] == "m"
    assert cfg["logo_data"] is None
    assert cfg["item_order"] == ["time", "logo"]
    assert cfg["scales"] == cfgmod.DEFAULT["scales"]


def test_non_list_order_restored():
    assert cfgmod.validate_settings({"item_order": "logo"})["item_order"] == cfgmod.DEFAULT["item_order"]


def test_default_not_mutated():
    before = json.dumps(cfgmod.DEFAULT, sort_keys=True)
    cfg = cfgmod.validate_settings({"scales": {"s": 1}})
    cfg["item_order"].append("logo")
    cfg["scales"]["m"] = 99
    assert json.dumps(cfgmod.DEFAULT, sort_keys=True) == before


def test_save_then_load(tmp_path):
    path = str(tmp_path / "settings.json")
    cfg = cfgmod.validate_settings({"company_name": "ACME", "pos_time": "top-right"})

    assert cfgmod.save_config(cfg, path) == path

    assert cfgmod.load_config(paths=[path]) == cfg
    assert not (tmp_path / "settings.json.tmp").exists()


def test_update_settings_patches_nested():
    current = cfgmod.validate_settings({"company_name": "ACME"})
    updated = cfgmod.update_settings(current, {"overlay_scale_factors": {"large": 1.5}, "show_qr_code": False})

    assert updated["company_name"] == "ACME"
    assert updated["show_qr_code"] is False
    assert updated["overlay_scale_factors"]["large"] == 1.5
    assert updated["overlay_scale_factors"]["small"] == cfgmod.DEFAULT["overlay_scale_factors"]["small"]


@pytest.mark.parametrize("raw, expected", [
    (False, False),
    ("false", False),
    ("Off", False),
    ("true", True),
    ("1", True),
    ("maybe", True),
    (None, True),
    (0, True),
])
def test_show_flags_are_real_booleans(raw, expected):
    cfg = cfgmod.validate_settings({"show_logo": raw})
    assert cfg["show_logo"] is expected


def test_scale_values_must_be_positive_numbers():
    cfg = cfgmod.validate_settings({
        "overlay_scale_factors": {"medium": "big", "large": "1.4", "small": -1},
        "scales": {"s": True, "m": float("nan"), "l": 0.25, "xl": "huge"},
    })

    assert cfg["overlay_scale_factors"] == {"small": 0.8, "medium": 1.0, "large": 1.4}
    assert cfg["scales"] == {"s": 0.10, "m": 0.15, "l": 0.25}


@pytest.mark.parametrize("fmt", [42, "", None, ["%H"]])
def test_time_format_must_be_text(fmt):
    assert cfgmod.validate_settings({"time_format": fmt})["time_format"] == cfgmod.DEFAULT["time_format"]


def test_save_creates_missing_folder(tmp_path):
    path = tmp_path / "nested" / "dir" / "settings.json"
    cfgmod.save_config(cfgmod.validate_settings({}), str(path))
    assert path.exists()
