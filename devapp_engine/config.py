from __future__ import annotations

import copy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .utils import load_json

DEFAULTS: dict[str, dict[str, Any]] = {
    "source": {
        "delay_seconds": 0.0,
        "jitter_seconds": 0.0,
    },
    "segment": {
        "min_area": 500 * 500,
        "white_level": 240,
        "max_dark_pixels": 2,
        "min_band": 25,
    },
    "ocr": {
        "engine": "auto",
        "lang": "en",
        "max_retries": 2,
        "preprocess_on_retry": True,
    },
    "anchors": {
        "label_tokens": [["dev"], ["app"], ["no", "n0", "n°", "\"o", "\"0", "\"°"]],
        "prefix_length": 3,
        "max_edit_distance": 2,
        "raise_factor": 2.0,
    },
    "fields": {
        "assessment_label": "Assessment Number",
        "middle_labels": ["applicant", "builder"],
        "max_edit_distance": 2,
        "confusable_slash_chars": "IlL[]|’,",
        "address_gap": 50,
        "containment_ratio": 0.9,
        "artifact_area_factor": 2.0,
        "missing_description": "No description provided",
        "require_suburb": True,
    },
    "address": {
        "max_edit_distance": 2,
        "max_suburb_tokens": 4,
        "damaged_postcodes": ["0", "O", "D"],
        "append_state_postcode": False,
    },
    "output": {
        "comment_url": "",
        "write_fragments": True,
    },
}


@dataclass(frozen=True)
class EngineConfig:
    source: dict[str, Any]
    segment: dict[str, Any]
    ocr: dict[str, Any]
    anchors: dict[str, Any]
    fields: dict[str, Any]
    address: dict[str, Any]
    output: dict[str, Any]


def _merged(section: str, data: dict[str, Any]) -> dict[str, Any]:
    out = copy.deepcopy(DEFAULTS[section])
    out.update(data.get(section, {}) or {})
    return out


def config_from_dict(data: dict[str, Any]) -> EngineConfig:
    return EngineConfig(**{name: _merged(name, data) for name in DEFAULTS})


def default_config() -> EngineConfig:
    return config_from_dict({})


def load_config(config_path: str | Path | None) -> EngineConfig:
    if config_path is None or not Path(config_path).exists():
        return default_config()
    data = load_json(config_path)
    return config_from_dict(data if isinstance(data, dict) else {})
