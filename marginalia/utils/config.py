from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from marginalia.utils.logger import logger

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "configs" / "viewer.yaml"


def get_config(config_file):
    assert os.path.isfile(config_file)
    with open(config_file, "r", encoding="utf-8") as cf:
        parsed_yaml = yaml.load(cf, Loader=yaml.SafeLoader)
    return parsed_yaml


def merge_configs(config_list):
    """Merge top-level sections, later configs overriding earlier keys."""
    assert len(config_list) > 0
    merged_config: Dict[str, Any] = {}
    for cl in config_list:
        for section, values in (cl or {}).items():
            if isinstance(values, dict) and isinstance(merged_config.get(section), dict):
                merged = dict(merged_config[section])
                merged.update(values)
                merged_config[section] = merged
            else:
                merged_config[section] = values
    return merged_config


def _pick(payload: Dict[str, Any], snake: str, default: Any) -> Any:
    parts = snake.split("_")
    camel = parts[0] + "".join(p.title() for p in parts[1:])
    if snake in payload and payload[snake] is not None:
        return payload[snake]
    if camel in payload and payload[camel] is not None:
        return payload[camel]
    return default


@dataclass
class ViewerConfig:
    initial_zoom: float = 1.5
    min_zoom: float = 0.5
    max_zoom: float = 3.0
    page_gap: float = 12.0
    visible_buffer_px: float = 600.0
    render_workers: int = 2
    sidecar_suffix: str = ".annotations.json"
    notes_root: str = "PDF Notes"

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ViewerConfig":
        payload = data or {}
        viewer = payload.get("VIEWER") or {}
        notes = payload.get("ANNOTATIONS") or {}
        min_zoom = float(_pick(viewer, "min_zoom", 0.5))
        max_zoom = max(min_zoom, float(_pick(viewer, "max_zoom", 3.0)))
        return cls(
            initial_zoom=max(
                min_zoom, min(max_zoom, float(_pick(viewer, "initial_zoom", 1.5)))
            ),
            min_zoom=min_zoom,
            max_zoom=max_zoom,
            page_gap=max(0.0, float(_pick(viewer, "page_gap", 12.0))),
            visible_buffer_px=max(0.0, float(_pick(viewer, "visible_buffer_px", 600.0))),
            render_workers=max(1, int(_pick(viewer, "render_workers", 2))),
            sidecar_suffix=str(_pick(notes, "sidecar_suffix", ".annotations.json"))
            or ".annotations.json",
            notes_root=str(_pick(notes, "notes_root", "PDF Notes")).strip("/")
            or "PDF Notes",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "VIEWER": {
                "initial_zoom": self.initial_zoom,
                "min_zoom": self.min_zoom,
                "max_zoom": self.max_zoom,
                "page_gap": self.page_gap,
                "visible_buffer_px": self.visible_buffer_px,
                "render_workers": self.render_workers,
            },
            "ANNOTATIONS": {
                "sidecar_suffix": self.sidecar_suffix,
                "notes_root": self.notes_root,
            },
        }

    def clamp_zoom(self, zoom: float) -> float:
        return max(self.min_zoom, min(self.max_zoom, float(zoom)))


def load_viewer_config(config_path: Optional[Path | str] = None) -> ViewerConfig:
    """Load packaged defaults, overlaid with an optional user YAML file."""
    configs = [get_config(DEFAULT_CONFIG_PATH)]
    if config_path is not None:
        path = Path(config_path).expanduser()
        try:
            override = get_config(path) if path.is_file() else None
        except (OSError, yaml.YAMLError) as exc:
            logger.warning("Ignoring unreadable viewer config %s: %s", path, exc)
            override = None
        if isinstance(override, dict):
            configs.append(override)
    try:
        return ViewerConfig.from_dict(merge_configs(configs))
    except (ValueError, TypeError) as exc:
        logger.warning("Invalid viewer config, using defaults: %s", exc)
        return ViewerConfig()
