"""YAML configuration for the calibrator, addressed by dotted keys."""
from __future__ import annotations

import copy
import os
from typing import Any, Optional

import yaml

DEFAULT_CONFIG = {
    "app": {"name": "DeltaMeshCalibrator", "version": "0.1.0"},
    "mesh": {"r_in": None, "z_min": -50.0, "z_max": None, "height": None, "z_planes": 5},
    "export": {"tolerance": 0.0001},
    "import": {"strict": False},
    "mend": {"scale": None},
    "logging": {"dir": "data/logs", "level": "DEBUG"},
}

MESH_KEYS = ("r_in", "z_min", "z_max", "height", "z_planes")


def _merge(base: dict, override: dict) -> dict:
    """Recursively fold *override* into *base* in place."""
    for key, value in override.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            _merge(current, value)
        else:
            base[key] = value
    return base


class AppConfig:
    """Defaults deep-merged with an optional YAML file."""

    def __init__(self, config_path: Optional[str] = None):
        self._path = config_path
        self._data: dict = copy.deepcopy(DEFAULT_CONFIG)
        if config_path and os.path.exists(config_path):
            with open(config_path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
            if loaded is None:
                loaded = {}
            if not isinstance(loaded, dict):
                raise ValueError("%s: top level of a config file must be a mapping" % config_path)
            _merge(self._data, loaded)

    def get(self, dotted_key: str, default: Any = None) -> Any:
        node: Any = self._data
        for part in dotted_key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, dotted_key: str, value: Any) -> None:
        *parents, leaf = dotted_key.split(".")
        node = self._data
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[leaf] = value

    def mesh_params(self) -> dict:
        """``DeltaMesh`` keyword arguments from the ``mesh`` section."""
        return {key: self.get("mesh." + key) for key in MESH_KEYS}

    def save(self, path: Optional[str] = None) -> str:
        path = path or self._path
        if not path:
            raise ValueError("no path to save the configuration to")
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self._data, f, default_flow_style=False, sort_keys=False)
        return path

    @property
    def data(self) -> dict:
        return self._data
