"""Core engine - wires configuration, events and logging to calibration meshes."""
from __future__ import annotations

import json
import os
import uuid
from typing import Optional

from delta_calibrator.core.config import AppConfig
from delta_calibrator.core.event_bus import EventBus
from delta_calibrator.core.logger import StructuredLogger
from delta_calibrator.mesh.delta_mesh import DeltaMesh
from delta_calibrator.mesh.kinematics import Kinematics


class Engine:
    def __init__(self, config_path: Optional[str] = None, data_dir: str = "data"):
        self._config_path = config_path
        self._data_dir = data_dir
        self.config: Optional[AppConfig] = None
        self.event_bus: Optional[EventBus] = None
        self.logger: Optional[StructuredLogger] = None
        self._current_session: Optional[str] = None

    def initialize(self) -> None:
        self.config = AppConfig(self._config_path)
        log_dir = os.path.join(self._data_dir, "logs")
        os.makedirs(self._data_dir, exist_ok=True)
        os.makedirs(log_dir, exist_ok=True)

        self.event_bus = EventBus(keep_history=True)
        self.logger = StructuredLogger(log_dir=log_dir, level=self.config.get("logging.level", "DEBUG"))
        self.logger.attach(self.event_bus)
        self.logger.app.info("Engine initialized")

    def _require_initialized(self) -> None:
        if self.config is None:
            raise RuntimeError("Engine.initialize() has not been called")

    def create_session(self, label: str = "") -> str:
        self._require_initialized()
        sid = uuid.uuid4().hex
        self._current_session = sid
        self.logger.session_id = sid
        self.logger.log_operation(sid, "session.created", user_action=label)
        self.event_bus.emit("session.created", {"session_id": sid, "label": label})
        return sid

    @property
    def current_session(self) -> Optional[str]:
        return self._current_session

    def build_mesh(self, kinematics: Optional[Kinematics] = None, **overrides) -> DeltaMesh:
        """Mesh from the ``mesh.*`` configuration, with keyword overrides."""
        self._require_initialized()
        params = self.config.mesh_params()
        params.update({k: v for k, v in overrides.items() if v is not None})
        mesh = DeltaMesh(kinematics=kinematics, event_bus=self.event_bus, **params)
        self.logger.log_operation(self._current_session or "", "mesh.built",
                                  data=mesh.summary().to_dict())
        return mesh

    def load_mesh(self, path: str, strict: Optional[bool] = None,
                  kinematics: Optional[Kinematics] = None) -> DeltaMesh:
        self._require_initialized()
        strict = self.config.get("import.strict", False) if strict is None else strict
        with open(path, "r", encoding="utf-8") as f:
            record = json.load(f)
        mesh = DeltaMesh.from_record(record, strict=strict, kinematics=kinematics,
                                     event_bus=self.event_bus)
        self.logger.log_operation(self._current_session or "", "mesh.loaded",
                                  user_action=path, data=mesh.summary().to_dict())
        return mesh

    def save_mesh(self, mesh: DeltaMesh, path: str, tolerance: Optional[float] = None) -> str:
        self._require_initialized()
        tolerance = tolerance or self.config.get("export.tolerance", 0.0001)
        record = mesh.export(tolerance=tolerance)
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(record, f, indent=2)
        self.logger.log_operation(self._current_session or "", "mesh.saved",
                                  user_action=path, data={"records": len(record["data"])})
        return path

    def shutdown(self) -> None:
        if self._current_session and self.event_bus:
            self.event_bus.emit("session.ended", {"session_id": self._current_session})
        if self.logger:
            self.logger.app.info("Engine shutdown")
        self._current_session = None
