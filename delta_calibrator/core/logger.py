"""Three-tier structured logging: app log, operation journal, calibration journal."""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional, Union

from delta_calibrator.core.event_bus import CALIBRATION_EVENTS, EventBus

OPERATIONS_FILE = "operations.jsonl"
CALIBRATION_FILE = "calibration.jsonl"


class StructuredLogger:
    def __init__(self, log_dir: str = "data/logs", level: Union[int, str] = logging.DEBUG):
        self._log_dir = log_dir
        self.session_id = ""
        os.makedirs(log_dir, exist_ok=True)
        self._setup_app_logger(level)

    def _setup_app_logger(self, level: Union[int, str]) -> None:
        self._app_logger = logging.getLogger("dmc." + os.path.abspath(self._log_dir))
        if not self._app_logger.handlers:
            handler = RotatingFileHandler(
                os.path.join(self._log_dir, "app.log"),
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
            )
            handler.setFormatter(
                logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
            )
            self._app_logger.addHandler(handler)
            self._app_logger.setLevel(level if isinstance(level, int) else level.upper())

    @property
    def app(self) -> logging.Logger:
        return self._app_logger

    @property
    def log_dir(self) -> str:
        return self._log_dir

    def _append(self, filename: str, session_id: str, event_type: str, **fields) -> None:
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "session_id": session_id,
            "event_type": event_type,
        }
        record.update(fields)
        with open(os.path.join(self._log_dir, filename), "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")

    def log_operation(
        self,
        session_id: str,
        event_type: str,
        user_action: str = "",
        data: Optional[dict] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        self._append(OPERATIONS_FILE, session_id, event_type, user_action=user_action,
                     data=data or {}, metadata=metadata or {})

    def log_calibration(
        self,
        session_id: str,
        event_type: str,
        result: dict,
        mesh: Optional[dict] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        """Journal one calibration pass (digitize, mend or import)."""
        self._append(CALIBRATION_FILE, session_id, event_type, result=result,
                     mesh=mesh or {}, metadata=metadata or {})

    def attach(self, event_bus: EventBus) -> None:
        """Journal every calibration event published on *event_bus*."""
        for event in CALIBRATION_EVENTS:
            event_bus.subscribe(event, self._calibration_handler(event))

    def _calibration_handler(self, event: str):
        def handler(data: dict) -> None:
            self.log_calibration(self.session_id, event, result=data)
            self._app_logger.info("%s %s", event, json.dumps(data, default=str))
        return handler
