from __future__ import annotations

import json
import logging
from typing import Any, Dict, Protocol

from .logging_config import get_logger

VIEW_EVENT = "view"
FAILED_EVENT = "failed logging"


class LogSink(Protocol):
    def emit(self, event_name: str, fields: Dict[str, Any]) -> None:
        ...


class LoggingSink:
    """Writes events through stdlib logging and as one JSON line on stdout."""

    def __init__(self, service: str = "views", *, json_lines: bool = True):
        self.service = service
        self.json_lines = json_lines
        self.logger = get_logger(f"viewlog.{service}")

    def emit(self, event_name: str, fields: Dict[str, Any]) -> None:
        level = logging.ERROR if event_name == FAILED_EVENT else logging.INFO
        self.logger.log(
            level,
            event_name,
            extra={"service": self.service, "event": event_name, "fields": fields},
        )

        # Also print JSON line to stdout (useful on cloud providers)
        if self.json_lines:
            print(
                json.dumps(
                    {"service": self.service, "event": event_name, **fields},
                    ensure_ascii=False,
                    default=str,
                ),
                flush=True,
            )
