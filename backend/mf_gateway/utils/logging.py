from __future__ import annotations

import json
import logging
import sys
import time
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..config import settings

if TYPE_CHECKING:
    from ..models.report import OperationResult


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        # Optional structured fields
        for k in ("phase", "target", "status"):
            if hasattr(record, k):
                payload[k] = getattr(record, k)

        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        return json.dumps(payload, separators=(",", ":"))


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    lvl = (level or settings.log_level or "INFO").upper()
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(getattr(logging, lvl, logging.INFO))

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)

    path = log_file or settings.log_file
    if path:
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(JsonFormatter())
        root.addHandler(file_handler)


def log_result(logger: logging.Logger, result: "OperationResult") -> None:
    """One log line per recorded operation, carrying its phase, target and status."""
    level = logging.INFO if result.succeeded else logging.ERROR
    logger.log(
        level,
        "%s %s: %s%s",
        result.phase.value,
        result.target,
        result.status.value,
        f" ({result.diagnostic})" if result.diagnostic else "",
        extra={"phase": result.phase.value, "target": result.target, "status": result.status.value},
    )
