from __future__ import annotations

import json
import os
from typing import Optional

from pydantic import ValidationError

from ..models.report import RunReport
from ..utils.paths import get_app_data_dir, write_private_file


REPORT_FILE = "last_report.json"


class ReportStore:
    """Keeps the most recent RunReport for the status surfaces."""

    def __init__(self, directory: Optional[str] = None) -> None:
        self._dir = directory or get_app_data_dir()
        os.makedirs(self._dir, exist_ok=True)
        self._file = os.path.join(self._dir, REPORT_FILE)

    @property
    def path(self) -> str:
        return self._file

    def load(self) -> Optional[RunReport]:
        if not os.path.exists(self._file):
            return None
        with open(self._file, "r", encoding="utf-8") as f:
            try:
                return RunReport.model_validate(json.load(f))
            except (json.JSONDecodeError, ValidationError):
                return None

    def save(self, report: RunReport) -> None:
        write_private_file(self._file, report.model_dump_json(indent=2))


_store: Optional[ReportStore] = None


def get_report_store() -> ReportStore:
    global _store
    if _store is None:
        _store = ReportStore()
    return _store
