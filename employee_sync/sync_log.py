"""Per-day file log of sync runs: logs/sync/YYYY/MM/sync_<date>.log."""

import logging
from datetime import date
from pathlib import Path
from typing import Optional

from .models import SyncReport

RUN_LOGGER_NAME = "employee_sync.runs"


class SyncLogger:
    """Writes one summary line per sync run, followed by its errors."""

    def __init__(self, log_dir: Path):
        self.sync_dir = log_dir / "sync"
        self.sync_dir.mkdir(parents=True, exist_ok=True)
        self.logger = logging.getLogger(RUN_LOGGER_NAME)
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False
        self._open_day: Optional[str] = None

    def _log_file(self, day: date) -> Path:
        month_dir = self.sync_dir / str(day.year) / f"{day.month:02d}"
        month_dir.mkdir(parents=True, exist_ok=True)
        return month_dir / f"sync_{day.isoformat()}.log"

    def get(self, day: Optional[date] = None) -> logging.Logger:
        """Run logger bound to the file for ``day`` (today by default)."""
        day = day or date.today()
        if self._open_day != day.isoformat():
            for handler in list(self.logger.handlers):
                self.logger.removeHandler(handler)
                handler.close()
            handler = logging.FileHandler(self._log_file(day), encoding="utf-8")
            handler.setFormatter(logging.Formatter("%(asctime)s %(message)s"))
            self.logger.addHandler(handler)
            self._open_day = day.isoformat()
        return self.logger

    def record(self, report: SyncReport, trigger: str = "manual"):
        run_log = self.get()
        outcome = "OK" if report.success else "FAILED"
        run_log.info(
            f"[{outcome}] trigger={trigger} started={report.timestamp} "
            f"added={report.added} updated={report.updated} locked={report.locked} "
            f"errors={len(report.errors)}"
        )
        for error in report.errors:
            run_log.info(f"  error: {error}")
