from __future__ import annotations

import logging
from pathlib import Path

from host_init.core.models import ErrorRecord


class StepLedger:
    """Append-only error log plus the ordered names of failed steps for one run."""

    def __init__(self, log_file: Path, logger: logging.Logger | None = None) -> None:
        self._log_file = Path(log_file)
        self._logger = logger or logging.getLogger(__name__)
        self._failed_steps: list[str] = []
        self._records_written = 0

    @property
    def log_file(self) -> Path:
        return self._log_file

    @property
    def failed_steps(self) -> list[str]:
        return list(self._failed_steps)

    @property
    def records_written(self) -> int:
        return self._records_written

    def reset(self) -> None:
        self._log_file.parent.mkdir(parents=True, exist_ok=True)
        self._log_file.write_text("", encoding="utf-8")
        self._failed_steps.clear()
        self._records_written = 0

    def record(self, record: ErrorRecord) -> None:
        with self._log_file.open("a", encoding="utf-8") as handle:
            handle.write(record.to_log_block())
        self._records_written += 1
        self._logger.debug("Logged failure of %s (code %s) to %s.", record.step_name, record.error_code, self._log_file)

    def mark_failed(self, step_name: str) -> None:
        if step_name not in self._failed_steps:
            self._failed_steps.append(step_name)

    def finalize(self) -> bool:
        """Delete the log when nothing was written. Returns True when the log persists."""
        if not self._log_file.exists():
            return False
        if self._log_file.stat().st_size == 0:
            self._log_file.unlink()
            return False
        return True
