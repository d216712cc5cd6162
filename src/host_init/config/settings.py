from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path


def default_error_log() -> Path:
    entry_point = Path(sys.argv[0]) if sys.argv and sys.argv[0] else None
    base_dir = entry_point.resolve().parent if entry_point is not None else Path.cwd()
    return base_dir / "error.log"


@dataclass(slots=True)
class Settings:
    app_name: str = "Host Init"
    defaults_file: Path = Path("/etc/host-init.json")
    log_dir: Path = Path("logs")
    error_log: Path = field(default_factory=default_error_log)
    max_retries: int | None = None
    stop_on_error: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        defaults_file = Path(os.getenv("HOST_INIT_DEFAULTS_FILE", "/etc/host-init.json"))
        log_dir = Path(os.getenv("HOST_INIT_LOG_DIR", "logs"))
        error_log_raw = os.getenv("HOST_INIT_ERROR_LOG")
        error_log = Path(error_log_raw) if error_log_raw else default_error_log()

        max_retries: int | None = None
        retries_raw = os.getenv("HOST_INIT_MAX_RETRIES")
        if retries_raw is not None:
            try:
                max_retries = max(0, min(20, int(retries_raw)))
            except ValueError:
                max_retries = None

        stop_on_error = os.getenv("HOST_INIT_STOP_ON_ERROR", "false").strip().lower() in {"1", "true", "yes"}
        return cls(
            defaults_file=defaults_file,
            log_dir=log_dir,
            error_log=error_log,
            max_retries=max_retries,
            stop_on_error=stop_on_error,
        )
