from __future__ import annotations

import logging
from pathlib import Path


def configure_logging(log_dir: Path, level: str | int = logging.INFO) -> None:
    log_dir.mkdir(parents=True, exist_ok=True)
    logfile = log_dir / "host-init.log"

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(logfile, encoding="utf-8"),
        ],
        force=True,
    )
