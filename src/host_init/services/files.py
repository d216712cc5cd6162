from __future__ import annotations

import gzip
import logging
import os
import shutil
from datetime import datetime, timedelta
from pathlib import Path


BACKUP_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


def backup_file(path: Path, *, backup_dir: Path | None = None, now: datetime | None = None) -> Path | None:
    """Copy ``path`` to a timestamped ``<name>.backup.<ts>`` file; returns None when there is nothing to back up."""
    if not path.is_file():
        return None
    stamp = (now or datetime.now()).strftime(BACKUP_TIMESTAMP_FORMAT)
    target_dir = backup_dir or path.parent
    target_dir.mkdir(parents=True, exist_ok=True)
    backup_path = target_dir / f"{path.name}.backup.{stamp}"
    shutil.copy2(path, backup_path)
    return backup_path


def restore_backup(backup_path: Path, target: Path) -> None:
    shutil.copy2(backup_path, target)


def cleanup_backups(
    backup_dir: Path,
    *,
    pattern: str,
    retention_days: int,
    compress_after_days: int | None = 7,
    now: datetime | None = None,
    logger: logging.Logger | None = None,
) -> list[Path]:
    """Delete backups older than the retention period and gzip the ones past ``compress_after_days``."""
    logger = logger or logging.getLogger(__name__)
    if not backup_dir.is_dir():
        return []

    current = now or datetime.now()
    delete_before = current - timedelta(days=retention_days)
    compress_before = current - timedelta(days=compress_after_days) if compress_after_days is not None else None
    removed: list[Path] = []

    for candidate in sorted(backup_dir.glob(pattern)):
        if not candidate.is_file():
            continue
        modified = datetime.fromtimestamp(candidate.stat().st_mtime)
        if modified < delete_before:
            candidate.unlink()
            removed.append(candidate)
            logger.debug("Removed expired backup %s", candidate)
        elif compress_before is not None and modified < compress_before and candidate.suffix != ".gz":
            _gzip_in_place(candidate)

    return removed


def write_managed_file(
    path: Path,
    content: str,
    *,
    dry_run: bool = False,
    mode: int | None = None,
    logger: logging.Logger | None = None,
) -> None:
    logger = logger or logging.getLogger(__name__)
    if dry_run:
        logger.info("Dry-run: would write %s (%s bytes)", path, len(content.encode("utf-8")))
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    if mode is not None:
        os.chmod(path, mode)


def _gzip_in_place(path: Path) -> Path:
    compressed = path.with_name(path.name + ".gz")
    with path.open("rb") as source, gzip.open(compressed, "wb") as target:
        shutil.copyfileobj(source, target)
    shutil.copystat(path, compressed)
    path.unlink()
    return compressed
