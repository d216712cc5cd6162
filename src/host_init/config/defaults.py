from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from host_init.core.errors import ConfigError
from host_init.core.models import HostDefaults


def write_defaults(path: str | Path, defaults: HostDefaults | None = None) -> Path:
    defaults_path = Path(path)
    defaults_path.parent.mkdir(parents=True, exist_ok=True)
    payload = (defaults or HostDefaults()).model_dump(mode="json")
    defaults_path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    return defaults_path


def load_defaults(path: str | Path) -> HostDefaults:
    defaults_path = Path(path)
    try:
        data = json.loads(defaults_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Defaults file {defaults_path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("Defaults file root must be a JSON object.")
    try:
        return HostDefaults.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid defaults file {defaults_path}: {exc}") from exc


def load_or_create_defaults(path: str | Path, logger: logging.Logger | None = None) -> HostDefaults:
    logger = logger or logging.getLogger(__name__)
    defaults_path = Path(path)
    if defaults_path.exists():
        return load_defaults(defaults_path)

    defaults = HostDefaults()
    write_defaults(defaults_path, defaults)
    logger.info("Created default configuration at %s", defaults_path)
    return defaults
