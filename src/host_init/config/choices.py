from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from host_init.core.errors import ConfigError
from host_init.core.models import ProvisionChoices


CHOICE_FIELDS = frozenset(ProvisionChoices.model_fields) | {"ssh_public_key_file"}


def load_choices_from_json(path: str | Path) -> dict[str, Any]:
    payload = _read_json(path)
    unknown = sorted(set(payload) - CHOICE_FIELDS)
    if unknown:
        raise ConfigError(f"Unknown keys in choices file: {', '.join(unknown)}")

    key_file = payload.pop("ssh_public_key_file", None)
    if key_file:
        payload["ssh_public_key"] = read_key_file(key_file)
    return payload


def build_choices(values: Mapping[str, Any], *, default_ssh_port: int = 22) -> ProvisionChoices:
    data = dict(values)
    if data.get("create_user") and data.get("ssh_port") is None:
        data["ssh_port"] = default_ssh_port
    try:
        return ProvisionChoices(**data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid provisioning choices: {exc}") from exc


def read_key_file(path: str | Path) -> str:
    key_path = Path(path).expanduser()
    if not key_path.is_file():
        raise ConfigError(f"SSH public key file not found: {key_path}")
    return key_path.read_text(encoding="utf-8").strip()


def read_password_file(path: str | Path) -> str:
    password_path = Path(path).expanduser()
    if not password_path.is_file():
        raise ConfigError(f"Password file not found: {password_path}")
    password = password_path.read_text(encoding="utf-8").rstrip("\n")
    if not password:
        raise ConfigError(f"Password file is empty: {password_path}")
    return password


def _read_json(path: str | Path) -> dict[str, Any]:
    choices_path = Path(path)
    if not choices_path.exists():
        raise ConfigError(f"Choices file not found: {choices_path}")

    try:
        data = json.loads(choices_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Choices file is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("Choices file root must be a JSON object.")
    return data
