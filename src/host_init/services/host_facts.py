from __future__ import annotations

import logging
import os
import platform
import shlex
import shutil
from collections.abc import Callable, Iterable
from pathlib import Path

from host_init.core.enums import DistroFamily
from host_init.core.errors import PreconditionError
from host_init.core.models import HostFacts, HostPaths


MACHINE_TO_DEB_ARCH = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "armhf",
    "i686": "i386",
}


def parse_os_release(text: str) -> dict[str, str]:
    values: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, raw_value = line.split("=", 1)
        try:
            parts = shlex.split(raw_value)
        except ValueError:
            parts = [raw_value.strip("\"'")]
        values[key.strip()] = parts[0] if parts else ""
    return values


def detect_family(values: dict[str, str]) -> DistroFamily:
    identifiers = " ".join([values.get("ID", ""), values.get("NAME", "")]).lower()
    if "ubuntu" in identifiers:
        return DistroFamily.UBUNTU
    if "debian" in identifiers:
        return DistroFamily.DEBIAN
    return DistroFamily.OTHER


def detect_host_facts(os_release: Path, *, machine: str | None = None) -> HostFacts:
    if not os_release.is_file():
        raise PreconditionError("Cannot determine OS type")

    values = parse_os_release(os_release.read_text(encoding="utf-8"))
    name = values.get("NAME", "").strip()
    if not name:
        raise PreconditionError("Cannot determine OS type")

    machine = (machine or platform.machine()).lower()
    return HostFacts(
        os_name=name,
        os_id=values.get("ID", "").lower(),
        family=detect_family(values),
        version_id=values.get("VERSION_ID", ""),
        version_codename=values.get("VERSION_CODENAME", "") or values.get("UBUNTU_CODENAME", ""),
        architecture=MACHINE_TO_DEB_ARCH.get(machine, machine),
    )


def check_preconditions(
    *,
    paths: HostPaths,
    allowed_families: Iterable[DistroFamily] | None = None,
    euid_fn: Callable[[], int] = os.geteuid,
    which_fn: Callable[[str], str | None] = shutil.which,
    logger: logging.Logger | None = None,
) -> HostFacts:
    logger = logger or logging.getLogger(__name__)
    if euid_fn() != 0:
        raise PreconditionError("Please run this script with root privileges")

    facts = detect_host_facts(paths.os_release)

    allowed = set(allowed_families) if allowed_families is not None else None
    if allowed is not None and facts.family not in allowed:
        expected = " or ".join(sorted(family.value.capitalize() for family in allowed))
        raise PreconditionError(f"This script is only for {expected} systems (detected {facts.os_name})")

    if which_fn("apt") is None and which_fn("apt-get") is None:
        raise PreconditionError("No supported package manager found (only apt is supported)")

    logger.info("Detected %s (%s %s, %s).", facts.os_name, facts.version_id, facts.version_codename, facts.architecture)
    return facts


def security_warnings(paths: HostPaths) -> list[str]:
    warnings: list[str] = []
    if paths.pam_common_password.is_file():
        if "pam_pwquality.so" not in paths.pam_common_password.read_text(encoding="utf-8", errors="replace"):
            warnings.append("Password complexity requirements not configured")
    if paths.sshd_config.is_file():
        for line in paths.sshd_config.read_text(encoding="utf-8", errors="replace").splitlines():
            if line.strip().split() == ["PermitRootLogin", "yes"]:
                warnings.append("Root login is currently permitted via SSH")
                break
    return warnings
