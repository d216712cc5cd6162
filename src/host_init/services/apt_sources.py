from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from host_init.connectors.shell import StepShell
from host_init.core.enums import DistroFamily
from host_init.core.errors import ProvisioningError, StepError
from host_init.core.models import HostContext, HostFacts, HostPaths
from host_init.services.files import backup_file, cleanup_backups, restore_backup, write_managed_file


@dataclass(slots=True, frozen=True)
class Mirror:
    key: str
    name: str
    host: str

    def url_for(self, family: DistroFamily) -> str:
        return f"{self.host}/{family.value}"


MIRRORS: dict[str, Mirror] = {
    "ustc": Mirror(key="ustc", name="USTC Mirror", host="mirrors.ustc.edu.cn"),
    "tuna": Mirror(key="tuna", name="TUNA Mirror", host="mirrors.tuna.tsinghua.edu.cn"),
    "aliyun": Mirror(key="aliyun", name="Aliyun Mirror", host="mirrors.aliyun.com"),
}

DEBIAN_COMPONENTS = "main contrib non-free"
UBUNTU_COMPONENTS = "main restricted universe multiverse"
_DEB_LINE = re.compile(r"^deb\s+(?:\[[^\]]*\]\s+)?(\S+)")


def get_mirror(key: str) -> Mirror:
    mirror = MIRRORS.get(key.strip().lower())
    if mirror is None:
        raise ValueError(f"Unsupported mirror '{key}'. Available: {', '.join(MIRRORS)}")
    return mirror


def current_mirror_host(sources_text: str) -> str | None:
    for line in sources_text.splitlines():
        match = _DEB_LINE.match(line.strip())
        if match:
            return re.sub(r"^https?://", "", match.group(1)).split("/", 1)[0]
    return None


def render_sources_list(facts: HostFacts, mirror: Mirror) -> str:
    codename = facts.version_codename
    if not codename:
        raise StepError("Cannot determine the distribution codename for sources.list")
    url = mirror.url_for(facts.family)

    if facts.family == DistroFamily.DEBIAN:
        components = DEBIAN_COMPONENTS
        major = facts.major_version
        if major is not None and major >= 12:
            components += " non-free-firmware"
        return (
            f"# Debian {codename} repository ({mirror.name})\n"
            f"deb http://{url} {codename} {components}\n"
            f"deb http://{url} {codename}-updates {components}\n"
            f"deb http://{url} {codename}-backports {components}\n"
            f"deb http://{url}-security {codename}-security {components}\n"
        )

    if facts.family == DistroFamily.UBUNTU:
        return (
            f"# Ubuntu {codename} repository ({mirror.name})\n"
            f"deb http://{url} {codename} {UBUNTU_COMPONENTS}\n"
            f"deb http://{url} {codename}-updates {UBUNTU_COMPONENTS}\n"
            f"deb http://{url} {codename}-backports {UBUNTU_COMPONENTS}\n"
            f"deb http://{url} {codename}-security {UBUNTU_COMPONENTS}\n"
        )

    raise StepError(f"Unsupported distribution for APT mirrors: {facts.os_name}")


class AptSourcesService:
    def __init__(self, shell: StepShell, paths: HostPaths, logger: logging.Logger | None = None) -> None:
        self._shell = shell
        self._paths = paths
        self._logger = logger or logging.getLogger(__name__)

    def configure(self, context: HostContext) -> dict[str, Any]:
        facts = context.facts
        mirror_key = context.choices.mirror
        if facts.family == DistroFamily.OTHER or not mirror_key:
            self._logger.warning("Skipping APT source configuration: either unsupported system or no mirror selected")
            return {}

        mirror = get_mirror(mirror_key)
        sources_list = self._paths.sources_list
        if sources_list.is_file():
            current = current_mirror_host(sources_list.read_text(encoding="utf-8", errors="replace"))
            self._logger.info("Current mirror: %s", current or "unknown")

        content = render_sources_list(facts, mirror)
        backup = None
        if not self._shell.dry_run:
            backup = backup_file(sources_list, backup_dir=self._paths.apt_backup_dir)
            if backup is not None:
                self._logger.info("[SUCCEED] Backed up original sources.list to %s", backup)
                cleanup_backups(
                    self._paths.apt_backup_dir,
                    pattern=f"{sources_list.name}.backup.*",
                    retention_days=context.defaults.backup_retention_days,
                    logger=self._logger,
                )

        self._logger.info("Configuring %s sources with %s (%s)", facts.family.value, mirror.name, mirror.url_for(facts.family))
        write_managed_file(sources_list, content, dry_run=self._shell.dry_run, logger=self._logger)
        if not self._shell.dry_run and (not sources_list.is_file() or sources_list.stat().st_size == 0):
            raise StepError("Failed to write sources.list", command=f"write {sources_list}")

        try:
            self._shell.run(["apt-get", "update"], network=True)
        except ProvisioningError:
            if backup is not None:
                restore_backup(backup, sources_list)
                self._logger.info("Restored original sources.list from backup")
            raise

        self._logger.info("[SUCCEED] APT sources configured for %s using %s", facts.os_name, mirror.name)
        return {"mirror_url": mirror.url_for(facts.family), "sources_backup": str(backup) if backup else None}
