from __future__ import annotations

import logging
import shutil
from typing import Any

from host_init.connectors.shell import StepShell
from host_init.core.enums import DistroFamily
from host_init.core.models import HostContext, HostPaths


SLEEP_TARGETS = ("sleep.target", "suspend.target", "hibernate.target", "hybrid-sleep.target")


def parse_snap_list(output: str) -> list[str]:
    names: list[str] = []
    for line in output.splitlines()[1:]:
        parts = line.split()
        if parts:
            names.append(parts[0])
    return names


def parse_git_version(output: str) -> str:
    parts = output.split()
    return parts[2] if len(parts) >= 3 else output.strip()


class SystemService:
    def __init__(self, shell: StepShell, paths: HostPaths, logger: logging.Logger | None = None) -> None:
        self._shell = shell
        self._paths = paths
        self._logger = logger or logging.getLogger(__name__)

    def remove_snap(self, context: HostContext) -> dict[str, Any]:
        if context.facts.family != DistroFamily.UBUNTU or not context.choices.remove_snap:
            self._logger.info("Snap removal not requested; skipping.")
            return {}
        if not self._shell.command_exists("snap"):
            self._logger.info("snap is not installed; nothing to remove.")
            return {"removed_snaps": []}

        snaps = parse_snap_list(self._shell.run(["snap", "list"], check=False).stdout)
        # lxd depends on core snaps, so it goes first
        ordered = sorted(snaps, key=lambda name: name != "lxd")
        for name in ordered:
            self._logger.info("Removing snap %s...", name)
            self._shell.run(["snap", "remove", name])

        for directory in self._paths.snap_dirs:
            if self._shell.dry_run:
                self._logger.info("Dry-run: would remove %s", directory)
            elif directory.exists():
                shutil.rmtree(directory, ignore_errors=False)

        self._shell.run(["apt-mark", "hold", "snapd"])
        return {"removed_snaps": ordered}

    def system_update(self, context: HostContext) -> dict[str, Any]:
        del context
        self._shell.run(["apt-get", "update"], network=True)
        self._shell.run(["apt-get", "upgrade", "-y"], network=True)
        return {}

    def disable_hibernation(self, context: HostContext) -> dict[str, Any]:
        if context.facts.family != DistroFamily.DEBIAN:
            self._logger.info("Hibernation targets are only masked on Debian; skipping.")
            return {}
        self._shell.run(["systemctl", "mask", *SLEEP_TARGETS])
        self._logger.info("Hibernation disabled")
        return {}

    def setup_ssh_server(self, context: HostContext) -> dict[str, Any]:
        del context
        if self._shell.run(["systemctl", "is-active", "--quiet", "ssh"], check=False).returncode == 0:
            self._logger.info("SSH server is already running.")
            return {}
        self._shell.run(["apt-get", "install", "-y", "openssh-server"], network=True)
        self._shell.run(["systemctl", "enable", "ssh"])
        self._shell.run(["systemctl", "start", "ssh"])
        return {}

    def install_git(self, context: HostContext) -> dict[str, Any]:
        if not context.choices.install_git:
            self._logger.info("Git installation not requested; skipping.")
            return {}

        if not self._shell.command_exists("git"):
            self._logger.info("Installing latest version of Git...")
            self._shell.run(["apt-get", "install", "-y", "git"], network=True)
            version = parse_git_version(self._shell.run(["git", "--version"]).stdout)
            self._logger.info("Git installed successfully. Version: %s", version)
            return {"git_version": version}

        current = parse_git_version(self._shell.run(["git", "--version"]).stdout)
        upgradable = self._shell.run(["apt", "list", "--upgradable"], check=False).stdout
        if not any(line.startswith("git/") for line in upgradable.splitlines()):
            self._logger.info("Git is already the latest version (%s)", current)
            return {"git_version": current}

        self._shell.run(["apt-get", "install", "-y", "--only-upgrade", "git"], network=True)
        upgraded = parse_git_version(self._shell.run(["git", "--version"]).stdout)
        self._logger.info("Git upgraded from %s to %s", current, upgraded)
        return {"git_version": upgraded}
