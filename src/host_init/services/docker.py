from __future__ import annotations

import json
import logging
import tempfile
from collections.abc import Callable
from functools import partial
from pathlib import Path
from typing import Any

from host_init.connectors.shell import StepShell
from host_init.core.enums import DistroFamily
from host_init.core.errors import ProvisioningError, StepError
from host_init.core.models import HostContext, HostFacts, HostPaths
from host_init.services.files import write_managed_file


LEGACY_PACKAGES = ("docker.io", "docker-doc", "docker-compose", "podman-docker", "containerd", "runc")
PREREQUISITES = ("ca-certificates", "curl", "gnupg")
DOCKER_PACKAGES = (
    "docker-ce",
    "docker-ce-cli",
    "containerd.io",
    "docker-buildx-plugin",
    "docker-compose-plugin",
)
DAEMON_CONFIG: dict[str, Any] = {
    "log-driver": "json-file",
    "log-opts": {"max-size": "100m", "max-file": "3"},
}
DOCKER_DOWNLOAD_URL = "https://download.docker.com/linux"
INSTALL_SCRIPTS = (
    ("official script", "https://get.docker.com"),
    ("test script", "https://test.docker.com"),
)


def render_docker_repo(facts: HostFacts, keyring: str) -> str:
    if facts.family == DistroFamily.OTHER:
        raise StepError(f"Unsupported operating system: {facts.os_name}")
    if not facts.version_codename:
        raise StepError("Cannot determine the distribution codename for the Docker repository")
    return (
        f"deb [arch={facts.architecture} signed-by={keyring}] "
        f"{DOCKER_DOWNLOAD_URL}/{facts.family.value} {facts.version_codename} stable\n"
    )


class DockerService:
    def __init__(self, shell: StepShell, paths: HostPaths, logger: logging.Logger | None = None) -> None:
        self._shell = shell
        self._paths = paths
        self._logger = logger or logging.getLogger(__name__)

    def install(self, context: HostContext) -> dict[str, Any]:
        choices = context.choices
        if not choices.install_docker:
            self._logger.info("Docker installation not requested; skipping.")
            return {}

        username = context.derived.get("created_user")
        if self._shell.command_exists("docker") and not choices.reinstall_docker:
            version = self._shell.run(["docker", "--version"]).stdout.strip()
            self._logger.info("Docker is already installed (%s); skipping installation.", version)
            if username:
                self._grant_docker_group(username)
            return {"docker_version": version}

        methods: list[tuple[str, Callable[[], None]]] = [
            (name, partial(self._install_with_script, url)) for name, url in INSTALL_SCRIPTS
        ]
        methods.append(("manual installation", partial(self._install_from_repository, context.facts)))

        failures: list[ProvisioningError] = []
        for index, (name, method) in enumerate(methods, start=1):
            self._logger.info("Trying method %s: %s...", index, name)
            try:
                with self._shell.tolerated():
                    method()
                    self._configure_daemon()
                    version = self._verify_installation()
            except ProvisioningError as exc:
                self._logger.warning("Docker installation via %s failed: %s", name, exc)
                failures.append(exc)
                continue

            self._logger.info("[SUCCEED] Docker installed successfully using %s (%s)", name, version or "dry-run")
            if username:
                self._grant_docker_group(username)
            return {"docker_version": version, "docker_install_method": name}

        last = failures[-1]
        raise StepError("All Docker installation methods failed", code=last.code, command=last.command)

    def _install_with_script(self, url: str) -> None:
        script = Path(tempfile.gettempdir()) / f"{url.removeprefix('https://').split('.', 1)[0]}-docker.sh"
        self._shell.run(["curl", "-fsSL", url, "-o", str(script)], network=True)
        try:
            self._shell.run(["sh", str(script)], network=True)
        finally:
            script.unlink(missing_ok=True)

    def _install_from_repository(self, facts: HostFacts) -> None:
        keyring = self._paths.apt_keyrings_dir / "docker.asc"
        repo_line = render_docker_repo(facts, str(keyring))

        self._logger.info("Removing old Docker installations...")
        if self._shell.run(["apt-get", "remove", "-y", *LEGACY_PACKAGES], check=False).returncode != 0:
            self._logger.warning("Failed to remove old Docker installations")

        self._shell.run(["apt-get", "install", "-y", *PREREQUISITES], network=True)
        self._shell.run(["install", "-m", "0755", "-d", str(self._paths.apt_keyrings_dir)])
        self._shell.run(
            ["curl", "-fsSL", f"{DOCKER_DOWNLOAD_URL}/{facts.family.value}/gpg", "-o", str(keyring)],
            network=True,
        )
        self._shell.run(["chmod", "a+r", str(keyring)])
        write_managed_file(self._paths.docker_sources_list, repo_line, dry_run=self._shell.dry_run, logger=self._logger)

        self._shell.run(["apt-get", "update"], network=True)
        self._shell.run(["apt-get", "install", "-y", *DOCKER_PACKAGES], network=True)

    def _configure_daemon(self) -> None:
        write_managed_file(
            self._paths.docker_daemon_config,
            json.dumps(DAEMON_CONFIG, indent=4) + "\n",
            dry_run=self._shell.dry_run,
            logger=self._logger,
        )
        self._shell.run(["systemctl", "daemon-reload"])
        self._shell.run(["systemctl", "enable", "docker"])
        self._shell.run(["systemctl", "restart", "docker"])

    def _verify_installation(self) -> str:
        version = self._shell.run(["docker", "--version"]).stdout.strip()
        self._shell.run(["docker", "run", "--rm", "hello-world"], network=True)
        return version

    def _grant_docker_group(self, username: str) -> None:
        if self._shell.run(["getent", "group", "docker"], check=False).returncode != 0:
            self._shell.run(["groupadd", "docker"])
        self._shell.run(["usermod", "-aG", "docker", username])
        self._logger.info("Added %s to the docker group", username)
