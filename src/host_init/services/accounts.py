from __future__ import annotations

import logging
import os
import pwd
from collections.abc import Callable
from pathlib import Path
from typing import Any

from host_init.connectors.shell import StepShell
from host_init.core.errors import StepError
from host_init.core.models import HostContext, HostPaths
from host_init.services.files import write_managed_file


def system_user_exists(username: str) -> bool:
    try:
        pwd.getpwnam(username)
    except KeyError:
        return False
    return True


class AccountService:
    def __init__(
        self,
        shell: StepShell,
        paths: HostPaths,
        *,
        user_exists: Callable[[str], bool] = system_user_exists,
        interactive: bool = True,
        logger: logging.Logger | None = None,
    ) -> None:
        self._shell = shell
        self._paths = paths
        self._user_exists = user_exists
        self._interactive = interactive
        self._logger = logger or logging.getLogger(__name__)

    def create_user(self, context: HostContext) -> dict[str, Any]:
        choices = context.choices
        if not choices.create_user or not choices.username:
            self._logger.info("User creation not requested; skipping.")
            return {}

        username = choices.username
        if self._user_exists(username):
            raise StepError(f"User {username} already exists", command=f"id {username}")

        self._logger.info("Creating user %s...", username)
        self._shell.run(["useradd", "-m", "-s", "/bin/bash", username])

        if self._shell.run(["apt-get", "install", "-y", "libpam-pwquality"], check=False, network=True).returncode != 0:
            self._logger.warning("Failed to install password quality checker")

        if choices.password is not None:
            self._shell.run(["chpasswd"], input_text=f"{username}:{choices.password.get_secret_value()}\n")
        elif self._interactive:
            self._logger.info("Please set a password for %s", username)
            self._shell.run(["passwd", username], capture=False)
        else:
            self._logger.warning("No password provided for %s; password login stays locked", username)
            self._shell.run(["passwd", "-l", username])

        if self._shell.run(["usermod", "-aG", "sudo", username], check=False).returncode != 0:
            self._logger.warning("Failed to add user to sudo group")

        updates: dict[str, Any] = {"created_user": username}
        if choices.ssh_public_key:
            updates["authorized_keys"] = str(self.install_ssh_key(username, choices.ssh_public_key))

        self._logger.info("[SUCCEED] User %s created successfully", username)
        return updates

    def install_ssh_key(self, username: str, public_key: str) -> Path:
        ssh_dir = self._paths.home_root / username / ".ssh"
        authorized_keys = ssh_dir / "authorized_keys"
        key_text = public_key.strip() + "\n"

        if self._shell.dry_run:
            write_managed_file(authorized_keys, key_text, dry_run=True, logger=self._logger)
        else:
            ssh_dir.mkdir(parents=True, exist_ok=True)
            os.chmod(ssh_dir, 0o700)
            write_managed_file(authorized_keys, key_text, mode=0o600, logger=self._logger)
        self._shell.run(["chown", "-R", f"{username}:{username}", str(ssh_dir)])

        check = self._shell.run(["ssh-keygen", "-l", "-f", str(authorized_keys)], check=False)
        if check.returncode != 0:
            raise StepError("Invalid SSH key format", command=f"ssh-keygen -l -f {authorized_keys}")
        return authorized_keys
