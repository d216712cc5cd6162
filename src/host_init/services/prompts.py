from __future__ import annotations

import getpass
import sys
from collections.abc import Callable
from typing import Any

from host_init.core.enums import DistroFamily
from host_init.core.models import USERNAME_REGEX, HostDefaults, HostFacts, ProvisionChoices
from host_init.services.apt_sources import MIRRORS


DEFAULT_SSH_PORT = 22


class ChoicePrompter:
    """Asks the operator for every provisioning choice up front, before any step runs."""

    def __init__(
        self,
        *,
        facts: HostFacts,
        defaults: HostDefaults,
        input_fn: Callable[[str], str] = input,
        password_fn: Callable[[str], str] = getpass.getpass,
        read_block_fn: Callable[[], str] | None = None,
        output_fn: Callable[[str], None] = print,
    ) -> None:
        self._facts = facts
        self._defaults = defaults
        self._input = input_fn
        self._password = password_fn
        self._read_block = read_block_fn or sys.stdin.read
        self._output = output_fn

    def collect(self, preset: dict[str, Any] | None = None) -> ProvisionChoices:
        values: dict[str, Any] = dict(preset or {})
        self._output("System initialization configuration")
        self._output("-" * 40)

        if "timezone_mode" not in values:
            values.update(self._ask_timezone())
        if "mirror" not in values:
            values["mirror"] = self._ask_mirror()
        if "remove_snap" not in values:
            values["remove_snap"] = (
                self._facts.family == DistroFamily.UBUNTU and self._ask_yes_no("Do you want to remove snap?")
            )
        if "create_user" not in values:
            values["create_user"] = self._ask_yes_no("Do you want to create a new user?")

        if values["create_user"]:
            if not values.get("username"):
                values["username"] = self._ask_username()
            if "password" not in values:
                values["password"] = self._ask_password(values["username"])
            if "ssh_public_key" not in values and self._ask_yes_no("Do you want to add SSH public key?"):
                values["ssh_public_key"] = self._ask_public_key()
            if "ssh_port" not in values:
                values["ssh_port"] = self._ask_ssh_port()

        if "install_docker" not in values:
            values["install_docker"] = self._ask_yes_no("Do you want to install Docker?")
        if "install_git" not in values:
            values["install_git"] = self._ask_yes_no("Do you want to install Git?")

        self._output("Configuration complete. Starting system initialization...")
        self._output("-" * 40)
        return ProvisionChoices(**values)

    def _ask_yes_no(self, question: str, default: bool = False) -> bool:
        suffix = "[Y/n]" if default else "[y/N]"
        answer = self._input(f"{question} {suffix}: ").strip().lower()
        if not answer:
            return default
        return answer in {"y", "yes"}

    def _ask_timezone(self) -> dict[str, Any]:
        self._output("Timezone:")
        self._output("1. Keep current system timezone")
        self._output("2. Use timezone detected from this host's IP address")
        self._output("3. Manually select timezone")
        choice = self._input("Enter choice (1-3) [default: 1]: ").strip()
        if choice == "2":
            return {"timezone_mode": "detected"}
        if choice == "3":
            while True:
                name = self._input("Enter your timezone (e.g., Asia/Shanghai): ").strip()
                if name:
                    return {"timezone_mode": "manual", "timezone": name}
                self._output("[ERROR] Timezone cannot be empty. Please try again.")
        return {"timezone_mode": "keep"}

    def _ask_mirror(self) -> str | None:
        if self._facts.family == DistroFamily.OTHER:
            return None
        self._output("Please select your preferred mirror:")
        keys = list(MIRRORS)
        for index, key in enumerate(keys, start=1):
            self._output(f"{index}) {MIRRORS[key].name} ({MIRRORS[key].host})")
        self._output("n) Keep current mirror")
        options = "|".join(str(index) for index in range(1, len(keys) + 1))
        choice = self._input(f"Enter your choice ({options}|n) [default: n]: ").strip().lower()
        if choice.isdigit() and 1 <= int(choice) <= len(keys):
            return keys[int(choice) - 1]
        self._output("Keeping current sources")
        return None

    def _ask_username(self) -> str:
        while True:
            username = self._input("Enter new username: ").strip()
            if USERNAME_REGEX.match(username):
                return username
            self._output("[ERROR] Invalid username format. Use only lowercase letters, numbers, - and _")

    def _ask_password(self, username: str) -> str | None:
        while True:
            password = self._password(f"Password for {username} (empty to set it interactively later): ")
            if not password:
                return None
            if self._password("Repeat password: ") == password:
                return password
            self._output("[ERROR] Passwords do not match. Please try again.")

    def _ask_public_key(self) -> str | None:
        self._output("Enter SSH public key (paste and press Enter, then Ctrl+D when done):")
        key = self._read_block().strip()
        return key or None

    def _ask_ssh_port(self) -> int:
        if not self._ask_yes_no("Do you want to change the SSH port?"):
            return DEFAULT_SSH_PORT
        low, high = self._defaults.ssh_port_min, self._defaults.ssh_port_max
        while True:
            raw = self._input(f"Enter new SSH port (recommended: greater than {low}): ").strip()
            if raw.isdigit() and low <= int(raw) <= high:
                return int(raw)
            self._output(f"[ERROR] Invalid port number. Please enter a number between {low} and {high}")
