from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from host_init.core.enums import DistroFamily
from host_init.core.models import ProvisionChoices, Step, StepOperation
from host_init.services.accounts import AccountService
from host_init.services.apt_sources import AptSourcesService
from host_init.services.docker import DockerService
from host_init.services.sshd import SshdService
from host_init.services.system import SystemService
from host_init.services.timezone import TimezoneService


INIT_STEPS = (
    "set_timezone",
    "configure_apt_sources",
    "remove_snap",
    "system_update",
    "install_git",
    "disable_hibernation",
    "setup_ssh",
    "create_user",
    "configure_ssh",
    "install_docker",
)
PROFILES: dict[str, tuple[str, ...]] = {
    "init": INIT_STEPS,
    "debian": ("set_timezone", "configure_apt_sources", "system_update", "disable_hibernation", "install_docker"),
    "ubuntu": ("set_timezone", "configure_apt_sources", "remove_snap", "system_update", "install_docker"),
}
PROFILE_FAMILIES: dict[str, tuple[DistroFamily, ...]] = {
    "init": (DistroFamily.DEBIAN, DistroFamily.UBUNTU),
    "debian": (DistroFamily.DEBIAN,),
    "ubuntu": (DistroFamily.UBUNTU,),
}
USER_STEPS = frozenset({"create_user", "configure_ssh"})
# Later steps install packages from the configured sources.
DEFAULT_CRITICAL_STEPS = frozenset({"configure_apt_sources"})


@dataclass(slots=True)
class ProvisioningServices:
    timezone: TimezoneService
    apt_sources: AptSourcesService
    system: SystemService
    accounts: AccountService
    sshd: SshdService
    docker: DockerService

    def operations(self) -> dict[str, tuple[StepOperation, str]]:
        return {
            "set_timezone": (self.timezone.apply, "Set system timezone"),
            "configure_apt_sources": (self.apt_sources.configure, "Configure APT mirror"),
            "remove_snap": (self.system.remove_snap, "Remove snap packages"),
            "system_update": (self.system.system_update, "Update and upgrade packages"),
            "install_git": (self.system.install_git, "Install or upgrade Git"),
            "disable_hibernation": (self.system.disable_hibernation, "Disable hibernation"),
            "setup_ssh": (self.system.setup_ssh_server, "Ensure SSH server is running"),
            "create_user": (self.accounts.create_user, "Create login user"),
            "configure_ssh": (self.sshd.configure, "Harden sshd configuration"),
            "install_docker": (self.docker.install, "Install Docker"),
        }


def list_available_profiles() -> list[str]:
    return sorted(PROFILES)


def profile_step_names(profile: str, choices: ProvisionChoices | None = None) -> list[str]:
    normalized = profile.strip().lower()
    if normalized not in PROFILES:
        raise ValueError(f"Unsupported profile '{profile}'. Available: {', '.join(list_available_profiles())}")
    names = list(PROFILES[normalized])
    if choices is not None and not choices.create_user:
        names = [name for name in names if name not in USER_STEPS]
    return names


def profile_families(profile: str) -> tuple[DistroFamily, ...]:
    return PROFILE_FAMILIES[profile.strip().lower()]


def build_step_plan(
    *,
    profile: str,
    services: ProvisioningServices,
    choices: ProvisionChoices,
    stop_on_error: bool = False,
    critical_steps: Iterable[str] | None = None,
) -> list[Step]:
    names = profile_step_names(profile, choices)
    critical = set(DEFAULT_CRITICAL_STEPS if critical_steps is None else critical_steps)
    unknown = critical - set(PROFILES["init"])
    if unknown:
        raise ValueError(f"Unknown step(s) marked critical: {', '.join(sorted(unknown))}")

    operations = services.operations()
    steps: list[Step] = []
    for name in names:
        operation, description = operations[name]
        steps.append(
            Step(
                name=name,
                operation=operation,
                critical=stop_on_error or name in critical,
                description=description,
            )
        )
    return steps
