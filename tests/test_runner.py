from __future__ import annotations

import shlex
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import httpx

from host_init.config.settings import Settings
from host_init.connectors.geoip import GeoIPTimezoneConnector
from host_init.connectors.shell import CommandResult, CommandRunner
from host_init.core.enums import BackoffStrategy, DistroFamily, StepStatus
from host_init.core.errors import CommandFailedError
from host_init.core.models import HostDefaults, HostFacts, HostPaths, ProvisionChoices, RetryPolicy
from host_init.services.runner import ProvisioningRunner, resolve_retry_policy


DEBIAN = HostFacts(
    os_name="Debian GNU/Linux",
    family=DistroFamily.DEBIAN,
    version_id="12",
    version_codename="bookworm",
)


class UnreachableMirrorRunner(CommandRunner):
    """Fails every apt-get update with a network code and accepts everything else."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[str] = []

    def run(self, args: Sequence[str], **kwargs: Any) -> CommandResult:
        command = shlex.join(str(arg) for arg in args)
        self.calls.append(command)
        if command == "apt-get update":
            raise CommandFailedError(101, command, "Temporary failure resolving 'deb.debian.org'")
        return CommandResult(args=[str(arg) for arg in args])

    def command_exists(self, name: str) -> bool:
        return False


def _settings(tmp_path: Path) -> Settings:
    return Settings(defaults_file=tmp_path / "defaults.json", log_dir=tmp_path / "logs", error_log=tmp_path / "error.log")


def _paths(tmp_path: Path) -> HostPaths:
    return HostPaths(sources_list=tmp_path / "sources.list", apt_backup_dir=tmp_path / "backups")


def test_resolve_retry_policy_precedence(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    defaults = HostDefaults(max_retries=4)

    assert resolve_retry_policy(settings=settings, defaults=defaults).max_retries == 4

    settings.max_retries = 2
    assert resolve_retry_policy(settings=settings, defaults=defaults).max_retries == 2

    policy = resolve_retry_policy(settings=settings, defaults=defaults, max_retries=0, backoff="linear")
    assert policy.max_retries == 0
    assert policy.backoff == BackoffStrategy.LINEAR


def test_dry_run_profile_succeeds_without_log(tmp_path: Path) -> None:
    runner = ProvisioningRunner(_settings(tmp_path), paths=_paths(tmp_path), sleep_fn=lambda _: None)

    summary = runner.run(
        profile="init",
        facts=DEBIAN,
        choices=ProvisionChoices(install_git=True),
        defaults=HostDefaults(),
        retry_policy=RetryPolicy(),
        dry_run=True,
    )

    assert summary.exit_code == 0
    assert not (tmp_path / "error.log").exists()
    assert "create_user" not in [result.step_name for result in summary.results]


def test_network_failure_is_logged_and_run_continues(tmp_path: Path) -> None:
    sleeps: list[float] = []
    command_runner = UnreachableMirrorRunner()
    runner = ProvisioningRunner(
        _settings(tmp_path),
        paths=_paths(tmp_path),
        command_runner=command_runner,
        sleep_fn=sleeps.append,
    )

    summary = runner.run(
        profile="debian",
        facts=DEBIAN,
        choices=ProvisionChoices(),
        defaults=HostDefaults(),
        retry_policy=RetryPolicy(max_retries=2),
    )

    assert summary.failed_steps == ["system_update"]
    assert summary.exit_code == 1
    assert sleeps == [5, 10]
    assert command_runner.calls.count("apt-get update") == 3
    statuses = {result.step_name: result.status for result in summary.results}
    assert statuses["disable_hibernation"] == StepStatus.SUCCEEDED
    log_text = (tmp_path / "error.log").read_text(encoding="utf-8")
    assert log_text.count("ERROR in system_update (Code: 101)") == 3
    assert "Command: apt-get update" in log_text


def test_critical_override_halts_run(tmp_path: Path) -> None:
    runner = ProvisioningRunner(
        _settings(tmp_path),
        paths=_paths(tmp_path),
        command_runner=UnreachableMirrorRunner(),
        sleep_fn=lambda _: None,
    )

    summary = runner.run(
        profile="debian",
        facts=DEBIAN,
        choices=ProvisionChoices(),
        defaults=HostDefaults(),
        retry_policy=RetryPolicy(max_retries=0),
        critical_steps=["system_update"],
    )

    assert summary.halted_early
    assert [result.status for result in summary.results][-2:] == [StepStatus.SKIPPED, StepStatus.SKIPPED]


def test_failed_timezone_detection_leaves_no_error_log(tmp_path: Path) -> None:
    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Name or service not known", request=request)

    sleeps: list[float] = []
    geoip = GeoIPTimezoneConnector(client=httpx.Client(transport=httpx.MockTransport(unreachable)))
    runner = ProvisioningRunner(
        _settings(tmp_path),
        paths=_paths(tmp_path),
        command_runner=CommandRunner(dry_run=True),
        geoip=geoip,
        sleep_fn=sleeps.append,
    )

    summary = runner.run(
        profile="init",
        facts=DEBIAN,
        choices=ProvisionChoices(timezone_mode="detected"),
        defaults=HostDefaults(),
        retry_policy=RetryPolicy(),
        dry_run=True,
    )

    assert summary.exit_code == 0
    assert sleeps == [5, 10, 20]
    assert summary.results[0].updates == {"timezone": "UTC"}
    assert not summary.log_persisted
    assert not (tmp_path / "error.log").exists()
