from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from pathlib import Path

from host_init.config.settings import Settings
from host_init.connectors.geoip import GeoIPTimezoneConnector
from host_init.connectors.shell import CommandRunner, StepShell
from host_init.core.engine import ProvisioningEngine
from host_init.core.enums import BackoffStrategy
from host_init.core.ledger import StepLedger
from host_init.core.models import (
    HostContext,
    HostDefaults,
    HostFacts,
    HostPaths,
    ProvisionChoices,
    RetryPolicy,
    RunSummary,
)
from host_init.core.retry import RetryEngine
from host_init.services.accounts import AccountService, system_user_exists
from host_init.services.apt_sources import AptSourcesService
from host_init.services.docker import DockerService
from host_init.services.sshd import SshdService
from host_init.services.system import SystemService
from host_init.services.timezone import TimezoneService
from host_init.workflows.plan import ProvisioningServices, build_step_plan


def resolve_retry_policy(
    *,
    settings: Settings,
    defaults: HostDefaults,
    max_retries: int | None = None,
    backoff: BackoffStrategy | str = BackoffStrategy.EXPONENTIAL,
) -> RetryPolicy:
    if max_retries is None:
        max_retries = settings.max_retries if settings.max_retries is not None else defaults.max_retries
    return RetryPolicy(max_retries=max(0, max_retries), backoff=BackoffStrategy(backoff))


class ProvisioningRunner:
    def __init__(
        self,
        settings: Settings,
        *,
        paths: HostPaths | None = None,
        command_runner: CommandRunner | None = None,
        geoip: GeoIPTimezoneConnector | None = None,
        user_exists: Callable[[str], bool] = system_user_exists,
        sleep_fn: Callable[[float], None] = time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._settings = settings
        self._paths = paths or HostPaths()
        self._command_runner = command_runner
        self._geoip = geoip or GeoIPTimezoneConnector()
        self._user_exists = user_exists
        self._sleep = sleep_fn
        self._logger = logger or logging.getLogger(__name__)

    def run(
        self,
        *,
        profile: str,
        facts: HostFacts,
        choices: ProvisionChoices,
        defaults: HostDefaults,
        retry_policy: RetryPolicy,
        dry_run: bool = False,
        stop_on_error: bool = False,
        critical_steps: Iterable[str] | None = None,
        error_log: str | Path | None = None,
        interactive: bool = True,
    ) -> RunSummary:
        ledger = StepLedger(Path(error_log) if error_log else self._settings.error_log)
        engine = ProvisioningEngine(
            ledger=ledger,
            retry_engine=RetryEngine(retry_policy, sleep_fn=self._sleep),
        )
        command_runner = self._command_runner or CommandRunner(dry_run=dry_run)
        shell = StepShell(command_runner, engine.runtime)

        steps = build_step_plan(
            profile=profile,
            services=self._build_services(shell, interactive=interactive),
            choices=choices,
            stop_on_error=stop_on_error or self._settings.stop_on_error,
            critical_steps=critical_steps,
        )
        self._logger.info(
            "[INIT] Starting %s profile with %s steps (max_retries=%s, backoff=%s).",
            profile,
            len(steps),
            retry_policy.max_retries,
            retry_policy.backoff.value,
        )
        context = HostContext(facts=facts, choices=choices, defaults=defaults)
        return engine.run(steps=steps, context=context)

    def _build_services(self, shell: StepShell, *, interactive: bool = True) -> ProvisioningServices:
        return ProvisioningServices(
            timezone=TimezoneService(shell, self._geoip),
            apt_sources=AptSourcesService(shell, self._paths),
            system=SystemService(shell, self._paths),
            accounts=AccountService(shell, self._paths, user_exists=self._user_exists, interactive=interactive),
            sshd=SshdService(shell, self._paths),
            docker=DockerService(shell, self._paths),
        )
