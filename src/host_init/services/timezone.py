from __future__ import annotations

import logging
from typing import Any

from host_init.connectors.geoip import GeoIPTimezoneConnector
from host_init.connectors.shell import StepShell
from host_init.core.errors import ProvisioningError, StepError
from host_init.core.models import HostContext


class TimezoneService:
    def __init__(
        self,
        shell: StepShell,
        geoip: GeoIPTimezoneConnector,
        logger: logging.Logger | None = None,
    ) -> None:
        self._shell = shell
        self._geoip = geoip
        self._logger = logger or logging.getLogger(__name__)

    def current_timezone(self) -> str:
        result = self._shell.run(["timedatectl", "show", "--property=Timezone", "--value"])
        return result.stdout.strip()

    def available_timezones(self) -> set[str]:
        result = self._shell.run(["timedatectl", "list-timezones"])
        return {line.strip() for line in result.stdout.splitlines() if line.strip()}

    def detect_timezone(self) -> str | None:
        """IP-based lookup; network failures are retried, then tolerated without touching the error log."""
        try:
            with self._shell.tolerated():
                detected = self._shell.call(self._geoip.command, self._geoip.fetch_timezone)
        except ProvisioningError as exc:
            self._logger.warning("Could not detect timezone automatically: %s", exc)
            return None
        return detected or None

    def apply(self, context: HostContext) -> dict[str, Any]:
        current = self.current_timezone()
        self._logger.info("Current system timezone: %s", current or "unknown")

        mode = context.choices.timezone_mode
        if mode == "keep":
            self._logger.info("Keeping current timezone: %s", current)
            return {"timezone": current}

        known = self.available_timezones()
        if mode == "detected":
            detected = self.detect_timezone()
            if detected and (not known or detected in known):
                self._logger.info("Detected location timezone: %s", detected)
                target = detected
            else:
                target = context.defaults.default_timezone
                self._logger.warning("Using default timezone: %s", target)
        else:
            target = context.choices.timezone or ""
            if known and target not in known:
                raise StepError(f"Invalid timezone '{target}'", command="timedatectl list-timezones")

        if target == current:
            self._logger.info("Timezone already set to %s", target)
            return {"timezone": target}

        self._shell.run(["timedatectl", "set-timezone", target])
        self._logger.info("[SUCCEED] Timezone successfully set to: %s", target)
        if self._shell.run(["hwclock", "--systohc"], check=False).returncode != 0:
            self._logger.warning("Failed to sync hardware clock")
        return {"timezone": target}
