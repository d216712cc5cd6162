from __future__ import annotations

import logging

import httpx

from host_init.core.errors import ProvisioningError


IP_TIMEZONE_URL = "http://ip-api.com/line/?fields=timezone"

# Network failures are reported with the retryable exit codes.
TIMEOUT_CODE = 100
TRANSPORT_ERROR_CODE = 101
HTTP_STATUS_CODE = 102


class GeoIPTimezoneConnector:
    def __init__(
        self,
        *,
        url: str = IP_TIMEZONE_URL,
        timeout_seconds: float = 5.0,
        client: httpx.Client | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout_seconds
        self._client = client
        self._logger = logger or logging.getLogger(__name__)

    @property
    def command(self) -> str:
        return f"GET {self._url}"

    def fetch_timezone(self) -> str:
        if self._client is not None:
            return self._fetch(self._client)
        with httpx.Client(timeout=self._timeout) as client:
            return self._fetch(client)

    def _fetch(self, client: httpx.Client) -> str:
        try:
            response = client.get(self._url, timeout=self._timeout)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise ProvisioningError(TIMEOUT_CODE, f"Timezone lookup timed out: {exc}", self.command) from exc
        except httpx.HTTPStatusError as exc:
            raise ProvisioningError(
                HTTP_STATUS_CODE,
                f"Timezone lookup returned HTTP {exc.response.status_code}",
                self.command,
            ) from exc
        except httpx.TransportError as exc:
            raise ProvisioningError(TRANSPORT_ERROR_CODE, f"Timezone lookup failed: {exc}", self.command) from exc

        timezone = response.text.strip()
        self._logger.debug("IP-based timezone lookup returned '%s'.", timezone)
        return timezone
