from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from host_init.core.classifier import is_retryable
from host_init.core.enums import BackoffStrategy
from host_init.core.errors import ProvisioningError
from host_init.core.models import RetryPolicy, UnitOfWork


FailureCallback = Callable[[ProvisioningError, int], None]


@dataclass(slots=True)
class RetryOutcome:
    succeeded: bool
    attempts: int = 0
    waits: list[float] = field(default_factory=list)
    last_error: ProvisioningError | None = None
    result: Any = None


class RetryEngine:
    """Re-runs a captured unit of work after network failures with linear or exponential backoff."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        sleep_fn: Callable[[float], None] = time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._policy = policy or RetryPolicy()
        self._sleep = sleep_fn
        self._logger = logger or logging.getLogger(__name__)

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def backoff_for(self, attempt: int) -> float:
        if attempt < 1:
            raise ValueError("Retry attempts are numbered from 1.")
        initial = self._policy.initial_wait_seconds
        if self._policy.backoff == BackoffStrategy.EXPONENTIAL:
            return initial * (2 ** (attempt - 1))
        return initial + self._policy.increment_seconds * (attempt - 1)

    def wait_schedule(self) -> list[float]:
        return [self.backoff_for(attempt) for attempt in range(1, self._policy.max_retries + 1)]

    def retry(self, unit: UnitOfWork, *, label: str, on_failure: FailureCallback | None = None) -> RetryOutcome:
        outcome = RetryOutcome(succeeded=False)
        max_retries = self._policy.max_retries

        for attempt in range(1, max_retries + 1):
            wait = self.backoff_for(attempt)
            self._logger.warning(
                "[RETRY] Attempting retry %s/%s for %s in %.0fs: %s",
                attempt,
                max_retries,
                label,
                wait,
                unit.command,
            )
            self._sleep(wait)
            outcome.waits.append(wait)
            outcome.attempts = attempt

            try:
                outcome.result = unit.invoke()
            except ProvisioningError as exc:
                outcome.last_error = exc
                if on_failure is not None:
                    on_failure(exc, attempt)
                if not is_retryable(exc.code):
                    self._logger.error("Retry %s for %s failed with non-retryable code %s.", attempt, label, exc.code)
                    return outcome
                continue

            self._logger.info("[SUCCEED] Retry %s/%s for %s succeeded.", attempt, max_retries, label)
            outcome.succeeded = True
            outcome.last_error = None
            return outcome

        self._logger.error("Retries exhausted for %s after %s attempts.", label, outcome.attempts)
        return outcome
