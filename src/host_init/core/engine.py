from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from host_init.core.classifier import classify_exit_code, describe_category, is_retryable
from host_init.core.enums import ErrorCategory, RunState, StepStatus
from host_init.core.errors import GENERAL_ERROR_CODE, ProvisioningError
from host_init.core.ledger import StepLedger
from host_init.core.models import (
    ErrorRecord,
    HostContext,
    RunSummary,
    Step,
    StepExecutionResult,
    UnitOfWork,
)
from host_init.core.retry import RetryEngine, RetryOutcome


RecoverFn = Callable[[str, ProvisioningError, UnitOfWork, bool], RetryOutcome]


class StepRuntime:
    """Executes units of work on behalf of the running step and recovers their failures in place."""

    def __init__(self, recover: RecoverFn) -> None:
        self._recover = recover
        self._step_name: str | None = None
        self._retries = 0
        self._record_failures = True

    @property
    def step_name(self) -> str | None:
        return self._step_name

    @property
    def retries(self) -> int:
        return self._retries

    def begin(self, step_name: str) -> None:
        self._step_name = step_name
        self._retries = 0
        self._record_failures = True

    def end(self) -> None:
        self._step_name = None

    @contextmanager
    def unrecorded(self) -> Iterator[None]:
        """Failures inside the block are still retried but kept out of the error log."""
        previous = self._record_failures
        self._record_failures = False
        try:
            yield
        finally:
            self._record_failures = previous

    def attempt(self, unit: UnitOfWork) -> Any:
        try:
            return unit.invoke()
        except ProvisioningError as exc:
            if self._step_name is None or exc.recorded:
                raise
            if not exc.command:
                exc.command = unit.command
            outcome = self._recover(self._step_name, exc, unit, self._record_failures)
            self._retries += outcome.attempts
            if outcome.succeeded:
                return outcome.result
            error = outcome.last_error or exc
            error.recorded = self._record_failures
            if error is exc:
                raise
            raise error from exc


class ProvisioningEngine:
    """Sequential step orchestrator with classified retries and a failure ledger."""

    def __init__(
        self,
        *,
        ledger: StepLedger,
        retry_engine: RetryEngine | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._ledger = ledger
        self._retry_engine = retry_engine or RetryEngine()
        self._logger = logger or logging.getLogger(__name__)
        self._runtime = StepRuntime(self._recover)
        self._state = RunState.IDLE
        self._step_states: dict[str, StepStatus] = {}

    @property
    def runtime(self) -> StepRuntime:
        return self._runtime

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def step_states(self) -> dict[str, StepStatus]:
        return dict(self._step_states)

    def run(self, *, steps: Sequence[Step], context: HostContext) -> RunSummary:
        self._validate_steps(steps)
        self._step_states = {step.name: StepStatus.PENDING for step in steps}
        self._ledger.reset()
        self._state = RunState.RUNNING

        results: list[StepExecutionResult] = []
        halted = False

        for step in steps:
            if halted:
                self._step_states[step.name] = StepStatus.SKIPPED
                results.append(
                    StepExecutionResult(
                        step_name=step.name,
                        status=StepStatus.SKIPPED,
                        message="Skipped after a critical step failed.",
                    )
                )
                continue

            result = self._run_step(step=step, context=context)
            results.append(result)
            self._step_states[step.name] = result.status

            if result.status == StepStatus.SUCCEEDED:
                context = context.with_updates(result.updates)
                continue

            self._ledger.mark_failed(step.name)
            self._logger.error("[ERROR] Step %s failed", step.name)
            if step.critical:
                self._logger.error("Critical step '%s' failed; remaining steps will not run.", step.name)
                halted = True

        log_persisted = self._ledger.finalize()
        self._state = RunState.COMPLETED

        summary = RunSummary(
            failed_steps=self._ledger.failed_steps,
            log_file=str(self._ledger.log_file),
            log_persisted=log_persisted,
            halted_early=halted,
            results=results,
        )
        self._report(summary)
        return summary

    def _run_step(self, *, step: Step, context: HostContext) -> StepExecutionResult:
        self._step_states[step.name] = StepStatus.RUNNING
        self._logger.info("[INFO] Executing step: %s%s", step.name, f" ({step.description})" if step.description else "")
        self._runtime.begin(step.name)
        try:
            updates = step.operation(context) or {}
        except ProvisioningError as exc:
            if not exc.recorded:
                if is_retryable(exc.code):
                    self._logger.warning(
                        "Network error in %s was not raised by a captured command; it is not retried.",
                        step.name,
                    )
                self._report_failure(step.name, exc, record=True)
                exc.recorded = True
            return self._failed_result(step.name, exc)
        except Exception as exc:
            self._logger.exception("Step '%s' raised an unexpected error.", step.name)
            self._record(step.name, ProvisioningError(GENERAL_ERROR_CODE, f"Unexpected error: {exc}"))
            return StepExecutionResult(
                step_name=step.name,
                status=StepStatus.FAILED,
                error_code=GENERAL_ERROR_CODE,
                message=str(exc),
                retries=self._runtime.retries,
            )
        finally:
            retries = self._runtime.retries
            self._runtime.end()

        self._logger.info("[SUCCEED] Step %s completed", step.name)
        return StepExecutionResult(
            step_name=step.name,
            status=StepStatus.SUCCEEDED,
            retries=retries,
            updates=dict(updates),
        )

    def _recover(self, step_name: str, error: ProvisioningError, unit: UnitOfWork, record: bool = True) -> RetryOutcome:
        category = self._report_failure(step_name, error, record=record)
        if category != ErrorCategory.NETWORK:
            error.recorded = record
            return RetryOutcome(succeeded=False, last_error=error)

        def _on_retry_failure(exc: ProvisioningError, attempt: int) -> None:
            del attempt
            if record and not exc.recorded:
                self._record(step_name, exc)

        outcome = self._retry_engine.retry(unit, label=step_name, on_failure=_on_retry_failure)
        if outcome.last_error is not None:
            outcome.last_error.recorded = record
        error.recorded = record
        return outcome

    def _report_failure(self, step_name: str, error: ProvisioningError, *, record: bool) -> ErrorCategory:
        category = classify_exit_code(error.code)
        if record:
            self._record(step_name, error)
        self._logger.log(
            logging.ERROR if record else logging.WARNING,
            "[ERROR] %s in %s (code %s): %s",
            describe_category(category),
            step_name,
            error.code,
            error.message,
        )
        return category

    def _record(self, step_name: str, error: ProvisioningError) -> None:
        self._ledger.record(
            ErrorRecord(
                step_name=step_name,
                error_code=error.code,
                message=error.message,
                attempted_command=error.command,
            )
        )

    def _failed_result(self, step_name: str, error: ProvisioningError) -> StepExecutionResult:
        return StepExecutionResult(
            step_name=step_name,
            status=StepStatus.FAILED,
            error_code=error.code,
            message=error.message,
            retries=self._runtime.retries,
        )

    def _report(self, summary: RunSummary) -> None:
        if summary.failed_steps:
            self._logger.warning("The following steps encountered errors:")
            for name in summary.failed_steps:
                self._logger.warning("  - %s", name)
            self._logger.warning("Please check %s for detailed error messages", summary.log_file)
            return
        if summary.log_persisted:
            self._logger.warning("All steps completed; recovered errors were logged to %s", summary.log_file)
        else:
            self._logger.info("No errors occurred during initialization")

    @staticmethod
    def _validate_steps(steps: Sequence[Step]) -> None:
        seen: set[str] = set()
        for step in steps:
            if step.name in seen:
                raise ValueError(f"Duplicate step name '{step.name}'.")
            seen.add(step.name)
