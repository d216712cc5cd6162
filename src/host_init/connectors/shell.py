from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TypeVar

from host_init.core.engine import StepRuntime
from host_init.core.errors import CommandFailedError
from host_init.core.models import UnitOfWork


T = TypeVar("T")

NETWORK_TIMEOUT_CODE = 100
COMMAND_TIMEOUT_CODE = 124
NOT_EXECUTABLE_CODE = 126
COMMAND_NOT_FOUND_CODE = 127


@dataclass(slots=True)
class CommandResult:
    args: list[str]
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""

    @property
    def command(self) -> str:
        return shlex.join(self.args)


class CommandRunner:
    """Thin subprocess wrapper; failures surface as CommandFailedError with the literal command."""

    def __init__(
        self,
        *,
        dry_run: bool = False,
        timeout: float = 300,
        logger: logging.Logger | None = None,
    ) -> None:
        self._dry_run = dry_run
        self._timeout = timeout
        self._logger = logger or logging.getLogger(__name__)

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    def run(
        self,
        args: Sequence[str],
        *,
        input_text: str | None = None,
        check: bool = True,
        timeout: float | None = None,
        capture: bool = True,
        network: bool = False,
    ) -> CommandResult:
        argv = [str(arg) for arg in args]
        command = shlex.join(argv)
        if self._dry_run:
            self._logger.info("Dry-run command: %s", command)
            return CommandResult(args=argv)

        self._logger.debug("Running command: %s", command)
        effective_timeout = timeout or self._timeout
        try:
            completed = subprocess.run(
                argv,
                input=input_text,
                capture_output=capture,
                text=True,
                timeout=effective_timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise CommandFailedError(COMMAND_NOT_FOUND_CODE, command, f"{argv[0]}: command not found") from exc
        except PermissionError as exc:
            raise CommandFailedError(NOT_EXECUTABLE_CODE, command, f"{argv[0]}: permission denied") from exc
        except subprocess.TimeoutExpired as exc:
            code = NETWORK_TIMEOUT_CODE if network else COMMAND_TIMEOUT_CODE
            raise CommandFailedError(code, command, f"timed out after {effective_timeout:.0f}s") from exc

        result = CommandResult(
            args=argv,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        if check and result.returncode != 0:
            raise CommandFailedError(result.returncode, command, result.stderr)
        return result

    def command_exists(self, name: str) -> bool:
        return shutil.which(name) is not None


class StepShell:
    """Routes commands through the step runtime so failures are logged and network errors retried."""

    def __init__(self, runner: CommandRunner, runtime: StepRuntime) -> None:
        self._runner = runner
        self._runtime = runtime

    @property
    def dry_run(self) -> bool:
        return self._runner.dry_run

    def run(self, args: Sequence[str], **kwargs: object) -> CommandResult:
        argv = [str(arg) for arg in args]
        unit = UnitOfWork(command=shlex.join(argv), invoke=lambda: self._runner.run(argv, **kwargs))
        return self._runtime.attempt(unit)

    def call(self, command: str, func: Callable[[], T]) -> T:
        return self._runtime.attempt(UnitOfWork(command=command, invoke=func))

    @contextmanager
    def tolerated(self) -> Iterator[None]:
        with self._runtime.unrecorded():
            yield

    def command_exists(self, name: str) -> bool:
        return self._runner.command_exists(name)
