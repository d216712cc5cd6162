from __future__ import annotations


GENERAL_ERROR_CODE = 1


class ProvisioningError(Exception):
    """Base provisioning error carrying an exit code and the failing command."""

    def __init__(self, code: int, message: str, command: str = "") -> None:
        self.code = code
        self.command = command
        self.recorded = False
        super().__init__(message)

    @property
    def message(self) -> str:
        return str(self)


class CommandFailedError(ProvisioningError):
    """A shell command exited with a non-zero status."""

    def __init__(self, code: int, command: str, stderr: str = "") -> None:
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else f"exit status {code}"
        super().__init__(code, f"Command failed: {detail}", command)


class StepError(ProvisioningError):
    def __init__(self, message: str, code: int = GENERAL_ERROR_CODE, command: str = "") -> None:
        super().__init__(code, message, command)


class PreconditionError(ProvisioningError):
    def __init__(self, message: str) -> None:
        super().__init__(GENERAL_ERROR_CODE, message)


class ConfigError(ValueError):
    pass
