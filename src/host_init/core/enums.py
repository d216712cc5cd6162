from enum import StrEnum


class StepStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"


class ErrorCategory(StrEnum):
    GENERAL = "general"
    NETWORK = "network"
    MISSING_DEPENDENCY = "missing_dependency"
    UNCLASSIFIED = "unclassified"


class BackoffStrategy(StrEnum):
    EXPONENTIAL = "exponential"
    LINEAR = "linear"


class DistroFamily(StrEnum):
    DEBIAN = "debian"
    UBUNTU = "ubuntu"
    OTHER = "other"
