from __future__ import annotations

from host_init.core.enums import ErrorCategory


NETWORK_ERROR_CODES = frozenset({100, 101, 102})
MISSING_COMMAND_CODES = frozenset({126, 127})

_CATEGORY_BY_CODE: dict[int, ErrorCategory] = {
    1: ErrorCategory.GENERAL,
    **{code: ErrorCategory.NETWORK for code in NETWORK_ERROR_CODES},
    **{code: ErrorCategory.MISSING_DEPENDENCY for code in MISSING_COMMAND_CODES},
}

_CATEGORY_LABELS: dict[ErrorCategory, str] = {
    ErrorCategory.GENERAL: "General error",
    ErrorCategory.NETWORK: "Network error",
    ErrorCategory.MISSING_DEPENDENCY: "Required command not found",
    ErrorCategory.UNCLASSIFIED: "Unhandled error",
}


def classify_exit_code(code: int) -> ErrorCategory:
    return _CATEGORY_BY_CODE.get(code, ErrorCategory.UNCLASSIFIED)


def is_retryable(code: int) -> bool:
    return classify_exit_code(code) == ErrorCategory.NETWORK


def describe_category(category: ErrorCategory) -> str:
    return _CATEGORY_LABELS[category]
