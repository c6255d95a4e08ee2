"""
Error types raised by the market generation pipeline.

Only ContextLengthExceededError triggers a smaller-budget retry; every other
backend or parsing failure ends the attempt sequence and leads to the
heuristic fallback decision.
"""

import re
from typing import Optional

# Backend-specific phrasing; matched on messages because the backend exposes no stable code.
CONTEXT_LENGTH_PATTERN = re.compile(
    r"context length|context_length_exceeded|maximum context", re.IGNORECASE
)


class MarketGenerationError(Exception):
    """Base class for all pipeline failures."""


class EmptyInputError(MarketGenerationError):
    """Raised when the chat text is blank."""


class ConfigurationError(MarketGenerationError):
    """Raised when a required configuration value (the API key) is missing."""


class BackendError(MarketGenerationError):
    """Base class for failures talking to the completions backend."""


class BackendTimeoutError(BackendError):
    """Raised when a single backend request exceeds its timeout."""


class BackendHttpError(BackendError):
    """
    Raised for non-success responses and transport failures.

    Attributes:
        status_code: HTTP status, or None for transport-level failures
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ContextLengthExceededError(BackendHttpError):
    """A BackendHttpError whose message says the request was too large."""


class EmptyBackendOutputError(BackendError):
    """Raised when the normalised reply content is empty."""


class InvalidJsonError(MarketGenerationError):
    """Raised when backend output contains no parseable JSON object."""


class SchemaValidationError(MarketGenerationError):
    """
    Raised when parsed JSON does not match the market ideas schema.

    Attributes:
        issues: (path, message) pairs, one per violated field
    """

    def __init__(self, issues: list[tuple[str, str]]):
        self.issues = list(issues)
        rendered = "; ".join(f"{path}: {message}" for path, message in self.issues)
        super().__init__(f"LLM response failed schema validation: {rendered}")


def is_context_length_error(error: BaseException) -> bool:
    """
    Decide whether a failure should be retried with a smaller input budget.

    Args:
        error: Any exception raised during an attempt

    Returns:
        True for ContextLengthExceededError or any message matching the overflow phrasing
    """
    if isinstance(error, ContextLengthExceededError):
        return True
    return bool(CONTEXT_LENGTH_PATTERN.search(str(error)))
