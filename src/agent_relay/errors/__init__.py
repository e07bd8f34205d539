"""Provider failure classification."""

from .failover import (
    FailoverError,
    FailoverReason,
    InvocationError,
    classify_error,
    should_fallback,
    should_retry,
)

__all__ = [
    "FailoverError",
    "FailoverReason",
    "InvocationError",
    "classify_error",
    "should_fallback",
    "should_retry",
]
