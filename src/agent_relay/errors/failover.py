"""Provider failure classification and retry/fallback policy.

    auth       -> abort, credentials will not fix themselves
    billing    -> abort, needs a human
    rate_limit -> abort locally, fallback-eligible
    timeout    -> abort locally, fallback-eligible
    format     -> retry the same call once
    unknown    -> abort

Profile keys have the shape ``provider:account:region:model``.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

FORMAT_MAX_RETRIES = 1

_TIMEOUT_PATTERN = re.compile(
    r"timeout|timed out|ETIMEDOUT|ECONNRESET|ECONNREFUSED|ENOTFOUND|connection (reset|refused)",
    re.IGNORECASE,
)
_AUTH_PATTERN = re.compile(r"unauthorized|invalid api key|authentication", re.IGNORECASE)
_BILLING_PATTERN = re.compile(r"billing|credit balance|payment required", re.IGNORECASE)
_RATE_LIMIT_PATTERN = re.compile(r"rate limit|too many requests", re.IGNORECASE)


class FailoverReason(str, Enum):
    AUTH = "auth"
    BILLING = "billing"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    FORMAT = "format"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class FailoverError:
    reason: FailoverReason
    provider: str
    message: str
    retryable: bool
    status_code: Optional[int] = None


class InvocationError(Exception):
    """Raised by the invoker once the retry policy is exhausted."""

    def __init__(self, failure: FailoverError, agent_id: str = ""):
        self.failure = failure
        self.agent_id = agent_id
        super().__init__(
            f"{failure.provider} invocation failed ({failure.reason.value}): {failure.message}"
        )


def build_profile_key(
    provider: str, model: str, account: str = "default", region: str = "local"
) -> str:
    return f"{provider}:{account}:{region}:{model}"


def _status_of(error: BaseException) -> Optional[int]:
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


def classify_error(error: BaseException, provider: str) -> FailoverError:
    """Map an invocation failure to a FailoverReason.

    HTTP-like status codes win; message patterns are the fallback.
    """
    status = _status_of(error)
    msg = str(error) or error.__class__.__name__

    def result(reason: FailoverReason, retryable: bool) -> FailoverError:
        return FailoverError(
            reason=reason, provider=provider, message=msg,
            retryable=retryable, status_code=status,
        )

    if status in (401, 403):
        return result(FailoverReason.AUTH, False)
    if status == 402:
        return result(FailoverReason.BILLING, False)
    if status == 429:
        return result(FailoverReason.RATE_LIMIT, True)
    if status == 408 or _TIMEOUT_PATTERN.search(msg):
        return result(FailoverReason.TIMEOUT, True)
    if status == 400:
        return result(FailoverReason.FORMAT, True)

    if status is None:
        if _AUTH_PATTERN.search(msg):
            return result(FailoverReason.AUTH, False)
        if _BILLING_PATTERN.search(msg):
            return result(FailoverReason.BILLING, False)
        if _RATE_LIMIT_PATTERN.search(msg):
            return result(FailoverReason.RATE_LIMIT, True)

    return result(FailoverReason.UNKNOWN, False)


def should_fallback(failure: FailoverError) -> bool:
    return failure.reason in (FailoverReason.RATE_LIMIT, FailoverReason.TIMEOUT)


def should_retry(failure: FailoverError) -> bool:
    return failure.reason == FailoverReason.FORMAT
