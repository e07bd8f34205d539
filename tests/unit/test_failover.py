"""Tests for provider failure classification."""

import pytest

from agent_relay.errors import (
    FailoverReason,
    InvocationError,
    classify_error,
    should_fallback,
    should_retry,
)
from agent_relay.errors.failover import build_profile_key
from agent_relay.llm.base import ProviderError, ProviderTimeoutError


class TestClassifyError:
    @pytest.mark.parametrize("status,reason", [
        (401, FailoverReason.AUTH),
        (403, FailoverReason.AUTH),
        (402, FailoverReason.BILLING),
        (429, FailoverReason.RATE_LIMIT),
        (408, FailoverReason.TIMEOUT),
        (400, FailoverReason.FORMAT),
        (500, FailoverReason.UNKNOWN),
    ])
    def test_status_codes(self, status, reason):
        failure = classify_error(ProviderError("failed", "anthropic", status_code=status), "anthropic")

        assert failure.reason == reason
        assert failure.status_code == status
        assert failure.provider == "anthropic"

    @pytest.mark.parametrize("message", [
        "request timed out",
        "connect ETIMEDOUT 10.0.0.1:443",
        "read ECONNRESET",
        "Connection refused by host",
    ])
    def test_timeout_messages(self, message):
        assert classify_error(RuntimeError(message), "ollama").reason == FailoverReason.TIMEOUT

    @pytest.mark.parametrize("message,reason", [
        ("401 Unauthorized", FailoverReason.AUTH),
        ("Invalid API key provided", FailoverReason.AUTH),
        ("Your credit balance is too low", FailoverReason.BILLING),
        ("Rate limit reached", FailoverReason.RATE_LIMIT),
        ("Too Many Requests", FailoverReason.RATE_LIMIT),
        ("something odd", FailoverReason.UNKNOWN),
    ])
    def test_message_fallbacks_without_status(self, message, reason):
        assert classify_error(RuntimeError(message), "anthropic").reason == reason

    def test_status_beats_message(self):
        error = ProviderError("rate limit exceeded", "openai", status_code=500)

        assert classify_error(error, "openai").reason == FailoverReason.UNKNOWN

    def test_provider_timeout_error(self):
        failure = classify_error(ProviderTimeoutError("Agent timed out after 5s", "anthropic"), "anthropic")

        assert failure.reason == FailoverReason.TIMEOUT
        assert failure.retryable is True

    def test_empty_message_uses_class_name(self):
        failure = classify_error(ValueError(), "anthropic")

        assert failure.message == "ValueError"


class TestPolicy:
    @pytest.mark.parametrize("reason,retry,fallback", [
        (FailoverReason.AUTH, False, False),
        (FailoverReason.BILLING, False, False),
        (FailoverReason.RATE_LIMIT, False, True),
        (FailoverReason.TIMEOUT, False, True),
        (FailoverReason.FORMAT, True, False),
        (FailoverReason.UNKNOWN, False, False),
    ])
    def test_actions(self, reason, retry, fallback):
        status = {
            FailoverReason.AUTH: 401,
            FailoverReason.BILLING: 402,
            FailoverReason.RATE_LIMIT: 429,
            FailoverReason.TIMEOUT: 408,
            FailoverReason.FORMAT: 400,
            FailoverReason.UNKNOWN: 500,
        }[reason]
        failure = classify_error(ProviderError("x", "anthropic", status_code=status), "anthropic")

        assert should_retry(failure) is retry
        assert should_fallback(failure) is fallback

    def test_profile_key(self):
        assert build_profile_key("anthropic", "sonnet") == "anthropic:default:local:sonnet"
        assert build_profile_key("openai", "gpt-5.2", "work", "eu") == "openai:work:eu:gpt-5.2"

    def test_invocation_error_message(self):
        failure = classify_error(ProviderError("bad key", "anthropic", status_code=401), "anthropic")

        error = InvocationError(failure, "coder")

        assert error.agent_id == "coder"
        assert "auth" in str(error)
