"""
Retry Policy Unit Tests.

Back-off is recorded with a fake sleep, so no test actually waits.
"""
import asyncio

import pytest

from app.core.exceptions import FailureKind, ParseError, ProviderError
from app.services.generation.retry import RetryPolicy, is_retryable


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def scripted(*outcomes):
    """Coroutine factory that raises/returns the given outcomes in order."""
    calls = []

    async def attempt():
        outcome = outcomes[len(calls)]
        calls.append(outcome)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    attempt.calls = calls
    return attempt


def provider_error(kind):
    return ProviderError(f"stub failed: {kind.value}", kind, provider="stub/model")


class TestClassification:

    @pytest.mark.parametrize("kind", [
        FailureKind.QUOTA_EXCEEDED,
        FailureKind.RATE_LIMITED,
        FailureKind.TIMEOUT,
        FailureKind.UNAVAILABLE,
    ])
    def test_transient_kinds_are_retryable(self, kind):
        assert is_retryable(provider_error(kind))

    def test_parse_error_is_retryable(self):
        assert is_retryable(ParseError("bad json"))

    @pytest.mark.parametrize("kind", [FailureKind.AUTH_ERROR, FailureKind.UNKNOWN])
    def test_fatal_kinds(self, kind):
        assert not is_retryable(provider_error(kind))

    def test_foreign_exceptions_are_not_retried(self):
        assert not is_retryable(RuntimeError("boom"))


class TestRetryPolicy:

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self):
        sleep = RecordingSleep()
        attempt = scripted("ok")
        result = await RetryPolicy(max_attempts=3, base_delay=1.0, sleep=sleep).call(attempt)
        assert result == "ok"
        assert len(attempt.calls) == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_linear_backoff_between_attempts(self):
        sleep = RecordingSleep()
        attempt = scripted(
            provider_error(FailureKind.TIMEOUT),
            provider_error(FailureKind.UNAVAILABLE),
            provider_error(FailureKind.RATE_LIMITED),
            "ok",
        )
        policy = RetryPolicy(max_attempts=4, base_delay=1.5, sleep=sleep)
        assert await policy.call(attempt) == "ok"
        assert sleep.delays == pytest.approx([1.5, 3.0, 4.5])

    @pytest.mark.asyncio
    async def test_auth_error_is_not_retried(self):
        sleep = RecordingSleep()
        error = provider_error(FailureKind.AUTH_ERROR)
        attempt = scripted(error, "unreachable")
        with pytest.raises(ProviderError) as exc_info:
            await RetryPolicy(max_attempts=3, base_delay=1.0, sleep=sleep).call(attempt)
        assert exc_info.value is error
        assert len(attempt.calls) == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_parse_error_is_retried(self):
        attempt = scripted(ParseError("truncated"), "ok")
        policy = RetryPolicy(max_attempts=2, base_delay=0.0, sleep=RecordingSleep())
        assert await policy.call(attempt) == "ok"

    @pytest.mark.asyncio
    async def test_exhaustion_surfaces_last_error_unchanged(self):
        last = provider_error(FailureKind.QUOTA_EXCEEDED)
        attempt = scripted(provider_error(FailureKind.RATE_LIMITED), last)
        with pytest.raises(ProviderError) as exc_info:
            await RetryPolicy(max_attempts=2, base_delay=0.0, sleep=RecordingSleep()).call(attempt)
        assert exc_info.value is last
        assert exc_info.value.kind is FailureKind.QUOTA_EXCEEDED

    @pytest.mark.asyncio
    async def test_attempts_are_recorded(self):
        attempts = []
        attempt = scripted(provider_error(FailureKind.TIMEOUT), provider_error(FailureKind.TIMEOUT))
        policy = RetryPolicy(max_attempts=2, base_delay=2.0, sleep=RecordingSleep())
        with pytest.raises(ProviderError):
            await policy.call(attempt, label="stub", attempts=attempts)
        assert [a.attempt for a in attempts] == [1, 2]
        assert attempts[0].delay == pytest.approx(2.0)
        assert "Timeout" in attempts[1].error

    @pytest.mark.asyncio
    async def test_cancellation_stops_backoff(self):
        attempt = scripted(provider_error(FailureKind.UNAVAILABLE), "unreachable")
        policy = RetryPolicy(max_attempts=3, base_delay=30.0)
        task = asyncio.create_task(policy.call(attempt))
        await asyncio.sleep(0.05)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(attempt.calls) == 1

    def test_requires_at_least_one_attempt(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
