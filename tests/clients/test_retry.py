"""Tests for retry logic."""

import httpx
import pytest

from regis_client.clients.retry import RetryPolicy, request_with_retry


class ScriptedSend:
    """Returns scripted statuses or raises scripted errors, one per call."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0
        self.responses = []

    async def __call__(self) -> httpx.Response:
        outcome = self.outcomes[min(self.calls, len(self.outcomes) - 1)]
        self.calls += 1
        if isinstance(outcome, Exception):
            raise outcome
        response = httpx.Response(outcome)
        self.responses.append(response)
        return response


@pytest.fixture
def recorded_sleeps():
    delays = []

    async def sleep(seconds):
        delays.append(seconds)

    sleep.delays = delays
    return sleep


class TestRetryPolicy:
    """Test backoff computation."""

    def test_exponential_backoff_is_capped(self):
        """Test base*2^n growth capped at the maximum."""
        policy = RetryPolicy(base_delay_ms=1000, max_delay_ms=3000, jitter_ms=200)
        no_jitter = lambda low, high: 0
        assert policy.backoff_ms(1, no_jitter) == 2000
        assert policy.backoff_ms(2, no_jitter) == 3000
        assert policy.backoff_ms(5, no_jitter) == 3000

    def test_jitter_is_bounded(self):
        """Test that jitter is drawn from [0, jitter_ms]."""
        policy = RetryPolicy(jitter_ms=200)
        seen = []

        def rand(low, high):
            seen.append((low, high))
            return high

        assert policy.backoff_ms(1, rand) == 2200
        assert seen == [(0, 200)]

    def test_default_retryable_statuses(self):
        """Test the default set of retryable statuses."""
        assert RetryPolicy().retryable_statuses == frozenset({429, 502, 503, 504})


class TestRequestWithRetry:
    """Test the retry loop."""

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self, recorded_sleeps):
        """Test that an ok response returns without sleeping."""
        send = ScriptedSend(200)
        response = await request_with_retry(send, RetryPolicy(jitter_ms=0), sleep=recorded_sleeps)
        assert response.status_code == 200
        assert send.calls == 1
        assert recorded_sleeps.delays == []

    @pytest.mark.asyncio
    async def test_retries_rate_limit_then_succeeds(self, recorded_sleeps):
        """Test 429, 429, 200 resolves with two backoff sleeps."""
        send = ScriptedSend(429, 429, 200)
        response = await request_with_retry(send, RetryPolicy(jitter_ms=0), sleep=recorded_sleeps)
        assert response.status_code == 200
        assert send.calls == 3
        assert recorded_sleeps.delays == [2.0, 3.0]

    @pytest.mark.asyncio
    async def test_exhaustion_returns_last_response(self, recorded_sleeps):
        """Test that the last retryable response is returned unchanged."""
        send = ScriptedSend(503, 502, 429)
        response = await request_with_retry(send, RetryPolicy(jitter_ms=0), sleep=recorded_sleeps)
        assert response.status_code == 429
        assert send.calls == 3

    @pytest.mark.asyncio
    async def test_no_sleep_after_last_attempt(self, recorded_sleeps):
        """Test that only max_attempts - 1 sleeps happen."""
        send = ScriptedSend(504)
        await request_with_retry(send, RetryPolicy(max_attempts=4, jitter_ms=0), sleep=recorded_sleeps)
        assert send.calls == 4
        assert len(recorded_sleeps.delays) == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401, 404, 500])
    async def test_non_retryable_status_returns_immediately(self, recorded_sleeps, status):
        """Test that statuses outside the retryable set are not retried."""
        send = ScriptedSend(status, 200)
        response = await request_with_retry(send, RetryPolicy(jitter_ms=0), sleep=recorded_sleeps)
        assert response.status_code == status
        assert send.calls == 1

    @pytest.mark.asyncio
    async def test_transport_error_is_retried(self, recorded_sleeps):
        """Test that a connection failure is retried."""
        send = ScriptedSend(httpx.ConnectError("refused"), 200)
        response = await request_with_retry(send, RetryPolicy(jitter_ms=0), sleep=recorded_sleeps)
        assert response.status_code == 200
        assert send.calls == 2

    @pytest.mark.asyncio
    async def test_transport_error_reraised_after_exhaustion(self, recorded_sleeps):
        """Test that the last transport error propagates unchanged."""
        error = httpx.ReadError("reset")
        send = ScriptedSend(httpx.ConnectError("refused"), error)
        with pytest.raises(httpx.ReadError) as exc_info:
            await request_with_retry(send, RetryPolicy(jitter_ms=0), sleep=recorded_sleeps)
        assert exc_info.value is error
        assert send.calls == 3

    @pytest.mark.asyncio
    async def test_other_exceptions_propagate(self, recorded_sleeps):
        """Test that non-transport errors are not retried."""
        send = ScriptedSend(ValueError("bug"))
        with pytest.raises(ValueError):
            await request_with_retry(send, RetryPolicy(), sleep=recorded_sleeps)
        assert send.calls == 1

    @pytest.mark.asyncio
    async def test_on_attempt_counts_each_try(self, recorded_sleeps):
        """Test the attempt callback numbering."""
        attempts = []
        send = ScriptedSend(503, 200)
        await request_with_retry(
            send, RetryPolicy(jitter_ms=0), sleep=recorded_sleeps, on_attempt=attempts.append
        )
        assert attempts == [1, 2]

    @pytest.mark.asyncio
    async def test_discarded_responses_are_closed(self, recorded_sleeps):
        """Test that retried responses are closed before the next try."""
        send = ScriptedSend(503, 200)
        await request_with_retry(send, RetryPolicy(jitter_ms=0), sleep=recorded_sleeps)
        assert send.responses[0].is_closed
