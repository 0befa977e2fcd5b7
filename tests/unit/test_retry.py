"""Tests for backoff and retry utilities."""

import pytest

from market_stream.services.streamer.src.utils.retry import ExponentialBackoff, exponential_backoff
from fakes import RecordingSleep


@pytest.mark.unit
class TestExponentialBackoff:
    """Test the reconnect backoff schedule."""

    def test_doubles_and_caps(self):
        backoff = ExponentialBackoff(initial=1.0, maximum=30.0)
        delays = [backoff.current]
        for _ in range(6):
            delays.append(backoff.increase())

        assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]

    def test_reset_returns_to_floor(self):
        backoff = ExponentialBackoff(initial=1.0, maximum=30.0)
        for _ in range(10):
            backoff.increase()

        backoff.reset()

        assert backoff.current == 1.0

    @pytest.mark.parametrize('kwargs', [
        {'initial': 0},
        {'initial': 5, 'maximum': 1},
        {'multiplier': 0.5},
    ])
    def test_rejects_invalid_bounds(self, kwargs):
        with pytest.raises(ValueError):
            ExponentialBackoff(**kwargs)


@pytest.mark.unit
class TestExponentialBackoffRetry:
    """Test the retry helper used at startup."""

    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self):
        sleep = RecordingSleep()
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("not yet")
            return "ok"

        result = await exponential_backoff(
            flaky, max_attempts=5, initial_delay=1.0, jitter=False, sleep=sleep
        )

        assert result == "ok"
        assert len(attempts) == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_raises_last_error_when_exhausted(self):
        sleep = RecordingSleep()

        async def always_fails():
            raise ConnectionError("down")

        with pytest.raises(ConnectionError, match="down"):
            await exponential_backoff(
                always_fails, max_attempts=3, initial_delay=1.0, max_delay=1.5, jitter=False, sleep=sleep
            )

        assert sleep.delays == [1.0, 1.5]

    @pytest.mark.asyncio
    async def test_does_not_retry_unlisted_exceptions(self):
        sleep = RecordingSleep()

        def broken():
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await exponential_backoff(broken, exceptions=(ConnectionError,), sleep=sleep)

        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_sync_function(self):
        assert await exponential_backoff(lambda: 42, sleep=RecordingSleep()) == 42

    @pytest.mark.asyncio
    async def test_jitter_stays_within_bounds(self):
        sleep = RecordingSleep()

        def always_fails():
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            await exponential_backoff(always_fails, max_attempts=2, initial_delay=4.0, jitter=True, sleep=sleep)

        assert 3.0 <= sleep.delays[0] <= 5.0
