# tests/test_resilience.py
# Retry decorator

import pytest

from resilience import retry_with_backoff


class TestRetryWithBackoff:
    @pytest.mark.asyncio
    async def test_returns_after_transient_failures(self):
        calls = []

        @retry_with_backoff(max_retries=3, base_delay=0, exceptions=(ConnectionError,))
        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("down")
            return "ok"

        assert await flaky() == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_reraises_after_last_attempt(self):
        calls = []

        @retry_with_backoff(max_retries=2, base_delay=0, exceptions=(ConnectionError,))
        async def always_down():
            calls.append(1)
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            await always_down()
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_unlisted_exception_is_not_retried(self):
        calls = []

        @retry_with_backoff(max_retries=5, base_delay=0, exceptions=(ConnectionError,))
        async def broken():
            calls.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            await broken()
        assert len(calls) == 1
