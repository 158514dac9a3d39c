"""
Unit Tests for bounded retry.
"""

import pytest

from deployer.errors import ConflictError, ProviderError
from deployer.retry import retry

from tests.conftest import async_test


class Flaky:
    """Fails with the queued errors, then returns "done"."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "done"


def on_conflict(error, attempt):
    return isinstance(error, ConflictError)


class TestRetry:

    @async_test
    async def test_first_attempt_succeeds(self):
        operation = Flaky()
        assert await retry(operation, 5, on_conflict) == "done"
        assert operation.calls == 1

    @async_test
    async def test_retries_until_success(self):
        operation = Flaky(*[ConflictError("raced") for _ in range(4)])
        assert await retry(operation, 5, on_conflict) == "done"
        assert operation.calls == 5

    @async_test
    async def test_last_error_is_raised(self):
        errors = [ConflictError(f"raced {i}") for i in range(5)]
        operation = Flaky(*errors)

        with pytest.raises(ConflictError) as exc:
            await retry(operation, 5, on_conflict)

        assert exc.value is errors[-1]
        assert operation.calls == 5

    @async_test
    async def test_non_retryable_error_is_raised_immediately(self):
        operation = Flaky(ProviderError("boom"))
        with pytest.raises(ProviderError):
            await retry(operation, 5, on_conflict)
        assert operation.calls == 1

    @async_test
    async def test_should_retry_sees_attempt_numbers(self):
        seen = []

        def record(error, attempt):
            seen.append(attempt)
            return True

        with pytest.raises(ConflictError):
            await retry(Flaky(*[ConflictError("x") for _ in range(3)]), 3, record)

        # the last attempt is not offered for retry
        assert seen == [1, 2]

    @async_test
    async def test_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            await retry(Flaky(), 0, on_conflict)
