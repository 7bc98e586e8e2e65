"""Tests for the model-call retry policy."""

from __future__ import annotations

import pytest

from ai_resilience.errors import ConfigurationError, ErrorClass, ModelCallFailedError
from ai_resilience.resilience import JitterStrategy, RetryConfig, RetryPolicy, with_retry
from tests.conftest import model_failure, no_sleep


class Flaky:
    """Operation that fails ``failures`` times before succeeding."""

    def __init__(self, failures: int, error: Exception | None = None) -> None:
        self.failures = failures
        self.error = error or model_failure()
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_defaults(self) -> None:
        config = RetryConfig()
        assert config.max_retries == 3
        assert config.initial_delay_ms == 100
        assert config.max_delay_ms == 2000
        assert config.exponential_base == 2.0
        assert config.jitter == JitterStrategy.NONE

    def test_jitter_from_string(self) -> None:
        assert RetryConfig(jitter="full").jitter == JitterStrategy.FULL  # type: ignore[arg-type]

    def test_invalid_values(self) -> None:
        with pytest.raises(ConfigurationError):
            RetryConfig(max_retries=-1)
        with pytest.raises(ConfigurationError):
            RetryConfig(initial_delay_ms=-5)


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_delays_double_from_initial(self) -> None:
        policy = RetryPolicy()
        delays = [policy.calculate_delay(n) for n in range(3)]
        assert delays == pytest.approx([0.1, 0.2, 0.4])

    def test_delay_is_capped(self) -> None:
        policy = RetryPolicy(RetryConfig(max_retries=10))
        assert policy.calculate_delay(8) == pytest.approx(2.0)

    def test_full_jitter_stays_within_bound(self) -> None:
        policy = RetryPolicy(RetryConfig(jitter=JitterStrategy.FULL))
        for _ in range(20):
            assert 0.0 <= policy.calculate_delay(2) <= 0.4

    def test_should_retry(self) -> None:
        policy = RetryPolicy(RetryConfig(max_retries=2))
        error = model_failure()

        assert policy.should_retry(error, 0)
        assert policy.should_retry(error, 1)
        assert not policy.should_retry(error, 2)
        assert not policy.should_retry(ValueError("bug"), 0)

    def test_should_retry_respects_error_classes(self) -> None:
        policy = RetryPolicy(RetryConfig(retry_on_error_class={ErrorClass.TIMEOUT}))
        timeout = ModelCallFailedError("slow", error_class=ErrorClass.TIMEOUT)

        assert policy.should_retry(timeout, 0)
        assert not policy.should_retry(model_failure(), 0)

    @pytest.mark.asyncio
    async def test_execute_succeeds_after_retries(self) -> None:
        sleeps: list[float] = []

        async def record_sleep(delay: float) -> None:
            sleeps.append(delay)

        operation = Flaky(failures=2)
        policy = RetryPolicy(sleep=record_sleep)

        result = await policy.execute(operation)

        assert result.success
        assert result.value == "ok"
        assert result.attempts == 3
        assert sleeps == pytest.approx([0.1, 0.2])
        assert result.total_delay_ms == pytest.approx(300.0)

    @pytest.mark.asyncio
    async def test_execute_gives_up_after_max_retries(self) -> None:
        operation = Flaky(failures=10)
        retries: list[int] = []
        policy = RetryPolicy(sleep=no_sleep)

        result = await policy.execute(
            operation, on_retry=lambda attempt, error, delay: retries.append(attempt)
        )

        assert not result.success
        assert isinstance(result.error, ModelCallFailedError)
        assert result.attempts == 4
        assert operation.calls == 4
        assert retries == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_unclassified_errors_are_not_retried(self) -> None:
        operation = Flaky(failures=1, error=KeyError("bug"))

        result = await RetryPolicy(sleep=no_sleep).execute(operation)

        assert not result.success
        assert result.attempts == 1

    @pytest.mark.asyncio
    async def test_with_retry_raises_last_error(self) -> None:
        with pytest.raises(ModelCallFailedError):
            await with_retry(Flaky(failures=10), RetryConfig(max_retries=0))
        assert await with_retry(Flaky(failures=0)) == "ok"
