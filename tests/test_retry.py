import pytest

from buildmaster.src.core.exceptions import LLMInferenceError, ValidationError
from buildmaster.src.utils.retry import backoff_delay_ms, is_transient, retry_async


class Flaky:
    def __init__(self, failures, error):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


async def test_transient_errors_are_retried():
    op = Flaky(2, LLMInferenceError("503"))
    assert await retry_async(op, max_attempts=3, base_delay_ms=0) == "ok"
    assert op.calls == 3


async def test_gives_up_after_max_attempts():
    op = Flaky(5, LLMInferenceError("503"))
    with pytest.raises(LLMInferenceError):
        await retry_async(op, max_attempts=3, base_delay_ms=0)
    assert op.calls == 3


async def test_validation_errors_are_not_retried():
    op = Flaky(1, ValidationError("bad input"))
    with pytest.raises(ValidationError):
        await retry_async(op, max_attempts=3, base_delay_ms=0)
    assert op.calls == 1


async def test_foreign_errors_are_not_retried():
    op = Flaky(1, KeyError("x"))
    with pytest.raises(KeyError):
        await retry_async(op, max_attempts=3, base_delay_ms=0)
    assert op.calls == 1


def test_backoff_grows_and_is_capped():
    assert 100 <= backoff_delay_ms(0, 100) <= 110
    assert 400 <= backoff_delay_ms(2, 100) <= 440
    assert backoff_delay_ms(20, 100) == 10_000


def test_is_transient():
    assert is_transient(LLMInferenceError("x"))
    assert not is_transient(ValidationError("x"))
    assert not is_transient(RuntimeError("x"))
