import asyncio

import pytest

from mining_comps.retry import with_retry


def _flaky(failures, exc=ValueError):
    calls = []

    async def operation():
        calls.append(1)
        if len(calls) <= failures:
            raise exc("boom")
        return "ok"

    return operation, calls


def test_retries_until_success():
    operation, calls = _flaky(2)
    assert asyncio.run(with_retry(operation, max_attempts=3, base_delay=0)) == "ok"
    assert len(calls) == 3


def test_reraises_after_last_attempt():
    operation, calls = _flaky(5)
    with pytest.raises(ValueError):
        asyncio.run(with_retry(operation, max_attempts=2, base_delay=0))
    assert len(calls) == 2


def test_only_retries_listed_errors():
    operation, calls = _flaky(1, exc=KeyError)
    with pytest.raises(KeyError):
        asyncio.run(with_retry(operation, max_attempts=3, base_delay=0, retry_on=(ValueError,)))
    assert len(calls) == 1
