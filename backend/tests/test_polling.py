from __future__ import annotations

import asyncio

import pytest

from conftest import RecordingSleep
from ifrench.errors import PollingTimeoutError, TransportError
from tenacity import RetryError

from ifrench.polling import RetryPolicy, poll_until_done


def _fetcher(done_on: int):
    calls = {"n": 0}

    async def fetch():
        calls["n"] += 1
        return {"done": calls["n"] >= done_on, "attempt": calls["n"]}

    return fetch, calls


@pytest.mark.parametrize("k", [1, 2, 17, 30])
def test_returns_on_the_attempt_that_reports_done(k: int, recording_sleep: RecordingSleep):
    fetch, calls = _fetcher(k)
    status = asyncio.run(poll_until_done(fetch, RetryPolicy(), sleep=recording_sleep))
    assert status["attempt"] == k
    assert calls["n"] == k
    assert recording_sleep.delays == [2.0] * k


def test_exhaustion_raises_after_exactly_max_attempts(recording_sleep: RecordingSleep):
    fetch, calls = _fetcher(10_000)
    with pytest.raises(PollingTimeoutError) as info:
        asyncio.run(poll_until_done(fetch, RetryPolicy(), sleep=recording_sleep))
    assert calls["n"] == 30
    assert info.value.attempts == 30
    assert isinstance(info.value, TimeoutError)
    assert recording_sleep.delays == [2.0] * 30
    assert isinstance(info.value.__cause__, RetryError)


def test_fetch_errors_are_not_retried(recording_sleep: RecordingSleep):
    calls = {"n": 0}

    async def fetch():
        calls["n"] += 1
        raise TransportError("boom", status_code=500)

    with pytest.raises(TransportError):
        asyncio.run(poll_until_done(fetch, RetryPolicy(), sleep=recording_sleep))
    assert calls["n"] == 1


def test_done_must_be_true_not_truthy(recording_sleep: RecordingSleep):
    responses = iter([{"done": "yes"}, {}, {"done": True, "n": 3}])

    async def fetch():
        return next(responses)

    status = asyncio.run(poll_until_done(fetch, RetryPolicy(max_attempts=5), sleep=recording_sleep))
    assert status["n"] == 3


def test_exponential_backoff_doubles_each_wait(recording_sleep: RecordingSleep):
    fetch, calls = _fetcher(10_000)
    policy = RetryPolicy(max_attempts=4, interval=0.5, backoff="exponential")
    with pytest.raises(PollingTimeoutError):
        asyncio.run(poll_until_done(fetch, policy, sleep=recording_sleep))
    assert calls["n"] == 4
    assert recording_sleep.delays == [0.5, 1.0, 2.0, 4.0]


def test_unknown_backoff_name_is_rejected():
    with pytest.raises(ValueError):
        RetryPolicy(backoff="random")
