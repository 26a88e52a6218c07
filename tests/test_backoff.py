"""Tests for the retry policy."""

import threading

import pytest

from cluster_operator.backoff import DEFAULT_RETRY, RetryPolicy, retry
from cluster_operator.errors import RegistryUnavailable


class TestRetryPolicy:
    def test_default_policy(self):
        assert DEFAULT_RETRY.steps == 12
        assert DEFAULT_RETRY.duration == 5.0
        assert DEFAULT_RETRY.factor == 1.0
        assert DEFAULT_RETRY.jitter == 0.1

    def test_one_delay_between_each_attempt(self):
        assert len(list(DEFAULT_RETRY.delays())) == 11

    def test_delays_stay_within_jitter(self):
        for delay in DEFAULT_RETRY.delays():
            assert 4.5 <= delay <= 5.5

    def test_jitter_bounds(self):
        assert list(RetryPolicy(steps=2).delays(rng=lambda: 0.0)) == [pytest.approx(4.5)]
        assert list(RetryPolicy(steps=2).delays(rng=lambda: 1.0)) == [pytest.approx(5.5)]
        assert list(RetryPolicy(steps=2).delays(rng=lambda: 0.5)) == [pytest.approx(5.0)]

    def test_factor_and_cap(self):
        policy = RetryPolicy(steps=5, duration=1.0, factor=2.0, jitter=0.0, cap=3.0)
        assert list(policy.delays()) == [1.0, 2.0, 3.0, 3.0]


class TestRetry:
    def test_returns_first_success(self):
        sleeps = []
        assert retry(RetryPolicy(), lambda: "ok", sleep=sleeps.append) == "ok"
        assert sleeps == []

    def test_retries_until_success(self):
        outcomes = iter([RegistryUnavailable("down"), RegistryUnavailable("down"), "ok"])
        sleeps = []

        def attempt():
            outcome = next(outcomes)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        assert retry(RetryPolicy(jitter=0.0), attempt, sleep=sleeps.append) == "ok"
        assert sleeps == [5.0, 5.0]

    def test_exhaustion_raises_last_error(self):
        attempts = []
        sleeps = []

        def attempt():
            attempts.append(1)
            raise RegistryUnavailable(f"failure {len(attempts)}", status_code=500)

        with pytest.raises(RegistryUnavailable) as excinfo:
            retry(RetryPolicy(), attempt, sleep=sleeps.append)

        assert len(attempts) == 12
        assert len(sleeps) == 11
        assert "failure 12" in str(excinfo.value)
        assert excinfo.value.status_code == 500

    def test_other_errors_are_not_retried(self):
        attempts = []

        def attempt():
            attempts.append(1)
            raise ValueError("bug")

        with pytest.raises(ValueError):
            retry(RetryPolicy(), attempt, sleep=lambda _: None)
        assert len(attempts) == 1

    def test_stop_event_cancels_waits(self):
        stop_event = threading.Event()
        stop_event.set()
        attempts = []

        def attempt():
            attempts.append(1)
            raise RegistryUnavailable("down")

        with pytest.raises(RegistryUnavailable, match="cancelled"):
            retry(RetryPolicy(), attempt, stop_event=stop_event)
        assert len(attempts) == 1

    def test_invalid_steps(self):
        with pytest.raises(ValueError):
            retry(RetryPolicy(steps=0), lambda: "ok")
