import pytest

from upload_service.common.retry import retry
from upload_service.infra.storage.client import (
    RejectedStorageError,
    TransientStorageError,
)


class Flaky:
    def __init__(self, failures, exc_type=TransientStorageError, result="ok"):
        self.failures = failures
        self.exc_type = exc_type
        self.result = result
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc_type(f"failure {self.calls}")
        return self.result


def test_returns_first_success_without_sleeping():
    sleeps = []
    op = Flaky(0)

    assert retry(3, 500, op, sleep=sleeps.append) == "ok"
    assert op.calls == 1
    assert sleeps == []


def test_sleeps_between_attempts_only():
    sleeps = []
    op = Flaky(2)

    assert retry(3, 250, op, sleep=sleeps.append) == "ok"
    assert op.calls == 3
    assert sleeps == [0.25, 0.25]


def test_reraises_last_error_when_budget_exhausted():
    sleeps = []
    op = Flaky(10)

    with pytest.raises(TransientStorageError, match="failure 3"):
        retry(3, 100, op, sleep=sleeps.append)
    assert op.calls == 3
    assert len(sleeps) == 2


def test_only_listed_exceptions_are_retried():
    sleeps = []
    op = Flaky(1, exc_type=RejectedStorageError)

    with pytest.raises(RejectedStorageError):
        retry(
            3,
            100,
            op,
            retry_on=(TransientStorageError,),
            sleep=sleeps.append,
        )
    assert op.calls == 1
    assert sleeps == []


def test_on_retry_hook_sees_each_retry():
    seen = []
    op = Flaky(2)

    retry(
        5,
        0,
        op,
        on_retry=lambda attempt, exc: seen.append((attempt, str(exc))),
        sleep=lambda _: None,
    )
    assert seen == [(1, "failure 1"), (2, "failure 2")]


def test_zero_delay_does_not_sleep():
    sleeps = []
    retry(3, 0, Flaky(2), sleep=sleeps.append)
    assert sleeps == []


def test_single_attempt_never_retries():
    op = Flaky(1)
    with pytest.raises(TransientStorageError):
        retry(1, 100, op, sleep=lambda _: None)
    assert op.calls == 1


def test_rejects_non_positive_attempts():
    with pytest.raises(ValueError):
        retry(0, 100, Flaky(0))
