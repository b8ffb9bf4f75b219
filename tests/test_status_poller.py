import threading

import pytest

from app.client.poller import TIMEOUT_MESSAGE, UNVERIFIED_MESSAGE, PollOutcome, StatusPoller
from app.services.exceptions import PaymentTimeoutError


class _Clock:
    def __init__(self):
        self.slept = []

    def sleep(self, seconds, cancel_event):
        self.slept.append(seconds)


def _scripted(responses):
    calls = []

    def fetch(checkout_request_id):
        calls.append(checkout_request_id)
        item = responses[min(len(calls), len(responses)) - 1]
        if isinstance(item, Exception):
            raise item
        return item

    return fetch, calls


def test_poller_reports_completed_with_receipt():
    fetch, calls = _scripted(
        [
            {"status": "pending"},
            {"status": "pending"},
            {"status": "completed", "transactionId": "QGH7X8Y9Z0", "message": "Payment successful!"},
        ]
    )
    clock = _Clock()
    result = StatusPoller(fetch, interval_seconds=3, max_attempts=30, sleep=clock.sleep).poll("ws_CO_1")
    assert result.outcome is PollOutcome.COMPLETED
    assert result.transaction_id == "QGH7X8Y9Z0"
    assert result.attempts == 3
    assert calls == ["ws_CO_1"] * 3
    assert clock.slept == [3, 3]


def test_poller_reports_failure_with_stored_description():
    fetch, _ = _scripted([{"status": "cancelled", "message": "Request cancelled by user"}])
    result = StatusPoller(fetch, sleep=_Clock().sleep).poll("ws_CO_1")
    assert result.outcome is PollOutcome.FAILED
    assert result.message == "Request cancelled by user"
    result.raise_for_outcome()


def test_poller_times_out_within_attempt_budget():
    fetch, calls = _scripted([{"status": "pending"}])
    clock = _Clock()
    poller = StatusPoller(fetch, interval_seconds=3, max_attempts=30, sleep=clock.sleep)
    result = poller.poll("ws_CO_1")
    assert result.outcome is PollOutcome.TIMEOUT
    assert result.message == TIMEOUT_MESSAGE
    assert len(calls) == 30
    assert sum(clock.slept) <= poller.budget_seconds == 90
    with pytest.raises(PaymentTimeoutError) as exc:
        result.raise_for_outcome()
    assert exc.value.status_code == 408


def test_transport_errors_count_as_attempts():
    fetch, calls = _scripted([RuntimeError("connection reset")])
    result = StatusPoller(fetch, max_attempts=4, sleep=_Clock().sleep).poll("ws_CO_1")
    assert result.outcome is PollOutcome.TIMEOUT
    assert result.message == UNVERIFIED_MESSAGE
    assert len(calls) == 4


def test_poller_stops_when_cancelled():
    cancel = threading.Event()
    fetch, calls = _scripted([{"status": "pending"}])

    def sleep(seconds, event):
        if len(calls) == 2:
            cancel.set()

    result = StatusPoller(fetch, max_attempts=30, sleep=sleep).poll("ws_CO_1", cancel)
    assert result.outcome is PollOutcome.STOPPED
    assert len(calls) == 2


def test_poller_requires_positive_attempts():
    with pytest.raises(ValueError):
        StatusPoller(lambda _: {}, max_attempts=0)


class _FakeMonotonic:
    def __init__(self):
        self.now = 100.0
        self.slept = []

    def __call__(self):
        return self.now

    def sleep(self, seconds, cancel_event):
        self.slept.append(seconds)
        self.now += seconds


def test_slow_status_endpoint_cannot_stretch_the_wait():
    clock = _FakeMonotonic()
    calls = []

    def slow_fetch(checkout_request_id):
        calls.append(checkout_request_id)
        clock.now += 2.0
        return {"status": "pending"}

    poller = StatusPoller(slow_fetch, interval_seconds=1.0, max_attempts=3, sleep=clock.sleep, clock=clock)
    result = poller.poll("ws_CO_1")

    assert result.outcome is PollOutcome.TIMEOUT
    assert result.message == TIMEOUT_MESSAGE
    assert len(calls) == 2
    assert clock.slept == [1.0]
    assert clock.now - 100.0 <= poller.budget_seconds + 2.0


def test_sleep_is_capped_at_remaining_budget():
    clock = _FakeMonotonic()

    def fetch(checkout_request_id):
        clock.now += 4.0
        return {"status": "pending"}

    poller = StatusPoller(fetch, interval_seconds=3.0, max_attempts=2, sleep=clock.sleep, clock=clock)
    result = poller.poll("ws_CO_1")
    assert result.outcome is PollOutcome.TIMEOUT
    assert clock.slept == [2.0]
    assert clock.now - 100.0 == pytest.approx(10.0)


def test_non_object_status_body_counts_as_failed_attempt():
    fetch, calls = _scripted(
        [
            ["<html>bad gateway</html>"],
            {"status": "completed", "transactionId": "QGH7X8Y9Z0"},
        ]
    )
    result = StatusPoller(fetch, sleep=_Clock().sleep).poll("ws_CO_1")
    assert result.outcome is PollOutcome.COMPLETED
    assert result.attempts == 2
    assert len(calls) == 2
