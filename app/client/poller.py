"""
Client-side bridge from Safaricom's webhook to a waiting customer.

The browser (or CLI) never sees the callback, so it asks the status endpoint
on a fixed interval until the transaction is terminal or the attempt budget
runs out. No poll starts and no sleep runs past ``max_attempts * interval_seconds``
from the start of poll(); only a request already in flight can overrun it.
"""
import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from app.services.exceptions import PaymentTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 3.0
DEFAULT_MAX_ATTEMPTS = 30

TIMEOUT_MESSAGE = "Payment timeout. Please check your phone for an M-Pesa message, or try again."
UNVERIFIED_MESSAGE = "Unable to verify payment status. Please contact support."


class PollOutcome(str, enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    STOPPED = "stopped"


@dataclass
class PollResult:
    outcome: PollOutcome
    message: str
    attempts: int
    transaction_id: Optional[str] = None

    def raise_for_outcome(self) -> None:
        if self.outcome is PollOutcome.TIMEOUT:
            raise PaymentTimeoutError(self.message)


class StatusPoller:
    """
    Polls ``fetch_status(checkout_request_id)`` until a terminal status.

    ``fetch_status`` returns the status endpoint's JSON body. Any exception it
    raises counts as a spent attempt. ``sleep`` receives the cancel event so a
    close() wakes the waiter immediately.
    """

    def __init__(
        self,
        fetch_status: Callable[[str], dict],
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: Optional[Callable[[float, threading.Event], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.fetch_status = fetch_status
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts
        self._sleep = sleep or _wait_on_event
        self._clock = clock

    @property
    def budget_seconds(self) -> float:
        return self.max_attempts * self.interval_seconds

    def _timeout(self, checkout_request_id: str, attempts: int, started: float, saw_response: bool) -> PollResult:
        logger.info(
            "Status polling gave up on %s after %s attempts (%.1fs)",
            checkout_request_id,
            attempts,
            self._clock() - started,
        )
        return PollResult(PollOutcome.TIMEOUT, TIMEOUT_MESSAGE if saw_response else UNVERIFIED_MESSAGE, attempts)

    def poll(self, checkout_request_id: str, cancel_event: Optional[threading.Event] = None) -> PollResult:
        cancel_event = cancel_event or threading.Event()
        saw_response = False
        started = self._clock()
        # Slow responses eat into the budget too; the wait never exceeds it.
        deadline = started + self.budget_seconds

        for attempt in range(1, self.max_attempts + 1):
            if cancel_event.is_set():
                return PollResult(PollOutcome.STOPPED, "Payment dialog closed.", attempt - 1)

            try:
                data = self.fetch_status(checkout_request_id)
                if not isinstance(data, dict):
                    raise ValueError(f"unexpected status payload {type(data).__name__}")
                status = str(data.get("status") or "").lower()
            except Exception as exc:
                logger.warning("Status poll %s/%s failed for %s: %s", attempt, self.max_attempts, checkout_request_id, exc)
            else:
                saw_response = True
                if status == "completed":
                    return PollResult(
                        PollOutcome.COMPLETED,
                        data.get("message") or "Payment successful! Your order has been confirmed.",
                        attempt,
                        transaction_id=data.get("transactionId"),
                    )
                if status in {"failed", "cancelled"}:
                    return PollResult(
                        PollOutcome.FAILED,
                        data.get("message") or "Payment was cancelled or failed.",
                        attempt,
                    )

            remaining = deadline - self._clock()
            if attempt >= self.max_attempts or remaining <= 0:
                return self._timeout(checkout_request_id, attempt, started, saw_response)
            self._sleep(min(self.interval_seconds, remaining), cancel_event)

        return self._timeout(checkout_request_id, self.max_attempts, started, saw_response)


def _wait_on_event(seconds: float, cancel_event: threading.Event) -> None:
    cancel_event.wait(seconds)
