import enum
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from app.client.api import CheckoutApiError
from app.client.poller import PollOutcome, StatusPoller
from app.services.exceptions import PaymentValidationError
from app.services.payments import normalize_phone_number

logger = logging.getLogger(__name__)

AUTO_DISMISS_SECONDS = 3.0

PROCESSING_MESSAGE = "Check your phone and enter your M-Pesa PIN to complete the payment."
SUCCESS_MESSAGE = "Payment successful! Your order has been confirmed."
GENERIC_FAILURE_MESSAGE = "Payment could not be started. Please try again."


class DialogState(str, enum.Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class PaymentAttemptView:
    state: DialogState = DialogState.IDLE
    message: str = ""
    transaction_id: Optional[str] = None
    checkout_request_id: Optional[str] = None


class PaymentDialog:
    """
    Phone-entry checkout dialog for one product.

    submit() blocks while the poller runs; close() may be called from another
    thread and stops polling after the current request. Closing never cancels
    the prompt on the customer's phone, so a later callback still produces
    the order.
    """

    def __init__(
        self,
        api,
        *,
        product_name: str,
        amount: int,
        poller: Optional[StatusPoller] = None,
        on_change: Optional[Callable[[PaymentAttemptView], None]] = None,
        on_dismiss: Optional[Callable[[], None]] = None,
        auto_dismiss_seconds: float = AUTO_DISMISS_SECONDS,
        timer_factory=threading.Timer,
    ):
        self.api = api
        self.product_name = product_name
        self.amount = amount
        self.poller = poller or StatusPoller(api.payment_status)
        self.on_change = on_change
        self.on_dismiss = on_dismiss
        self.auto_dismiss_seconds = auto_dismiss_seconds
        self._timer_factory = timer_factory
        self._dismiss_timer = None
        self._cancel = threading.Event()
        # Reentrant: on_change callbacks may close the dialog.
        self._lock = threading.RLock()
        self.closed = False
        self.view = PaymentAttemptView()

    def _render(self, state: DialogState, message: str, **fields) -> PaymentAttemptView:
        self.view = PaymentAttemptView(state=state, message=message, **fields)
        if self.on_change:
            self.on_change(self.view)
        return self.view

    def submit(self, phone_number: str) -> PaymentAttemptView:
        with self._lock:
            if self.closed:
                raise RuntimeError("Payment dialog is closed")
            if self.view.state is DialogState.PROCESSING:
                raise RuntimeError("A payment is already in progress")
            if self.view.state is DialogState.SUCCESS:
                raise RuntimeError("Payment already completed")
            self._render(DialogState.PROCESSING, PROCESSING_MESSAGE)

        try:
            phone = normalize_phone_number(phone_number)
        except PaymentValidationError as exc:
            return self._render(DialogState.FAILED, exc.message)

        try:
            started = self.api.initiate_payment(
                phone_number=phone,
                amount=self.amount,
                product_name=self.product_name,
            )
        except CheckoutApiError as exc:
            logger.info("Payment initiation rejected: %s", exc.message)
            return self._render(DialogState.FAILED, exc.message or GENERIC_FAILURE_MESSAGE)

        checkout_request_id = started["checkoutRequestId"]
        self._render(DialogState.PROCESSING, PROCESSING_MESSAGE, checkout_request_id=checkout_request_id)

        result = self.poller.poll(checkout_request_id, self._cancel)
        if result.outcome is PollOutcome.STOPPED:
            return self.view
        if result.outcome is PollOutcome.COMPLETED:
            message = SUCCESS_MESSAGE
            if result.transaction_id:
                message = f"{SUCCESS_MESSAGE} Receipt: {result.transaction_id}"
            view = self._render(
                DialogState.SUCCESS,
                message,
                transaction_id=result.transaction_id,
                checkout_request_id=checkout_request_id,
            )
            self._schedule_dismiss()
            return view
        return self._render(DialogState.FAILED, result.message, checkout_request_id=checkout_request_id)

    def _schedule_dismiss(self) -> None:
        with self._lock:
            if self.closed:
                return
            timer = self._timer_factory(self.auto_dismiss_seconds, self.close)
            timer.daemon = True
            self._dismiss_timer = timer
        timer.start()

    def close(self) -> None:
        with self._lock:
            if self.closed:
                return
            self.closed = True
            self._cancel.set()
            timer = self._dismiss_timer
        if timer is not None:
            timer.cancel()
        if self.on_dismiss:
            self.on_dismiss()
