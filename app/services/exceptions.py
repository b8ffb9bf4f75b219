class PaymentError(Exception):
    status_code = 400

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class PaymentValidationError(PaymentError):
    """Bad phone number, amount or missing field. Raised before any provider call."""

    status_code = 400


class PaymentInitiationError(PaymentError):
    """Daraja refused the auth handshake or the STK push, or could not be reached."""

    status_code = 502


class CallbackCorrelationError(PaymentError):
    """A callback named a CheckoutRequestID we never stored."""

    status_code = 404


class PaymentTimeoutError(PaymentError):
    """Polling ran out of attempts while the transaction was still pending."""

    status_code = 408


class InternalPersistenceError(PaymentError):
    status_code = 500
