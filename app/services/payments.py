"""
M-Pesa STK push lifecycle.

``initiate_stk_push`` writes a pending row once Safaricom accepts the push,
``process_stk_callback`` is the only code that moves a row to a terminal
status (and the only creator of M-Pesa orders), and ``get_payment_status``
is the read side used by the client poller.
"""
import enum
import logging
import re
import secrets
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.models import MpesaTransaction, MpesaTransactionStatus, Order
from app.schemas.mpesa import StkCallback, StkPushRequest
from app.services.daraja import DarajaClient, MpesaApiError
from app.services.exceptions import (
    CallbackCorrelationError,
    InternalPersistenceError,
    PaymentInitiationError,
    PaymentValidationError,
)
from app.services.orders import build_order_from_transaction

settings = get_settings()
logger = logging.getLogger(__name__)

_PHONE_PATTERN = re.compile(r"^254\d{9}$")
_ACCOUNT_REFERENCE_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
ACCOUNT_REFERENCE_PREFIX = "LT"

# Safaricom ResultCode for "Request cancelled by user".
RESULT_CODE_CANCELLED_BY_USER = 1032

INVALID_PHONE_MESSAGE = "Please enter a valid Kenyan phone number (e.g., 0712345678)"


def normalize_phone_number(raw: str | None) -> str:
    digits = re.sub(r"\D", "", str(raw or ""))
    if digits.startswith("0"):
        digits = "254" + digits[1:]
    elif digits.startswith("254"):
        pass
    elif digits.startswith("7") or digits.startswith("1"):
        digits = "254" + digits
    if not _PHONE_PATTERN.match(digits):
        raise PaymentValidationError(INVALID_PHONE_MESSAGE)
    return digits


def validate_amount(amount) -> int:
    minimum = settings.mpesa_min_amount
    maximum = settings.mpesa_max_amount
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise PaymentValidationError("Amount must be a whole number of shillings")
    if amount < minimum or amount > maximum:
        raise PaymentValidationError(f"Amount must be between KSh {minimum:,} and KSh {maximum:,}")
    return amount


def generate_account_reference() -> str:
    # 12 characters: the AccountReference limit Daraja shows on the customer's prompt.
    return f"{ACCOUNT_REFERENCE_PREFIX}{secrets.token_hex(5).upper()}"


def _account_reference_taken(db: Session, reference: str) -> bool:
    return (
        db.query(MpesaTransaction.id)
        .filter(MpesaTransaction.account_reference == reference)
        .first()
        is not None
    )


def resolve_account_reference(db: Session, requested: str | None) -> str:
    reference = (requested or "").strip()
    if reference:
        if not _ACCOUNT_REFERENCE_PATTERN.match(reference):
            raise PaymentValidationError("Account reference may only contain letters, digits, '-' and '_'")
        if _account_reference_taken(db, reference):
            raise PaymentValidationError("Account reference has already been used", status_code=409)
        return reference

    for _ in range(5):
        candidate = generate_account_reference()
        if not _account_reference_taken(db, candidate):
            return candidate
    raise InternalPersistenceError("Could not allocate a payment reference. Please try again.")


@dataclass
class ValidatedStkRequest:
    phone_number: str
    amount: int
    product_name: str
    transaction_desc: str


def validate_stk_request(request: StkPushRequest) -> ValidatedStkRequest:
    phone_number = normalize_phone_number(request.phone_number)
    amount = validate_amount(request.amount)
    product_name = (request.product_name or "").strip()
    if not product_name:
        raise PaymentValidationError("Product name is required")
    transaction_desc = (request.transaction_desc or "").strip() or f"Payment for {product_name}"
    return ValidatedStkRequest(
        phone_number=phone_number,
        amount=amount,
        product_name=product_name[:255],
        transaction_desc=transaction_desc[:255],
    )


def initiate_stk_push(db: Session, request: StkPushRequest, client: DarajaClient | None = None) -> MpesaTransaction:
    validated = validate_stk_request(request)
    account_reference = resolve_account_reference(db, request.account_reference)

    client = client or DarajaClient()
    try:
        response = client.stk_push(
            phone_number=validated.phone_number,
            amount=validated.amount,
            account_reference=account_reference,
            transaction_desc=validated.transaction_desc,
        )
    except MpesaApiError as exc:
        logger.warning(
            "STK push rejected ref=%s status=%s: %s",
            account_reference,
            exc.status_code,
            exc.message,
        )
        raise PaymentInitiationError("M-Pesa could not start the payment. Please try again.") from exc

    response_code = str(response.get("ResponseCode", "")).strip()
    checkout_request_id = str(response.get("CheckoutRequestID") or "").strip()
    if response_code != "0" or not checkout_request_id:
        logger.warning(
            "STK push not accepted ref=%s code=%s desc=%s",
            account_reference,
            response_code or "-",
            response.get("ResponseDescription") or response.get("errorMessage"),
        )
        raise PaymentInitiationError("M-Pesa could not start the payment. Please try again.")

    transaction = MpesaTransaction(
        checkout_request_id=checkout_request_id,
        merchant_request_id=str(response.get("MerchantRequestID") or ""),
        phone_number=validated.phone_number,
        amount=validated.amount,
        account_reference=account_reference,
        transaction_desc=validated.transaction_desc,
        product_name=validated.product_name,
        customer_name=(request.customer_name or "").strip() or None,
        customer_email=(request.customer_email or "").strip() or None,
        delivery_address=(request.delivery_address or "").strip() or None,
        status=MpesaTransactionStatus.PENDING,
    )
    db.add(transaction)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        # Safaricom already sent the prompt; without this row the callback cannot be matched.
        logger.exception(
            "Failed to record accepted STK push checkout_request_id=%s ref=%s",
            checkout_request_id,
            account_reference,
        )
        raise InternalPersistenceError(
            "Your payment request was sent but could not be recorded. Please contact support."
        ) from exc
    db.refresh(transaction)
    logger.info(
        "STK push accepted checkout_request_id=%s ref=%s amount=%s",
        checkout_request_id,
        account_reference,
        validated.amount,
    )
    return transaction


def classify_callback_status(result_code: int, result_desc: str | None) -> MpesaTransactionStatus:
    if result_code == 0:
        return MpesaTransactionStatus.COMPLETED
    if result_code == RESULT_CODE_CANCELLED_BY_USER or "cancel" in str(result_desc or "").lower():
        return MpesaTransactionStatus.CANCELLED
    return MpesaTransactionStatus.FAILED


def _as_int(value) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        return None


def _as_text(value, limit: int) -> str | None:
    if value in (None, ""):
        return None
    return str(value).strip()[:limit] or None


class CallbackOutcomeKind(str, enum.Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"


@dataclass
class CallbackOutcome:
    kind: CallbackOutcomeKind
    transaction: MpesaTransaction
    order: Order | None = None


def _terminal_values(callback: StkCallback, transaction: MpesaTransaction, status: MpesaTransactionStatus) -> dict:
    values = {
        "status": status,
        "result_code": callback.ResultCode,
        "result_desc": _as_text(callback.ResultDesc, 255),
        "updated_at": func.now(),
    }
    if status is not MpesaTransactionStatus.COMPLETED:
        return values

    receipt = _as_text(callback.metadata_value("MpesaReceiptNumber"), 32)
    if not receipt:
        logger.warning("Completed callback without receipt checkout_request_id=%s", transaction.checkout_request_id)
    values["mpesa_receipt_number"] = receipt
    values["transaction_date"] = _as_text(callback.metadata_value("TransactionDate"), 14)

    paid_amount = _as_int(callback.metadata_value("Amount"))
    if paid_amount is not None:
        if paid_amount != transaction.amount:
            logger.warning(
                "Paid amount differs from requested checkout_request_id=%s requested=%s paid=%s",
                transaction.checkout_request_id,
                transaction.amount,
                paid_amount,
            )
        values["amount"] = paid_amount

    payer = _as_text(callback.metadata_value("PhoneNumber"), 12)
    if payer:
        values["phone_number"] = payer
    return values


def process_stk_callback(db: Session, callback: StkCallback) -> CallbackOutcome:
    checkout_request_id = callback.CheckoutRequestID.strip()
    transaction = (
        db.query(MpesaTransaction)
        .filter(MpesaTransaction.checkout_request_id == checkout_request_id)
        .first()
    )
    if not transaction:
        logger.warning("Callback for unknown checkout_request_id=%s ignored", checkout_request_id)
        raise CallbackCorrelationError(f"Unknown CheckoutRequestID {checkout_request_id}")

    if transaction.status != MpesaTransactionStatus.PENDING:
        logger.info(
            "Duplicate callback checkout_request_id=%s already %s",
            checkout_request_id,
            transaction.status.value,
        )
        return CallbackOutcome(CallbackOutcomeKind.DUPLICATE, transaction)

    new_status = classify_callback_status(callback.ResultCode, callback.ResultDesc)
    values = _terminal_values(callback, transaction, new_status)

    try:
        # Compare-and-swap on status: concurrent deliveries race here and only one wins.
        updated = (
            db.query(MpesaTransaction)
            .filter(
                MpesaTransaction.checkout_request_id == checkout_request_id,
                MpesaTransaction.status == MpesaTransactionStatus.PENDING,
            )
            .update(values, synchronize_session=False)
        )
        if updated != 1:
            db.rollback()
            db.refresh(transaction)
            logger.info("Callback lost the race checkout_request_id=%s", checkout_request_id)
            return CallbackOutcome(CallbackOutcomeKind.DUPLICATE, transaction)

        db.expire(transaction)
        order = None
        if new_status is MpesaTransactionStatus.COMPLETED:
            order = build_order_from_transaction(db, transaction)
            db.add(order)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.error(
            "Integrity error while settling checkout_request_id=%s: %s",
            checkout_request_id,
            exc.orig,
        )
        raise InternalPersistenceError("Could not settle transaction") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Database error while settling checkout_request_id=%s", checkout_request_id)
        raise InternalPersistenceError("Could not settle transaction") from exc

    db.refresh(transaction)
    if order is not None:
        db.refresh(order)
        logger.info(
            "Payment completed checkout_request_id=%s receipt=%s order=%s",
            checkout_request_id,
            transaction.mpesa_receipt_number,
            order.order_number,
        )
    else:
        # A declined payment is a business outcome, not a system error.
        logger.info(
            "Payment %s checkout_request_id=%s code=%s desc=%s",
            new_status.value,
            checkout_request_id,
            callback.ResultCode,
            callback.ResultDesc,
        )
    return CallbackOutcome(CallbackOutcomeKind.APPLIED, transaction, order)


_STATUS_MESSAGES = {
    MpesaTransactionStatus.PENDING: "Waiting for M-Pesa confirmation. Check your phone and enter your M-Pesa PIN.",
    MpesaTransactionStatus.COMPLETED: "Payment successful! Your order has been confirmed.",
    MpesaTransactionStatus.FAILED: "Payment failed.",
    MpesaTransactionStatus.CANCELLED: "Payment was cancelled.",
}


def get_payment_status(db: Session, checkout_request_id: str) -> dict | None:
    transaction = (
        db.query(MpesaTransaction)
        .filter(MpesaTransaction.checkout_request_id == checkout_request_id)
        .first()
    )
    if not transaction:
        return None

    status = transaction.status
    message = _STATUS_MESSAGES[status]
    if status in {MpesaTransactionStatus.FAILED, MpesaTransactionStatus.CANCELLED} and transaction.result_desc:
        message = transaction.result_desc
    return {
        "status": status,
        "checkout_request_id": transaction.checkout_request_id,
        "transaction_id": transaction.mpesa_receipt_number if status is MpesaTransactionStatus.COMPLETED else None,
        "message": message,
    }
