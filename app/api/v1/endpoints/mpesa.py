import hmac
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import get_db
from app.middlewares.rate_limit import limiter
from app.schemas.mpesa import (
    CallbackAck,
    PaymentStatusOut,
    StkCallbackEnvelope,
    StkPushRequest,
    StkPushResponse,
)
from app.services.daraja import DarajaClient
from app.services.email import notify_new_order
from app.services.exceptions import CallbackCorrelationError, InternalPersistenceError, PaymentError
from app.services.orders import order_email_payload
from app.services.payments import CallbackOutcomeKind, get_payment_status, initiate_stk_push, process_stk_callback

router = APIRouter()
settings = get_settings()
logger = logging.getLogger(__name__)

CALLBACK_ACCEPTED = CallbackAck(ResultCode=0, ResultDesc="Accepted").model_dump()
CALLBACK_REJECTED = CallbackAck(ResultCode=1, ResultDesc="Rejected").model_dump()


def get_daraja_client() -> DarajaClient:
    return DarajaClient()


@router.post("/stk-push", response_model=StkPushResponse)
@limiter.limit("10/minute")
def stk_push(
    request: Request,
    payload: StkPushRequest,
    db: Session = Depends(get_db),
    client: DarajaClient = Depends(get_daraja_client),
):
    try:
        transaction = initiate_stk_push(db, payload, client=client)
    except PaymentError as exc:
        return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})

    return StkPushResponse(
        success=True,
        message="Payment request sent! Please check your phone and enter your M-Pesa PIN.",
        checkout_request_id=transaction.checkout_request_id,
        merchant_request_id=transaction.merchant_request_id,
        account_reference=transaction.account_reference,
    )


@router.post("/callback")
async def mpesa_callback(
    request: Request,
    background_tasks: BackgroundTasks,
    token: str | None = None,
    db: Session = Depends(get_db),
):
    expected_token = (settings.mpesa_callback_token or "").strip()
    if expected_token and not hmac.compare_digest((token or "").encode(), expected_token.encode()):
        raise HTTPException(status_code=401, detail="Invalid callback token")

    try:
        envelope = StkCallbackEnvelope.model_validate(await request.json())
    except (ValueError, ValidationError) as exc:
        logger.warning("Malformed M-Pesa callback rejected: %s", exc)
        return JSONResponse(status_code=400, content=CALLBACK_REJECTED)

    callback = envelope.Body.stkCallback
    logger.info(
        "M-Pesa callback checkout_request_id=%s result_code=%s",
        callback.CheckoutRequestID,
        callback.ResultCode,
    )
    # Safaricom retries anything it does not see acknowledged, so internal
    # failures below are logged and still answered with ResultCode 0.
    try:
        outcome = process_stk_callback(db, callback)
    except CallbackCorrelationError:
        return CALLBACK_ACCEPTED
    except InternalPersistenceError as exc:
        logger.error(
            "Callback persistence failed checkout_request_id=%s: %s",
            callback.CheckoutRequestID,
            exc.message,
        )
        return CALLBACK_ACCEPTED
    except Exception:
        logger.exception("Unexpected error processing callback checkout_request_id=%s", callback.CheckoutRequestID)
        return CALLBACK_ACCEPTED

    if outcome.kind is CallbackOutcomeKind.APPLIED and outcome.order is not None:
        background_tasks.add_task(notify_new_order, order_email_payload(outcome.order))
    return CALLBACK_ACCEPTED


@router.get("/payment-status/{checkout_request_id}", response_model=PaymentStatusOut)
def payment_status(checkout_request_id: str, db: Session = Depends(get_db)):
    result = get_payment_status(db, checkout_request_id.strip())
    if result is None:
        raise HTTPException(status_code=404, detail={"success": False, "message": "Transaction not found"})
    return PaymentStatusOut(**result)
