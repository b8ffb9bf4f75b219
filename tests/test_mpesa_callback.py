from app.models import MpesaTransaction, MpesaTransactionStatus, Order, OrderStatus, PaymentMethod
from app.schemas.mpesa import StkCallback
from app.services.payments import CallbackOutcomeKind, classify_callback_status, process_stk_callback


def _pending(db, checkout_request_id="ws_CO_1", amount=500, **extra):
    tx = MpesaTransaction(
        checkout_request_id=checkout_request_id,
        merchant_request_id="MR-1",
        phone_number="254712345678",
        amount=amount,
        account_reference=f"LT{checkout_request_id[-6:].upper()}",
        transaction_desc="Payment for Case",
        product_name="Case",
        status=MpesaTransactionStatus.PENDING,
        **extra,
    )
    db.add(tx)
    db.commit()
    db.refresh(tx)
    return tx


def _success_body(checkout_request_id="ws_CO_1", amount=500, receipt="QGH7X8Y9Z0"):
    return {
        "Body": {
            "stkCallback": {
                "MerchantRequestID": "MR-1",
                "CheckoutRequestID": checkout_request_id,
                "ResultCode": 0,
                "ResultDesc": "The service request is processed successfully.",
                "CallbackMetadata": {
                    "Item": [
                        {"Name": "Amount", "Value": amount},
                        {"Name": "MpesaReceiptNumber", "Value": receipt},
                        {"Name": "TransactionDate", "Value": 20260214120501},
                        {"Name": "PhoneNumber", "Value": 254712345678},
                    ]
                },
            }
        }
    }


def _failure_body(checkout_request_id="ws_CO_1", code=1032, desc="Request cancelled by user"):
    return {
        "Body": {
            "stkCallback": {
                "MerchantRequestID": "MR-1",
                "CheckoutRequestID": checkout_request_id,
                "ResultCode": code,
                "ResultDesc": desc,
            }
        }
    }


def test_classify_callback_status():
    assert classify_callback_status(0, "ok") is MpesaTransactionStatus.COMPLETED
    assert classify_callback_status(1032, "Request cancelled by user") is MpesaTransactionStatus.CANCELLED
    assert classify_callback_status(17, "Cancelled by the system") is MpesaTransactionStatus.CANCELLED
    assert classify_callback_status(1, "The balance is insufficient") is MpesaTransactionStatus.FAILED


def test_success_callback_completes_transaction_and_creates_order(client, db_session):
    _pending(db_session)
    res = client.post("/api/v1/mpesa/callback", json=_success_body())
    assert res.status_code == 200
    assert res.json() == {"ResultCode": 0, "ResultDesc": "Accepted"}

    db_session.expire_all()
    tx = db_session.query(MpesaTransaction).one()
    assert tx.status == MpesaTransactionStatus.COMPLETED
    assert tx.mpesa_receipt_number == "QGH7X8Y9Z0"
    assert tx.transaction_date == "20260214120501"
    assert tx.result_code == 0

    orders = db_session.query(Order).all()
    assert len(orders) == 1
    order = orders[0]
    assert order.mpesa_receipt_number == "QGH7X8Y9Z0"
    assert order.amount == 500
    assert order.status == OrderStatus.PAID
    assert order.payment_method == PaymentMethod.MPESA
    assert order.full_name == "M-Pesa Customer"
    assert order.order_number.startswith("LT-")


def test_order_uses_customer_details_from_checkout(client, db_session):
    _pending(db_session, customer_name="Jane Wanjiru", delivery_address="Moi Avenue, Nairobi")
    client.post("/api/v1/mpesa/callback", json=_success_body())
    order = db_session.query(Order).one()
    assert order.full_name == "Jane Wanjiru"
    assert order.delivery_address == "Moi Avenue, Nairobi"


def test_duplicate_callback_is_idempotent(client, db_session):
    _pending(db_session)
    first = client.post("/api/v1/mpesa/callback", json=_success_body())
    second = client.post("/api/v1/mpesa/callback", json=_success_body())
    assert first.json() == second.json() == {"ResultCode": 0, "ResultDesc": "Accepted"}
    assert db_session.query(Order).count() == 1


def test_late_success_after_cancel_does_not_create_order(client, db_session):
    _pending(db_session)
    client.post("/api/v1/mpesa/callback", json=_failure_body())
    client.post("/api/v1/mpesa/callback", json=_success_body())
    db_session.expire_all()
    tx = db_session.query(MpesaTransaction).one()
    assert tx.status == MpesaTransactionStatus.CANCELLED
    assert db_session.query(Order).count() == 0


def test_cancelled_callback_marks_cancelled_without_order(client, db_session):
    _pending(db_session)
    res = client.post("/api/v1/mpesa/callback", json=_failure_body())
    assert res.json()["ResultCode"] == 0
    db_session.expire_all()
    tx = db_session.query(MpesaTransaction).one()
    assert tx.status == MpesaTransactionStatus.CANCELLED
    assert tx.result_code == 1032
    assert tx.result_desc == "Request cancelled by user"
    assert tx.mpesa_receipt_number is None
    assert db_session.query(Order).count() == 0


def test_failed_callback_marks_failed(client, db_session):
    _pending(db_session)
    client.post("/api/v1/mpesa/callback", json=_failure_body(code=1, desc="The balance is insufficient for the transaction"))
    db_session.expire_all()
    assert db_session.query(MpesaTransaction).one().status == MpesaTransactionStatus.FAILED


def test_unknown_checkout_request_is_acknowledged(client, db_session):
    res = client.post("/api/v1/mpesa/callback", json=_success_body(checkout_request_id="ws_CO_missing"))
    assert res.status_code == 200
    assert res.json() == {"ResultCode": 0, "ResultDesc": "Accepted"}
    assert db_session.query(MpesaTransaction).count() == 0
    assert db_session.query(Order).count() == 0


def test_malformed_callback_is_rejected(client):
    res = client.post("/api/v1/mpesa/callback", json={"Body": {}})
    assert res.status_code == 400
    assert res.json() == {"ResultCode": 1, "ResultDesc": "Rejected"}


def test_non_json_callback_is_rejected(client):
    res = client.post(
        "/api/v1/mpesa/callback",
        content=b"not json",
        headers={"Content-Type": "application/json"},
    )
    assert res.status_code == 400


def test_paid_amount_from_metadata_is_recorded(db_session):
    _pending(db_session, amount=500)
    callback = StkCallback.model_validate(_success_body(amount=450)["Body"]["stkCallback"])
    outcome = process_stk_callback(db_session, callback)
    assert outcome.kind is CallbackOutcomeKind.APPLIED
    assert outcome.transaction.amount == 450
    assert outcome.order.amount == 450


def test_process_callback_reports_duplicate(db_session):
    _pending(db_session)
    callback = StkCallback.model_validate(_success_body()["Body"]["stkCallback"])
    first = process_stk_callback(db_session, callback)
    second = process_stk_callback(db_session, callback)
    assert first.kind is CallbackOutcomeKind.APPLIED
    assert second.kind is CallbackOutcomeKind.DUPLICATE
    assert second.order is None


def test_concurrent_delivery_loses_compare_and_swap(db_session):
    from sqlalchemy.orm import sessionmaker

    _pending(db_session)
    other = sessionmaker(autocommit=False, autoflush=False, bind=db_session.get_bind())()
    try:
        stale = other.query(MpesaTransaction).filter(MpesaTransaction.checkout_request_id == "ws_CO_1").one()
        assert stale.status == MpesaTransactionStatus.PENDING

        callback = StkCallback.model_validate(_success_body()["Body"]["stkCallback"])
        winner = process_stk_callback(db_session, callback)
        loser = process_stk_callback(other, callback)

        assert winner.kind is CallbackOutcomeKind.APPLIED
        assert loser.kind is CallbackOutcomeKind.DUPLICATE
        assert loser.order is None
        assert loser.transaction.status == MpesaTransactionStatus.COMPLETED
    finally:
        other.close()
    assert db_session.query(Order).count() == 1


def test_commit_failure_is_acknowledged_and_row_stays_pending(client, db_session, monkeypatch):
    from sqlalchemy.exc import OperationalError

    _pending(db_session)

    def _boom():
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(db_session, "commit", _boom)
    res = client.post("/api/v1/mpesa/callback", json=_success_body())

    assert res.status_code == 200
    assert res.json() == {"ResultCode": 0, "ResultDesc": "Accepted"}
    db_session.expire_all()
    assert db_session.query(MpesaTransaction).one().status == MpesaTransactionStatus.PENDING
    assert db_session.query(Order).count() == 0


def test_reused_receipt_is_acknowledged_without_order(client, db_session):
    settled = _pending(db_session, checkout_request_id="ws_CO_0")
    settled.status = MpesaTransactionStatus.COMPLETED
    settled.mpesa_receipt_number = "QGH7X8Y9Z0"
    db_session.commit()
    _pending(db_session, checkout_request_id="ws_CO_1")

    res = client.post("/api/v1/mpesa/callback", json=_success_body(checkout_request_id="ws_CO_1"))

    assert res.status_code == 200
    assert res.json()["ResultCode"] == 0
    db_session.expire_all()
    row = db_session.query(MpesaTransaction).filter(MpesaTransaction.checkout_request_id == "ws_CO_1").one()
    assert row.status == MpesaTransactionStatus.PENDING
    assert db_session.query(Order).count() == 0


def test_callback_metadata_items_are_parsed():
    callback = StkCallback.model_validate(_success_body()["Body"]["stkCallback"])
    assert callback.metadata_value("MpesaReceiptNumber") == "QGH7X8Y9Z0"
    assert callback.metadata_value("Amount") == 500
    assert callback.metadata_value("Missing") is None
