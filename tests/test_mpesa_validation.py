import pytest

from app.schemas.mpesa import StkPushRequest
from app.services.exceptions import PaymentValidationError
from app.services.payments import (
    generate_account_reference,
    normalize_phone_number,
    resolve_account_reference,
    validate_amount,
    validate_stk_request,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("0712345678", "254712345678"),
        ("0712 345 678", "254712345678"),
        ("+254712345678", "254712345678"),
        ("254712345678", "254712345678"),
        ("712345678", "254712345678"),
        ("0112345678", "254112345678"),
        ("112345678", "254112345678"),
    ],
)
def test_normalize_phone_number_accepts_kenyan_formats(raw, expected):
    assert normalize_phone_number(raw) == expected


@pytest.mark.parametrize("raw", ["", None, "12345", "07123456789", "255712345678", "abc"])
def test_normalize_phone_number_rejects_invalid(raw):
    with pytest.raises(PaymentValidationError) as exc:
        normalize_phone_number(raw)
    assert exc.value.status_code == 400
    assert "valid Kenyan phone number" in exc.value.message


@pytest.mark.parametrize("amount", [1, 500, 70000])
def test_validate_amount_accepts_bounds(amount):
    assert validate_amount(amount) == amount


@pytest.mark.parametrize("amount", [0, -5, 70001, 185000])
def test_validate_amount_rejects_out_of_range(amount):
    with pytest.raises(PaymentValidationError) as exc:
        validate_amount(amount)
    assert exc.value.message == "Amount must be between KSh 1 and KSh 70,000"


@pytest.mark.parametrize("amount", [True, 10.5, "500"])
def test_validate_amount_rejects_non_integers(amount):
    with pytest.raises(PaymentValidationError):
        validate_amount(amount)


def test_validate_stk_request_defaults_description():
    request = StkPushRequest(phoneNumber="0712345678", amount=500, productName="  Case ")
    validated = validate_stk_request(request)
    assert validated.product_name == "Case"
    assert validated.transaction_desc == "Payment for Case"


def test_validate_stk_request_requires_product_name():
    request = StkPushRequest(phoneNumber="0712345678", amount=500, productName="   ")
    with pytest.raises(PaymentValidationError) as exc:
        validate_stk_request(request)
    assert exc.value.message == "Product name is required"


def test_generated_account_reference_shape():
    ref = generate_account_reference()
    assert ref.startswith("LT")
    assert len(ref) == 12
    assert ref == ref.upper()


def test_resolve_account_reference_rejects_reuse(db_session):
    from app.models import MpesaTransaction, MpesaTransactionStatus

    db_session.add(
        MpesaTransaction(
            checkout_request_id="ws_CO_1",
            merchant_request_id="MR-1",
            phone_number="254712345678",
            amount=500,
            account_reference="ORDER-1",
            transaction_desc="Payment for Case",
            product_name="Case",
            status=MpesaTransactionStatus.PENDING,
        )
    )
    db_session.commit()

    with pytest.raises(PaymentValidationError) as exc:
        resolve_account_reference(db_session, "ORDER-1")
    assert exc.value.status_code == 409
    assert resolve_account_reference(db_session, "ORDER-2") == "ORDER-2"
    assert resolve_account_reference(db_session, None).startswith("LT")


def test_resolve_account_reference_rejects_bad_characters(db_session):
    with pytest.raises(PaymentValidationError):
        resolve_account_reference(db_session, "bad ref!")
