import secrets
from datetime import datetime, timezone

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.models import MpesaTransaction, Order, OrderStatus, PaymentMethod

MPESA_CUSTOMER_NAME = "M-Pesa Customer"
ADDRESS_PLACEHOLDER = "To be provided"

PAID_STATUSES = {OrderStatus.PAID, OrderStatus.DELIVERED}


def generate_order_number(db: Session) -> str:
    day = datetime.now(timezone.utc).strftime("%Y%m%d")
    for _ in range(5):
        candidate = f"LT-{day}-{secrets.token_hex(3).upper()}"
        if not db.query(Order.id).filter(Order.order_number == candidate).first():
            return candidate
    # Six more hex digits make a collision practically impossible.
    return f"LT-{day}-{secrets.token_hex(6).upper()}"


def build_order_from_transaction(db: Session, transaction: MpesaTransaction) -> Order:
    return Order(
        order_number=generate_order_number(db),
        full_name=transaction.customer_name or MPESA_CUSTOMER_NAME,
        phone_number=transaction.phone_number,
        email=transaction.customer_email,
        delivery_address=transaction.delivery_address or ADDRESS_PLACEHOLDER,
        product_name=transaction.product_name,
        amount=transaction.amount,
        payment_method=PaymentMethod.MPESA,
        status=OrderStatus.PAID,
        mpesa_receipt_number=transaction.mpesa_receipt_number,
        checkout_request_id=transaction.checkout_request_id,
    )


def create_pay_on_delivery_order(db: Session, payload) -> Order:
    order = Order(
        order_number=generate_order_number(db),
        full_name=payload.full_name.strip(),
        phone_number=payload.phone_number.strip(),
        email=(payload.email or "").strip() or None,
        delivery_address=payload.delivery_address.strip(),
        product_name=payload.product_name.strip(),
        amount=payload.amount,
        payment_method=PaymentMethod.PAY_ON_DELIVERY,
        status=OrderStatus.PENDING,
        notes=(payload.notes or "").strip() or None,
        delivery_date=payload.delivery_date,
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    return order


def search_orders(db: Session, *, q: str | None = None, status: OrderStatus | None = None):
    query = db.query(Order)
    if status is not None:
        query = query.filter(Order.status == status)
    text = (q or "").strip()
    if text:
        like = f"%{text}%"
        query = query.filter(
            or_(
                Order.full_name.ilike(like),
                Order.phone_number.ilike(like),
                Order.email.ilike(like),
                Order.product_name.ilike(like),
                Order.order_number.ilike(like),
            )
        )
    return query


def order_stats(db: Session) -> dict:
    rows = db.query(Order.status, func.count(Order.id), func.coalesce(func.sum(Order.amount), 0)).group_by(Order.status).all()
    counts = {status.value: 0 for status in OrderStatus}
    paid_revenue = 0
    pending_revenue = 0
    total = 0
    for status, count, amount in rows:
        status = OrderStatus(status)
        counts[status.value] = int(count)
        total += int(count)
        if status in PAID_STATUSES:
            paid_revenue += int(amount or 0)
        elif status is OrderStatus.PENDING:
            pending_revenue += int(amount or 0)
    return {
        "total_orders": total,
        "by_status": counts,
        "paid_revenue": paid_revenue,
        "pending_revenue": pending_revenue,
    }


def order_email_payload(order: Order) -> dict:
    # Plain dict so the background email task does not touch a closed session.
    return {
        "order_number": order.order_number,
        "customer_name": order.full_name,
        "phone_number": order.phone_number,
        "email": order.email,
        "delivery_address": order.delivery_address,
        "product_name": order.product_name,
        "amount": int(order.amount),
        "payment_method": order.payment_method.value,
        "mpesa_receipt_number": order.mpesa_receipt_number,
    }
