from datetime import date, datetime, time, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import get_db
from app.core.security import create_access_token, verify_admin_credentials
from app.dependencies import require_admin
from app.middlewares.rate_limit import limiter
from app.models import MpesaTransaction, MpesaTransactionStatus, Order, OrderStatus, Product
from app.schemas.admin import (
    AdminAnalyticsOut,
    AdminLoginRequest,
    AdminOrdersResponse,
    AdminTransactionsResponse,
    TokenOut,
)
from app.schemas.catalog import ProductOut, ProductUpdate
from app.schemas.order import OrderOut, OrderStatusUpdate
from app.services.catalog import invalidate_catalog, product_to_dict
from app.services.exports import transactions_csv_filename, transactions_to_csv
from app.services.orders import order_stats, search_orders

router = APIRouter()
settings = get_settings()

UNSUCCESSFUL = "unsuccessful"
EXPORT_ROW_LIMIT = 10000


def _coerce_order_status(value: Optional[str]) -> Optional[OrderStatus]:
    if value is None:
        return None
    raw = value.strip()
    if not raw or raw.lower() == "all":
        return None
    for member in OrderStatus:
        if raw.lower() == member.value or raw.upper() == member.name:
            return member
    raise HTTPException(status_code=400, detail="Invalid status")


def _coerce_tx_statuses(value: Optional[str]) -> Optional[list[MpesaTransactionStatus]]:
    if value is None:
        return None
    raw = value.strip().lower()
    if not raw or raw == "all":
        return None
    if raw == UNSUCCESSFUL:
        return [MpesaTransactionStatus.FAILED, MpesaTransactionStatus.CANCELLED]
    for member in MpesaTransactionStatus:
        if raw == member.value:
            return [member]
    raise HTTPException(status_code=400, detail="Invalid status")


def _as_utc_start(d: date) -> datetime:
    return datetime.combine(d, time.min).replace(tzinfo=timezone.utc)


def _as_utc_end(d: date) -> datetime:
    return datetime.combine(d, time.max).replace(tzinfo=timezone.utc)


def _check_paging(page: int, page_size: int) -> None:
    if page < 1:
        raise HTTPException(status_code=400, detail="page must be >= 1")
    if page_size < 1 or page_size > 200:
        raise HTTPException(status_code=400, detail="page_size must be between 1 and 200")


def _transactions_query(
    db: Session,
    *,
    q: Optional[str],
    status: Optional[str],
    from_date: Optional[date],
    to_date: Optional[date],
):
    query = db.query(MpesaTransaction)
    statuses = _coerce_tx_statuses(status)
    if statuses:
        query = query.filter(MpesaTransaction.status.in_(statuses))
    text = (q or "").strip()
    if text:
        like = f"%{text}%"
        query = query.filter(
            or_(
                MpesaTransaction.phone_number.ilike(like),
                MpesaTransaction.mpesa_receipt_number.ilike(like),
                MpesaTransaction.account_reference.ilike(like),
                MpesaTransaction.transaction_desc.ilike(like),
                MpesaTransaction.checkout_request_id.ilike(like),
            )
        )
    if from_date:
        query = query.filter(MpesaTransaction.created_at >= _as_utc_start(from_date))
    if to_date:
        query = query.filter(MpesaTransaction.created_at <= _as_utc_end(to_date))
    return query


@router.post("/login", response_model=TokenOut)
@limiter.limit("5/minute")
def admin_login(request: Request, payload: AdminLoginRequest):
    if not verify_admin_credentials(payload.username, payload.password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = create_access_token(payload.username.strip(), "admin")
    return {
        "access_token": token,
        "token_type": "bearer",
        "expires_in": settings.access_token_expire_minutes * 60,
    }


@router.get("/orders", response_model=AdminOrdersResponse)
def list_orders(
    admin=Depends(require_admin),
    db: Session = Depends(get_db),
    q: Optional[str] = None,
    status: Optional[str] = None,
    page: int = 1,
    page_size: int = 50,
):
    _check_paging(page, page_size)
    query = search_orders(db, q=q, status=_coerce_order_status(status))
    total = query.count()
    items = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {"items": items, "total": total, "page": page, "page_size": page_size}


@router.patch("/orders/{order_id}/status", response_model=OrderOut)
def update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    admin=Depends(require_admin),
    db: Session = Depends(get_db),
):
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    order.status = payload.status
    if payload.notes is not None:
        order.notes = payload.notes.strip() or None
    db.commit()
    db.refresh(order)
    return order


@router.get("/transactions", response_model=AdminTransactionsResponse)
def list_transactions(
    admin=Depends(require_admin),
    db: Session = Depends(get_db),
    q: Optional[str] = None,
    status: Optional[str] = None,
    from_date: Optional[date] = Query(default=None, alias="from"),
    to_date: Optional[date] = Query(default=None, alias="to"),
    page: int = 1,
    page_size: int = 50,
):
    _check_paging(page, page_size)
    query = _transactions_query(db, q=q, status=status, from_date=from_date, to_date=to_date)
    total = query.count()
    items = (
        query.order_by(MpesaTransaction.created_at.desc(), MpesaTransaction.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {"items": items, "total": total, "page": page, "page_size": page_size}


@router.get("/transactions/export")
def export_transactions(
    admin=Depends(require_admin),
    db: Session = Depends(get_db),
    q: Optional[str] = None,
    status: Optional[str] = None,
    from_date: Optional[date] = Query(default=None, alias="from"),
    to_date: Optional[date] = Query(default=None, alias="to"),
):
    query = _transactions_query(db, q=q, status=status, from_date=from_date, to_date=to_date)
    rows = query.order_by(MpesaTransaction.created_at.desc(), MpesaTransaction.id.desc()).limit(EXPORT_ROW_LIMIT).all()
    filename = transactions_csv_filename()
    return Response(
        content=transactions_to_csv(rows),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/analytics", response_model=AdminAnalyticsOut)
def analytics(admin=Depends(require_admin), db: Session = Depends(get_db)):
    counts = dict(
        db.query(MpesaTransaction.status, func.count(MpesaTransaction.id))
        .group_by(MpesaTransaction.status)
        .all()
    )
    completed_amount = (
        db.query(func.coalesce(func.sum(MpesaTransaction.amount), 0))
        .filter(MpesaTransaction.status == MpesaTransactionStatus.COMPLETED)
        .scalar()
        or 0
    )

    def _count(status: MpesaTransactionStatus) -> int:
        return int(counts.get(status, 0) or 0)

    return {
        "orders": order_stats(db),
        "transactions": {
            "total": sum(int(v or 0) for v in counts.values()),
            "completed": _count(MpesaTransactionStatus.COMPLETED),
            "pending": _count(MpesaTransactionStatus.PENDING),
            "unsuccessful": _count(MpesaTransactionStatus.FAILED) + _count(MpesaTransactionStatus.CANCELLED),
            "completed_amount": int(completed_amount),
        },
    }


@router.patch("/products/{slug}", response_model=ProductOut)
def update_product(
    slug: str,
    payload: ProductUpdate,
    admin=Depends(require_admin),
    db: Session = Depends(get_db),
):
    product = db.query(Product).filter(Product.slug == slug).first()
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    if payload.price is not None:
        product.price = payload.price
    if payload.original_price is not None:
        product.original_price = payload.original_price
    if payload.is_active is not None:
        product.is_active = payload.is_active
    db.commit()
    db.refresh(product)
    invalidate_catalog()
    return product_to_dict(product)
