from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.middlewares.rate_limit import limiter
from app.schemas.order import OrderCreate, OrderOut
from app.services.email import notify_new_order
from app.services.orders import create_pay_on_delivery_order, order_email_payload

router = APIRouter()


@router.post("", response_model=OrderOut, status_code=201)
@limiter.limit("10/minute")
def place_order(
    request: Request,
    payload: OrderCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    order = create_pay_on_delivery_order(db, payload)
    background_tasks.add_task(notify_new_order, order_email_payload(order))
    return order
