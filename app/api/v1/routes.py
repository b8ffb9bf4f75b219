from fastapi import APIRouter
from app.api.v1.endpoints import admin, catalog, mpesa, orders

router = APIRouter()

router.include_router(mpesa.router, prefix="/mpesa", tags=["mpesa"])
router.include_router(orders.router, prefix="/orders", tags=["orders"])
router.include_router(catalog.router, prefix="/products", tags=["catalog"])
router.include_router(admin.router, prefix="/admin", tags=["admin"])
