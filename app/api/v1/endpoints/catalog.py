from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.models import Product
from app.schemas.catalog import CategoryOut, ProductOut
from app.services.catalog import list_categories, list_products, product_to_dict

router = APIRouter()


@router.get("", response_model=list[ProductOut])
def get_products(category: Optional[str] = None, db: Session = Depends(get_db)):
    return list_products(db, category)


@router.get("/categories", response_model=list[CategoryOut])
def get_categories(db: Session = Depends(get_db)):
    return list_categories(db)


@router.get("/{slug}", response_model=ProductOut)
def get_product(slug: str, db: Session = Depends(get_db)):
    product = db.query(Product).filter(Product.slug == slug, Product.is_active == True).first()  # noqa: E712
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product_to_dict(product)
