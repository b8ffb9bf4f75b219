from typing import Optional

from pydantic import BaseModel, Field


class ProductOut(BaseModel):
    id: int
    slug: str
    name: str
    description: str
    category: str
    price: int
    original_price: Optional[int] = None
    condition: Optional[str] = None
    image_url: Optional[str] = None
    warranty: Optional[str] = None
    is_active: bool = True


class CategoryOut(BaseModel):
    slug: str
    name: str
    product_count: int


class ProductUpdate(BaseModel):
    price: Optional[int] = Field(default=None, gt=0)
    original_price: Optional[int] = Field(default=None, gt=0)
    is_active: Optional[bool] = None
