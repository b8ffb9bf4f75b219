import enum
from sqlalchemy import Column, Integer, String, Boolean, Enum, Index, Text
from app.core.database import Base
from app.models.base import TimestampMixin


class ProductCondition(str, enum.Enum):
    NEW = "new"
    REFURBISHED = "refurbished"
    EX_UK = "x-uk"
    EX_US = "x-us"


class Product(Base, TimestampMixin):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(128), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(String(64), nullable=False)
    price = Column(Integer, nullable=False)
    original_price = Column(Integer, nullable=True)
    condition = Column(
        Enum(
            ProductCondition,
            native_enum=False,
            values_callable=lambda members: [m.value for m in members],
            name="product_condition",
        ),
        nullable=False,
        default=ProductCondition.NEW,
    )
    image_url = Column(String(500), nullable=True)
    warranty = Column(String(128), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)


Index("ix_products_category_active", Product.category, Product.is_active)
