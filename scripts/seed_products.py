from app.core.database import SessionLocal
from app.models import Product, ProductCondition
from app.services.catalog import invalidate_catalog


SAMPLE_PRODUCTS = [
    {
        "slug": "iphone-13-128gb-xuk",
        "name": "iPhone 13 128GB",
        "category": "phones",
        "price": 62000,
        "original_price": 70000,
        "condition": ProductCondition.EX_UK,
        "warranty": "6 months",
    },
    {
        "slug": "samsung-galaxy-a54",
        "name": "Samsung Galaxy A54",
        "category": "phones",
        "price": 41500,
        "condition": ProductCondition.NEW,
        "warranty": "12 months",
    },
    {
        "slug": "hp-elitebook-840-g6",
        "name": "HP EliteBook 840 G6",
        "category": "laptops",
        "price": 38000,
        "condition": ProductCondition.REFURBISHED,
        "warranty": "3 months",
    },
    {
        "slug": "jbl-tune-510bt",
        "name": "JBL Tune 510BT",
        "category": "headphones-audio",
        "price": 5500,
        "condition": ProductCondition.NEW,
    },
    {
        "slug": "hisense-43-inch-smart-tv",
        "name": "Hisense 43\" Smart TV",
        "category": "tv-audio",
        "price": 32000,
        "condition": ProductCondition.NEW,
    },
]


def main():
    db = SessionLocal()
    try:
        for item in SAMPLE_PRODUCTS:
            existing = db.query(Product).filter(Product.slug == item["slug"]).first()
            if not existing:
                db.add(Product(**item))
        db.commit()
    finally:
        db.close()
    invalidate_catalog()


if __name__ == "__main__":
    main()
