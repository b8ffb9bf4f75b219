from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.models import Product
from app.utils.cache import get_cached, invalidate_prefix, set_cached

settings = get_settings()

CATALOG_CACHE_PREFIX = "catalog:"

CATEGORY_LABELS = {
    "phones": "Phones",
    "laptops": "Laptops",
    "home-appliances": "Home Appliances",
    "tv-audio": "TV & Audio",
    "headphones-audio": "Headphones & Audio",
    "watches": "Watches",
    "gaming-accessories": "Gaming Accessories",
    "shoes": "Shoes",
    "gas-cookers": "Gas Cookers",
}


def _cache_key(category: str | None) -> str:
    return f"{CATALOG_CACHE_PREFIX}{category or '*'}"


def normalize_category(category: str | None) -> str | None:
    value = str(category or "").strip().lower()
    return value or None


def list_products(db: Session, category: str | None = None) -> list[dict]:
    category = normalize_category(category)
    cache_key = _cache_key(category)
    cached = get_cached(cache_key)
    if cached is not None:
        return cached

    query = db.query(Product).filter(Product.is_active == True)  # noqa: E712
    if category:
        query = query.filter(Product.category == category)
    items = [product_to_dict(p) for p in query.order_by(Product.name.asc()).all()]
    set_cached(cache_key, items, ttl_seconds=settings.catalog_cache_ttl_seconds)
    return items


def list_categories(db: Session) -> list[dict]:
    counts: dict[str, int] = {}
    for item in list_products(db):
        counts[item["category"]] = counts.get(item["category"], 0) + 1
    return [
        {"slug": slug, "name": CATEGORY_LABELS.get(slug, slug.replace("-", " ").title()), "product_count": count}
        for slug, count in sorted(counts.items())
    ]


def invalidate_catalog() -> int:
    return invalidate_prefix(CATALOG_CACHE_PREFIX)


def product_to_dict(product: Product) -> dict:
    return {
        "id": product.id,
        "slug": product.slug,
        "name": product.name,
        "description": product.description,
        "category": product.category,
        "price": product.price,
        "original_price": product.original_price,
        "condition": product.condition.value if product.condition else None,
        "image_url": product.image_url,
        "warranty": product.warranty,
        "is_active": product.is_active,
    }
