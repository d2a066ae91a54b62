# Overview: Read-only product lookups for the register (search, barcode scan, SKU entry).

from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import Product
from ..validation import NotFoundError, ValidationError


SEARCH_LIMIT_MAX = 100


def search_products(query: str, limit: int = 20) -> list[Product]:
    """
    Case-insensitive match on name, SKU or barcode, active products only.

    Exact SKU/barcode hits are not ranked separately; results are ordered by name.
    """
    q = (query or "").strip()
    if not q:
        raise ValidationError("q is required", details={"field": "q"})
    limit = max(1, min(limit or 20, SEARCH_LIMIT_MAX))

    pattern = f"%{q}%"
    return (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            or_(
                Product.name.ilike(pattern),
                Product.sku.ilike(pattern),
                Product.barcode.ilike(pattern),
            ),
        )
        .order_by(Product.name.asc(), Product.id.asc())
        .limit(limit)
        .all()
    )


def get_product_by_barcode(barcode: str) -> Product:
    product = (
        db.session.query(Product)
        .filter(Product.barcode == barcode.strip(), Product.is_active.is_(True))
        .first()
    )
    if not product:
        raise NotFoundError(f"No product with barcode {barcode}")
    return product


def get_product_by_sku(sku: str) -> Product:
    product = (
        db.session.query(Product)
        .filter(Product.sku == sku.strip(), Product.is_active.is_(True))
        .first()
    )
    if not product:
        raise NotFoundError(f"No product with SKU {sku}")
    return product
