"""Catalogue browsing helpers used by the storefront pages."""
from typing import Dict, Iterable, List, Optional

from schemas import Category, Product


def active_categories(categories: Iterable[Category]) -> List[Category]:
    return [c for c in categories if c.is_active]


def filter_products(products: Iterable[Product], search: str = "", category_id: Optional[str] = None) -> List[Product]:
    """Case-insensitive match on name or description, optionally within one category."""
    term = (search or "").lower()
    return [
        p for p in products
        if (term in p.name.lower() or term in p.description.lower())
        and (not category_id or p.category_id == category_id)
    ]


def featured_products(products: Iterable[Product]) -> List[Product]:
    return [p for p in products if p.is_featured and p.is_available]


def products_by_category(categories: Iterable[Category], products: Iterable[Product]) -> Dict[str, List[Product]]:
    # Empty sections are dropped, like the menu page does
    products = list(products)
    grouped = {}
    for category in active_categories(categories):
        items = [p for p in products if p.category_id == category.id]
        if items:
            grouped[category.id] = items
    return grouped
