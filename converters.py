"""Gateway row -> entity conversion.

Rows are passed through field by field. Optional fields missing from a row
become None. Required fields are looked up directly, so a malformed row raises
(KeyError or pydantic's ValidationError) where it is consumed.
"""
from schemas import Category, Product, StoreConfig


def convert_store_config(row: dict) -> StoreConfig:
    return StoreConfig(
        id=row["id"],
        store_name=row["store_name"],
        whatsapp_number=row["whatsapp_number"],
        address=row["address"],
        delivery_fee=row["delivery_fee"],
        is_open=row["is_open"],
        opening_hours=row.get("opening_hours") or {},
        banner_image_url=row.get("banner_image_url"),
        banner_text=row.get("banner_text"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def convert_category(row: dict) -> Category:
    return Category(
        id=row["id"],
        name=row["name"],
        description=row.get("description"),
        order_index=row["order_index"],
        is_active=row["is_active"],
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def convert_product(row: dict) -> Product:
    return Product(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        price=row["price"],
        image_url=row.get("image_url"),
        category_id=row["category_id"],
        is_available=row["is_available"],
        is_featured=row["is_featured"],
        preparation_time=row.get("preparation_time"),
        order_index=row["order_index"],
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )
