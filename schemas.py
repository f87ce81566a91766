"""
Storefront Schemas

Pydantic models for the three mirrored tables (store_config, categories,
products), the session-local cart, the checkout order and the change-feed
event envelope.

Entity models describe rows as they come back from the gateway. The *Create /
*Update models validate what the admin surface sends before it is written.
"""
from datetime import datetime
from pydantic import BaseModel, Field
from typing import Dict, Optional, List

STORE_CONFIG = "store_config"
CATEGORIES = "categories"
PRODUCTS = "products"
TABLES = (STORE_CONFIG, CATEGORIES, PRODUCTS)

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"


class DayHours(BaseModel):
    open: str = Field(..., description="Opening time, HH:MM")
    close: str = Field(..., description="Closing time, HH:MM")
    closed: bool = Field(False, description="Closed all day")


class StoreConfig(BaseModel):
    id: str
    store_name: str = Field(..., description="Display name")
    whatsapp_number: str = Field(..., description="Number orders are sent to")
    address: str = Field(..., description="Store address")
    delivery_fee: float = Field(..., description="Flat delivery fee")
    is_open: bool = Field(..., description="Open/closed switch")
    opening_hours: Dict[str, DayHours] = Field(default_factory=dict, description="Weekday name -> hours")
    banner_image_url: Optional[str] = Field(None, description="Banner image reference")
    banner_text: Optional[str] = Field(None, description="Banner caption")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Category(BaseModel):
    id: str
    name: str = Field(..., description="Category name")
    description: Optional[str] = Field(None, description="Short description")
    order_index: int = Field(..., description="Display position, ascending")
    is_active: bool = Field(..., description="Shown on the menu")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Product(BaseModel):
    id: str
    name: str = Field(..., description="Product name")
    description: str = Field(..., description="Product description")
    price: float = Field(..., description="Unit price")
    image_url: Optional[str] = Field(None, description="Image reference")
    category_id: str = Field(..., description="ID of the category this product belongs to")
    is_available: bool = Field(..., description="Can be ordered")
    is_featured: bool = Field(..., description="Highlighted on the menu")
    preparation_time: Optional[int] = Field(None, description="Estimated minutes")
    order_index: int = Field(..., description="Display position within the category")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Admin payloads

class StoreConfigUpdate(BaseModel):
    store_name: Optional[str] = None
    whatsapp_number: Optional[str] = None
    address: Optional[str] = None
    delivery_fee: Optional[float] = Field(None, ge=0)
    is_open: Optional[bool] = None
    opening_hours: Optional[Dict[str, DayHours]] = None
    banner_image_url: Optional[str] = None
    banner_text: Optional[str] = None


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    order_index: Optional[int] = Field(None, description="Defaults to category count + 1")
    is_active: bool = True


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    order_index: Optional[int] = None
    is_active: Optional[bool] = None


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    price: float = Field(..., gt=0)
    image_url: Optional[str] = None
    category_id: str
    is_available: bool = True
    is_featured: bool = False
    preparation_time: Optional[int] = Field(None, ge=0)
    order_index: Optional[int] = Field(None, description="Defaults to product count + 1")


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, gt=0)
    image_url: Optional[str] = None
    category_id: Optional[str] = None
    is_available: Optional[bool] = None
    is_featured: Optional[bool] = None
    preparation_time: Optional[int] = Field(None, ge=0)
    order_index: Optional[int] = None


# Cart and checkout

class CartItem(BaseModel):
    product: Product = Field(..., description="Product as it was when added")
    quantity: int = Field(..., ge=1)
    notes: Optional[str] = None

    @property
    def line_total(self) -> float:
        return self.product.price * self.quantity


class CustomerDetails(BaseModel):
    customer_name: str = Field(..., min_length=1, description="Customer full name")
    customer_phone: str = Field(..., min_length=1, description="Contact number")
    delivery_address: Optional[str] = Field(None, description="Delivery address")
    notes: Optional[str] = Field(None, description="Order-level notes")


class Order(BaseModel):
    items: List[CartItem] = Field(..., description="Cart snapshot")
    customer_name: str
    customer_phone: str
    delivery_address: Optional[str] = None
    notes: Optional[str] = None
    subtotal: float = Field(..., ge=0)
    delivery_fee: float = Field(..., ge=0)
    total: float = Field(..., ge=0)


# Change feed

class ChangeEvent(BaseModel):
    table: str
    type: str = Field(..., description="INSERT | UPDATE | DELETE; anything else is ignored")
    new: Optional[dict] = None
    old: Optional[dict] = None
