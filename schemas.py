# --- Модели Pydantic, общие для сервисов и роутеров ---
# Модели, которые нужны только одному роутеру, живут рядом с ним.
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    brand: str
    description: Optional[str] = None
    price: float
    size: str
    color: str
    images: List[str] = []
    quantity_in_stock: int
    # Остаток минус свежие резервы чужих корзин, не меньше нуля
    available_quantity: int
    gender: Optional[str] = None
    condition: Optional[str] = None
    published_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class CartItemOut(BaseModel):
    id: int
    session_id: str
    product_id: int
    product_name: str
    product_brand: str
    product_size: str
    product_color: str
    product_price: float
    product_images: List[str] = []
    quantity: int
    created_at: datetime
    updated_at: datetime


class CartAddRequest(BaseModel):
    session_id: str
    product_id: int
    quantity: int = 1


class CartUpdateRequest(BaseModel):
    quantity: int


class OrderItemIn(BaseModel):
    product_id: int
    quantity: int


class OrderCreate(BaseModel):
    user_id: Optional[int] = None
    # Корзина этой сессии очищается после оформления
    session_id: Optional[str] = None
    customer_name: str = Field(min_length=1)
    customer_phone: str = Field(min_length=1)
    customer_email: Optional[str] = None
    customer_address: Optional[str] = None
    delivery_method: Optional[str] = None
    comment: Optional[str] = None
    items: List[OrderItemIn] = Field(min_length=1)


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    product_name: str
    product_price: float
    quantity: int


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: Optional[int] = None
    order_number: str
    customer_name: str
    customer_phone: str
    customer_email: Optional[str] = None
    customer_address: Optional[str] = None
    delivery_method: Optional[str] = None
    comment: Optional[str] = None
    total_amount: float
    status: str
    created_at: datetime
    updated_at: datetime
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    items: List[OrderItemOut] = []


class OrderStatistics(BaseModel):
    total_orders: int
    pending_orders: int
    awaiting_payment_orders: int
    in_transit_orders: int
    delivered_orders: int
    cancelled_orders: int
    total_revenue: float
    pending_revenue: float


class AnnouncementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    message: str
    scheduled_at: datetime
    product_ids: List[int] = []
    collage_images: List[str] = []
    is_sent: bool
    sent_at: Optional[datetime] = None
    sent_count: int
    created_at: datetime
