from datetime import datetime
from pydantic import BaseModel
from typing import List, Optional


class OrderItemOut(BaseModel):
    id: str
    product_id: str
    variant_id: Optional[str] = None
    variant_name: Optional[str] = None
    product_name: str
    quantity: int
    price: float

    class Config:
        from_attributes = True


class OrderSummaryOut(BaseModel):
    id: str
    order_number: str
    status: str
    total_amount: float
    items_count: int
    payment_method: str
    created_at: datetime

    class Config:
        from_attributes = True


class OrderOut(OrderSummaryOut):
    shipping_address: str
    shipping_address_id: Optional[str] = None
    delivery_method: Optional[str] = None
    discount_code: Optional[str] = None
    payment_transaction_id: Optional[str] = None
    items: List[OrderItemOut]


class DeliveryMethodOut(BaseModel):
    id: str
    price: float
