"""
API Schemas

Bookstore order, invoice and promotion models.
Request models are validated by FastAPI; response models are built from
the SQLAlchemy rows in models.py (from_attributes).
"""
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import DiscountType, OrderStatus


class LineIn(BaseModel):
    item_id: int = Field(..., description="Book id")
    quantity: int = Field(..., description="Number of copies, must be > 0")
    unit_price: Optional[int] = Field(None, description="Ignored: price is read from the catalog")


class ShippingInfo(BaseModel):
    shipping_method_id: int
    shipping_address: str = Field(..., min_length=1)
    payment_method: Optional[str] = Field(None, description="e.g. 'cod', 'bank_transfer'")


class OrderCreate(ShippingInfo):
    user_id: Optional[int] = Field(None, description="Owner; the X-User-Id header takes precedence")
    promotion_code: Optional[str] = None
    lines: List[LineIn]


class AssignShipperRequest(BaseModel):
    shipper_id: Optional[int] = None


class InvoiceCreate(BaseModel):
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    promotion_code: Optional[str] = None
    lines: List[LineIn]


class PromotionIn(BaseModel):
    name: str
    type: DiscountType
    discount: int = Field(..., description="Percent (1-100) or fixed amount")
    start_date: date
    end_date: date = Field(..., description="Inclusive")
    min_price: Optional[int] = Field(None, description="Minimum order total")
    quantity: Optional[int] = Field(None, description="Usage quota, null for unlimited")
    used_quantity: Optional[int] = None
    item_ids: Optional[List[int]] = Field(None, description="Books the promotion is scoped to")


# ----- Responses -----

class LineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    book_id: int
    quantity: int
    unit_price: int


class AssignmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    shipper_id: int
    assigned_by: int
    assigned_at: datetime
    completion_date: Optional[datetime] = None


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    order_date: datetime
    status: OrderStatus
    shipping_method_id: Optional[int] = None
    shipping_address: str
    payment_method: Optional[str] = None
    promotion_code: Optional[str] = None
    total_amount: int
    shipping_fee: int
    discount_amount: int
    final_amount: int
    lines: List[LineOut] = []
    assignment: Optional[AssignmentOut] = None


class OrderPage(BaseModel):
    orders: List[OrderOut]
    total: int


class InvoiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    total_amount: int
    discount_amount: int
    final_amount: int
    promotion_code: Optional[str] = None
    created_by: int
    created_at: datetime
    lines: List[LineOut] = []


class PromotionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    promotion_code: str
    name: str
    type: DiscountType
    discount: int
    start_date: date
    end_date: date
    min_price: Optional[int] = None
    quantity: Optional[int] = None
    used_quantity: int
    item_ids: List[int] = []


class PromotionCheckOut(BaseModel):
    promotion_id: int
    promotion_code: str
    name: str
    type: DiscountType
    discount: int
    discount_amount: int
    final_amount: int
