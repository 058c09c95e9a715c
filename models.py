"""
Relational tables

Monetary amounts are whole units of the store currency (VND), so every
money column is an Integer.
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import relationship, synonym

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DELIVERING = "delivering"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class DiscountType(str, enum.Enum):
    PERCENT = "percent"
    FIXED = "fixed"


def _enum_column(enum_cls, **kwargs) -> Column:
    return Column(
        Enum(enum_cls, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        **kwargs,
    )


promotion_items = Table(
    "promotion_items",
    Base.metadata,
    Column("promotion_id", Integer, ForeignKey("promotions.id", ondelete="CASCADE"), primary_key=True),
    Column("book_id", Integer, ForeignKey("books.id", ondelete="CASCADE"), primary_key=True),
)


class CatalogItem(Base):
    __tablename__ = "books"
    __table_args__ = (
        CheckConstraint("quantity_in_stock >= 0", name="ck_books_stock_non_negative"),
        CheckConstraint("price >= 0", name="ck_books_price_non_negative"),
    )

    id = Column(Integer, primary_key=True)
    title = Column(String(255), nullable=False)
    author = Column(String(255), nullable=True)
    price = Column(Integer, nullable=False)
    quantity_in_stock = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"CatalogItem(id={self.id!r}, title={self.title!r}, stock={self.quantity_in_stock!r})"


class ShippingMethod(Base):
    __tablename__ = "shipping_methods"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    fee = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)


class Promotion(Base):
    __tablename__ = "promotions"
    __table_args__ = (
        CheckConstraint("used_quantity >= 0", name="ck_promotions_used_non_negative"),
        CheckConstraint(
            "quantity IS NULL OR used_quantity <= quantity",
            name="ck_promotions_used_within_quota",
        ),
        CheckConstraint("start_date <= end_date", name="ck_promotions_window"),
    )

    id = Column(Integer, primary_key=True)
    promotion_code = Column(String(20), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    type = _enum_column(DiscountType, nullable=False)
    discount = Column(Integer, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    min_price = Column(Integer, nullable=True)
    # NULL quota means unlimited
    quantity = Column(Integer, nullable=True)
    used_quantity = Column(Integer, nullable=False, default=0)

    items = relationship("CatalogItem", secondary=promotion_items, lazy="selectin")

    @property
    def item_ids(self):
        return sorted(item.id for item in self.items)


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=False, index=True)
    order_date = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    shipping_method_id = Column(Integer, ForeignKey("shipping_methods.id", ondelete="SET NULL"), nullable=True)
    shipping_address = Column(Text, nullable=False)
    payment_method = Column(String(50), nullable=True)
    promotion_code = Column(String(20), nullable=True)
    total_amount = Column(Integer, nullable=False)
    shipping_fee = Column(Integer, nullable=False, default=0)
    discount_amount = Column(Integer, nullable=False, default=0)
    final_amount = Column(Integer, nullable=False)
    status = _enum_column(OrderStatus, nullable=False, default=OrderStatus.PENDING, index=True)

    lines = relationship(
        "OrderLine", back_populates="order", cascade="all, delete-orphan", lazy="selectin", order_by="OrderLine.id"
    )
    assignment = relationship(
        "OrderAssignment", back_populates="order", cascade="all, delete-orphan", uselist=False, lazy="selectin"
    )


class OrderLine(Base):
    __tablename__ = "order_details"
    __table_args__ = (CheckConstraint("quantity > 0", name="ck_order_details_quantity_positive"),)

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    # frozen at purchase time
    unit_price = Column(Integer, nullable=False)
    item_id = synonym("book_id")

    order = relationship("Order", back_populates="lines")


class OrderAssignment(Base):
    __tablename__ = "order_assignments"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True)
    shipper_id = Column(Integer, nullable=False, index=True)
    assigned_by = Column(Integer, nullable=False)
    assigned_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completion_date = Column(DateTime(timezone=True), nullable=True)

    order = relationship("Order", back_populates="assignment")


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True)
    customer_name = Column(String(255), nullable=True)
    customer_phone = Column(String(20), nullable=True)
    total_amount = Column(Integer, nullable=False)
    discount_amount = Column(Integer, nullable=False, default=0)
    final_amount = Column(Integer, nullable=False)
    promotion_code = Column(String(20), nullable=True)
    created_by = Column(Integer, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    lines = relationship(
        "InvoiceLine", back_populates="invoice", cascade="all, delete-orphan", lazy="selectin", order_by="InvoiceLine.id"
    )


class InvoiceLine(Base):
    __tablename__ = "invoice_details"
    __table_args__ = (CheckConstraint("quantity > 0", name="ck_invoice_details_quantity_positive"),)

    id = Column(Integer, primary_key=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Integer, nullable=False)
    item_id = synonym("book_id")

    invoice = relationship("Invoice", back_populates="lines")
