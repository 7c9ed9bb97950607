"""Database models for the storefront."""
from datetime import datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    case,
)

from .database import Base

LOW_STOCK_THRESHOLD = 5


class ProductStatus(str, Enum):
    """Product availability status."""
    IN_STOCK = "in-stock"
    LOW_STOCK = "low-stock"
    OUT_OF_STOCK = "out-of-stock"
    BOOKED = "booked"


class BookingStatus(str, Enum):
    """Booking lifecycle status. Everything but PENDING is terminal."""
    PENDING = "pending"
    PAID = "paid"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class ApprovalStatus(str, Enum):
    """Admin decision on a booking or a bank-transfer payment."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class OrderStatus(str, Enum):
    """Order fulfilment status."""
    PENDING = "pending"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    """How the customer pays for a booking."""
    ONLINE = "online"
    BANK_TRANSFER = "bank_transfer"


class InvoiceStatus(str, Enum):
    """Invoice payment status, mirrors the order."""
    PAID = "paid"
    UNPAID = "unpaid"


class UserRole(str, Enum):
    """Profile role."""
    ADMIN = "admin"
    USER = "user"


def derive_product_status(stock: int) -> ProductStatus:
    """Status implied by a stock level."""
    if stock <= 0:
        return ProductStatus.OUT_OF_STOCK
    if stock <= LOW_STOCK_THRESHOLD:
        return ProductStatus.LOW_STOCK
    return ProductStatus.IN_STOCK


def stock_status_expression(stock_expr):
    """SQL twin of derive_product_status for single-statement updates."""
    return case(
        (stock_expr <= 0, ProductStatus.OUT_OF_STOCK.value),
        (stock_expr <= LOW_STOCK_THRESHOLD, ProductStatus.LOW_STOCK.value),
        else_=ProductStatus.IN_STOCK.value,
    )


class Product(Base):
    """Inventory ledger entry for a phone."""

    __tablename__ = "products"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    price = Column(Float, nullable=False)
    discounted_price = Column(Float, nullable=True)
    image_url = Column(Text, nullable=True)
    category = Column(String(50), nullable=False, default="mobile")

    stock = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=ProductStatus.OUT_OF_STOCK.value)
    max_booking_per_user = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        Index("ix_products_name", "name"),
        Index("ix_products_status_created", "status", "created_at"),
    )

    @property
    def sale_price(self) -> float:
        return self.discounted_price or self.price


class Booking(Base):
    """Time-limited reservation of one unit of a product."""

    __tablename__ = "bookings"

    id = Column(Uuid, primary_key=True, default=uuid4)
    product_id = Column(Uuid, ForeignKey("products.id"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True)

    booked_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    status = Column(String(20), default=BookingStatus.PENDING.value, nullable=False)
    approval_status = Column(String(20), default=ApprovalStatus.PENDING.value, nullable=False)
    admin_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_bookings_status_expires", "status", "expires_at"),
        Index("ix_bookings_product_status", "product_id", "status"),
    )


class Order(Base):
    """Order created once payment is completed or a slip is submitted."""

    __tablename__ = "orders"

    id = Column(Uuid, primary_key=True, default=uuid4)
    booking_id = Column(Uuid, ForeignKey("bookings.id"), nullable=True, index=True)
    user_id = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True)

    total_amount = Column(Float, nullable=False)
    status = Column(String(20), default=OrderStatus.PENDING.value, nullable=False, index=True)
    payment_method = Column(String(20), nullable=False)
    payment_slip_url = Column(Text, nullable=True)
    payment_approval_status = Column(String(20), default=ApprovalStatus.PENDING.value, nullable=False)
    payment_approved_at = Column(DateTime, nullable=True)
    payment_approved_by = Column(Uuid, nullable=True)
    shipping_address = Column(Text, nullable=True)
    tracking_number = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_orders_status_created", "status", "created_at"),
        Index("ix_orders_method_approval", "payment_method", "payment_approval_status"),
    )


class Invoice(Base):
    """Invoice issued on demand for an order."""

    __tablename__ = "invoices"

    id = Column(Uuid, primary_key=True, default=uuid4)
    order_id = Column(Uuid, ForeignKey("orders.id"), nullable=False, unique=True)
    invoice_number = Column(String(20), nullable=False, unique=True)
    invoice_date = Column(DateTime, nullable=False)
    due_date = Column(DateTime, nullable=False)
    subtotal = Column(Float, nullable=False)
    tax = Column(Float, nullable=False, default=0.0)
    total = Column(Float, nullable=False)
    status = Column(String(20), nullable=False)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Profile(Base):
    """Mirror of an identity-provider account."""

    __tablename__ = "profiles"

    id = Column(Uuid, primary_key=True)
    email = Column(String(255), nullable=False, unique=True)
    full_name = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.USER.value)
    is_blocked = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class SystemSettings(Base):
    """Singleton row of admin-editable booking settings."""

    __tablename__ = "system_settings"

    id = Column(Integer, primary_key=True, default=1)
    payment_timeout_hours = Column(Integer, nullable=False, default=24)
    allow_duplicate_bookings = Column(Boolean, nullable=False, default=False)
    default_approval_required = Column(Boolean, nullable=False, default=True)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
