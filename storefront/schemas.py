"""Response models shared by the HTTP services."""
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class ProductResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str]
    price: float
    discounted_price: Optional[float]
    image_url: Optional[str]
    category: str
    stock: int
    status: str
    max_booking_per_user: int
    created_at: datetime

    class Config:
        from_attributes = True


class BookingResponse(BaseModel):
    id: UUID
    product_id: UUID
    user_id: Optional[UUID]
    booked_at: datetime
    expires_at: datetime
    status: str
    approval_status: str
    admin_notes: Optional[str]

    class Config:
        from_attributes = True


class BookedProductResponse(BaseModel):
    """A product and its most recent pending booking."""
    product: ProductResponse
    booking: Optional[BookingResponse] = None


class BookingListItem(BaseModel):
    booking: BookingResponse
    product_name: str
    customer_email: str


class BookingLimitResponse(BaseModel):
    can_book: bool
    current_bookings: int
    max_bookings: int
    message: Optional[str] = None

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: UUID
    booking_id: Optional[UUID]
    user_id: Optional[UUID]
    total_amount: float
    status: str
    payment_method: str
    payment_slip_url: Optional[str]
    payment_approval_status: str
    payment_approved_at: Optional[datetime]
    shipping_address: Optional[str]
    tracking_number: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class OrderDetailResponse(BaseModel):
    order: OrderResponse
    product_name: str
    booking_expires_at: Optional[datetime] = None
    customer_name: Optional[str] = None
    customer_email: str


class PendingPaymentResponse(BaseModel):
    order: OrderResponse
    product_name: str
    customer_name: str


class InvoiceResponse(BaseModel):
    id: UUID
    order_id: UUID
    invoice_number: str
    invoice_date: datetime
    due_date: datetime
    subtotal: float
    tax: float
    total: float
    status: str
    notes: Optional[str]

    class Config:
        from_attributes = True


class InvoiceDetailResponse(BaseModel):
    invoice: InvoiceResponse
    order: OrderResponse
    product: Optional[ProductResponse] = None


class InvoiceSummaryResponse(BaseModel):
    invoice: InvoiceResponse
    product_name: str


class UserResponse(BaseModel):
    id: UUID
    email: str
    full_name: Optional[str]
    role: str
    is_blocked: bool
    created_at: datetime

    class Config:
        from_attributes = True
