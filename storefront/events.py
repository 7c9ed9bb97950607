"""Event definitions for booking, payment and order changes."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Event types published by the storefront."""

    # Booking events
    BOOKING_CREATED = "booking.created"
    BOOKING_APPROVED = "booking.approved"
    BOOKING_REJECTED = "booking.rejected"
    BOOKING_EXPIRED = "booking.expired"
    BOOKING_EXTENDED = "booking.extended"

    # Payment events
    PAYMENT_COMPLETED = "payment.completed"
    PAYMENT_SUBMITTED = "payment.submitted"
    PAYMENT_APPROVED = "payment.approved"
    PAYMENT_REJECTED = "payment.rejected"

    # Order events
    ORDER_STATUS_CHANGED = "order.status_changed"
    INVOICE_CREATED = "invoice.created"


class BaseEvent(BaseModel):
    """Base event model with common fields."""

    event_id: UUID = Field(default_factory=uuid4)
    event_type: EventType
    aggregate_id: UUID  # ID of the main entity (booking or order)
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    version: int = Field(default=1)
    correlation_id: UUID  # Booking id, for tracing one purchase end to end
    causation_id: Optional[UUID] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


# Booking Events
class BookingCreatedEvent(BaseEvent):
    """Event emitted when a product is reserved."""
    event_type: EventType = EventType.BOOKING_CREATED
    booking_id: UUID
    product_id: UUID
    user_id: Optional[UUID] = None
    expires_at: datetime
    approval_status: str


class BookingApprovedEvent(BaseEvent):
    """Event emitted when an admin approves a booking."""
    event_type: EventType = EventType.BOOKING_APPROVED
    booking_id: UUID
    product_id: UUID
    user_id: Optional[UUID] = None


class BookingRejectedEvent(BaseEvent):
    """Event emitted when an admin rejects a booking and the unit is returned."""
    event_type: EventType = EventType.BOOKING_REJECTED
    booking_id: UUID
    product_id: UUID
    user_id: Optional[UUID] = None
    notes: Optional[str] = None


class BookingExpiredEvent(BaseEvent):
    """Event emitted by the expiry sweep."""
    event_type: EventType = EventType.BOOKING_EXPIRED
    booking_id: UUID
    product_id: UUID
    user_id: Optional[UUID] = None
    expired_at: datetime


class BookingExtendedEvent(BaseEvent):
    """Event emitted when an admin extends the payment window."""
    event_type: EventType = EventType.BOOKING_EXTENDED
    booking_id: UUID
    user_id: Optional[UUID] = None
    expires_at: datetime


# Payment Events
class PaymentCompletedEvent(BaseEvent):
    """Event emitted when an online payment completes a booking."""
    event_type: EventType = EventType.PAYMENT_COMPLETED
    order_id: UUID
    booking_id: UUID
    user_id: Optional[UUID] = None
    amount: float


class PaymentSubmittedEvent(BaseEvent):
    """Event emitted when a bank-transfer slip is submitted for review."""
    event_type: EventType = EventType.PAYMENT_SUBMITTED
    order_id: UUID
    booking_id: UUID
    user_id: Optional[UUID] = None
    amount: float
    payment_slip_url: Optional[str] = None


class PaymentApprovedEvent(BaseEvent):
    """Event emitted when an admin accepts a bank-transfer payment."""
    event_type: EventType = EventType.PAYMENT_APPROVED
    order_id: UUID
    booking_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    amount: float


class PaymentRejectedEvent(BaseEvent):
    """Event emitted when an admin rejects a bank-transfer payment."""
    event_type: EventType = EventType.PAYMENT_REJECTED
    order_id: UUID
    booking_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    reason: str
    stock_returned: bool


# Order Events
class OrderStatusChangedEvent(BaseEvent):
    """Event emitted when an admin moves an order along."""
    event_type: EventType = EventType.ORDER_STATUS_CHANGED
    order_id: UUID
    user_id: Optional[UUID] = None
    previous_status: str
    status: str
    tracking_number: Optional[str] = None


class InvoiceCreatedEvent(BaseEvent):
    """Event emitted when an invoice is issued."""
    event_type: EventType = EventType.INVOICE_CREATED
    invoice_id: UUID
    order_id: UUID
    invoice_number: str
    total: float


# Event Registry for deserialization
EVENT_REGISTRY: Dict[EventType, type[BaseEvent]] = {
    EventType.BOOKING_CREATED: BookingCreatedEvent,
    EventType.BOOKING_APPROVED: BookingApprovedEvent,
    EventType.BOOKING_REJECTED: BookingRejectedEvent,
    EventType.BOOKING_EXPIRED: BookingExpiredEvent,
    EventType.BOOKING_EXTENDED: BookingExtendedEvent,

    EventType.PAYMENT_COMPLETED: PaymentCompletedEvent,
    EventType.PAYMENT_SUBMITTED: PaymentSubmittedEvent,
    EventType.PAYMENT_APPROVED: PaymentApprovedEvent,
    EventType.PAYMENT_REJECTED: PaymentRejectedEvent,

    EventType.ORDER_STATUS_CHANGED: OrderStatusChangedEvent,
    EventType.INVOICE_CREATED: InvoiceCreatedEvent,
}


def deserialize_event(event_data: Dict[str, Any]) -> BaseEvent:
    """Deserialize event from dictionary."""
    event_type = EventType(event_data["event_type"])
    event_class = EVENT_REGISTRY.get(event_type, BaseEvent)
    return event_class(**event_data)
