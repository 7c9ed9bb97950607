"""Notification Service FastAPI application."""
import logging
from contextlib import asynccontextmanager
from typing import List, Optional
from uuid import UUID

from fastapi import FastAPI
from sqlalchemy import select

from storefront.config import Settings
from storefront.database import Database
from storefront.events import (
    BaseEvent,
    BookingApprovedEvent,
    BookingCreatedEvent,
    BookingExpiredEvent,
    BookingRejectedEvent,
    EventType,
    OrderStatusChangedEvent,
    PaymentApprovedEvent,
    PaymentCompletedEvent,
    PaymentRejectedEvent,
    PaymentSubmittedEvent,
)
from storefront.message_broker import MessageBroker
from storefront.models import ApprovalStatus, Profile, UserRole

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Settings
settings = Settings(
    service_name="notification-service",
    service_port=8005,
)

# Database (read-only, for recipient lookup) and message broker
database = Database(settings.database_url)
message_broker = MessageBroker(settings.rabbitmq_url)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for the application."""

    # Startup
    logger.info("Starting Notification Service...")

    await message_broker.connect()
    await subscribe_to_events()

    logger.info("Notification Service started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Notification Service...")
    await message_broker.disconnect()
    await database.close()


app = FastAPI(title="Notification Service", lifespan=lifespan)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "notification-service"}


# Notification Logic
async def send_email(recipient: str, subject: str, body: str):
    """
    Send email notification.

    Delivery is logged; a mail provider would plug in here.
    """
    logger.info(f"[EMAIL] To: {recipient}")
    logger.info(f"[EMAIL] Subject: {subject}")
    logger.info(f"[EMAIL] Body: {body}")
    logger.info("-" * 60)


async def customer_email(user_id: Optional[UUID]) -> Optional[str]:
    """Email of the customer behind an event; guests have none."""
    if user_id is None:
        return None
    async with database.session_factory() as session:
        profile = await session.get(Profile, user_id)
        return profile.email if profile else None


async def admin_emails() -> List[str]:
    async with database.session_factory() as session:
        result = await session.execute(
            select(Profile.email).where(
                Profile.role == UserRole.ADMIN.value,
                Profile.is_blocked.is_(False),
            )
        )
        return list(result.scalars().all())


async def notify_customer(user_id: Optional[UUID], subject: str, body: str):
    recipient = await customer_email(user_id)
    if recipient is None:
        logger.info(f"No customer address for '{subject}', skipping email")
        return
    await send_email(recipient, subject, body)


async def notify_admins(subject: str, body: str):
    for recipient in await admin_emails():
        await send_email(recipient, subject, body)


# Event Handlers
async def handle_booking_created(event: BookingCreatedEvent):
    """Confirm the reservation; ask admins to review it when approval is pending."""
    deadline = event.expires_at.strftime("%Y-%m-%d %H:%M UTC")
    await notify_customer(
        event.user_id,
        "Booking Confirmed",
        f"Your booking {event.booking_id} is reserved. Please complete payment before {deadline}.",
    )
    if event.approval_status == ApprovalStatus.PENDING.value:
        await notify_admins(
            "Booking Awaiting Approval",
            f"Booking {event.booking_id} for product {event.product_id} needs review.",
        )


async def handle_booking_approved(event: BookingApprovedEvent):
    await notify_customer(
        event.user_id,
        "Booking Approved",
        f"Your booking {event.booking_id} has been approved. You can now complete payment.",
    )


async def handle_booking_rejected(event: BookingRejectedEvent):
    reason = f" Reason: {event.notes}" if event.notes else ""
    await notify_customer(
        event.user_id,
        "Booking Rejected",
        f"We're sorry, your booking {event.booking_id} was rejected.{reason}",
    )


async def handle_booking_expired(event: BookingExpiredEvent):
    await notify_customer(
        event.user_id,
        "Booking Expired",
        f"Your booking {event.booking_id} expired before payment was received "
        f"and the phone has been released.",
    )


async def handle_payment_completed(event: PaymentCompletedEvent):
    await notify_customer(
        event.user_id,
        "Payment Confirmed",
        f"Your payment of ${event.amount:.2f} has been received. Order ID: {event.order_id}",
    )


async def handle_payment_submitted(event: PaymentSubmittedEvent):
    await notify_customer(
        event.user_id,
        "Payment Received For Review",
        f"We received your bank transfer slip for order {event.order_id}. "
        f"You will be notified once it has been checked.",
    )
    await notify_admins(
        "Payment Slip Awaiting Review",
        f"Order {event.order_id} (${event.amount:.2f}) has a bank transfer slip to verify.",
    )


async def handle_payment_approved(event: PaymentApprovedEvent):
    await notify_customer(
        event.user_id,
        "Payment Approved",
        f"Your bank transfer of ${event.amount:.2f} for order {event.order_id} has been approved.",
    )


async def handle_payment_rejected(event: PaymentRejectedEvent):
    await notify_customer(
        event.user_id,
        "Payment Rejected",
        f"Your payment for order {event.order_id} was rejected. Reason: {event.reason}",
    )


async def handle_order_status_changed(event: OrderStatusChangedEvent):
    body = f"Your order {event.order_id} is now {event.status}."
    if event.tracking_number:
        body += f" Tracking number: {event.tracking_number}"
    await notify_customer(event.user_id, "Order Update", body)


async def log_all_events(event: BaseEvent):
    """Log all events for audit purposes."""
    logger.info(
        f"Event received: {event.event_type.value} "
        f"(id={event.event_id}, correlation={event.correlation_id})"
    )


HANDLERS = [
    (EventType.BOOKING_CREATED, "notification_service_booking_created", handle_booking_created),
    (EventType.BOOKING_APPROVED, "notification_service_booking_approved", handle_booking_approved),
    (EventType.BOOKING_REJECTED, "notification_service_booking_rejected", handle_booking_rejected),
    (EventType.BOOKING_EXPIRED, "notification_service_booking_expired", handle_booking_expired),
    (EventType.PAYMENT_COMPLETED, "notification_service_payment_completed", handle_payment_completed),
    (EventType.PAYMENT_SUBMITTED, "notification_service_payment_submitted", handle_payment_submitted),
    (EventType.PAYMENT_APPROVED, "notification_service_payment_approved", handle_payment_approved),
    (EventType.PAYMENT_REJECTED, "notification_service_payment_rejected", handle_payment_rejected),
    (EventType.ORDER_STATUS_CHANGED, "notification_service_order_status", handle_order_status_changed),
]


async def subscribe_to_events():
    """Subscribe to booking, payment and order events for notifications."""
    for event_type, queue_name, handler in HANDLERS:
        await message_broker.subscribe_to_event(event_type, queue_name, handler)

    # Subscribe to all events for logging
    await message_broker.subscribe_to_pattern(
        "*.*",
        "notification_service_all_events",
        log_all_events,
    )

    logger.info("Subscribed to notification events")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.service_port)
