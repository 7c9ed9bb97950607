"""Analytics Service FastAPI application."""
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI
from pydantic import BaseModel
from redis import asyncio as aioredis

from storefront.config import Settings
from storefront.events import (
    BaseEvent,
    BookingCreatedEvent,
    EventType,
    PaymentApprovedEvent,
    PaymentCompletedEvent,
    PaymentRejectedEvent,
    PaymentSubmittedEvent,
)
from storefront.message_broker import MessageBroker

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Settings
settings = Settings(
    service_name="analytics-service",
    service_port=8006,
)

# Message broker and Redis
message_broker = MessageBroker(settings.rabbitmq_url)
redis_client: Optional[aioredis.Redis] = None

RECENT_BOOKINGS_KEY = "bookings:recent"
TIMELINE_KEY = "events:timeline"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for the application."""
    global redis_client

    # Startup
    logger.info("Starting Analytics Service...")

    # Connect to Redis
    redis_client = await aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True
    )

    await message_broker.connect()
    await subscribe_to_events()

    logger.info("Analytics Service started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Analytics Service...")
    await message_broker.disconnect()
    if redis_client:
        await redis_client.aclose()


app = FastAPI(title="Analytics Service", lifespan=lifespan)


# Response models
class MetricsResponse(BaseModel):
    """Real-time metrics response."""
    total_bookings: int
    approved_bookings: int
    rejected_bookings: int
    expired_bookings: int
    paid_orders: int
    rejected_payments: int
    total_revenue: float
    booking_conversion_rate: float
    average_order_value: float


class EventStatsResponse(BaseModel):
    """Event statistics response."""
    event_type: str
    count: int


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "analytics-service"}


async def _counter(name: str) -> int:
    return int(await redis_client.get(f"metrics:{name}") or 0)


@app.get("/metrics", response_model=MetricsResponse)
async def get_metrics():
    """Get real-time business metrics."""
    if not redis_client:
        return MetricsResponse(
            total_bookings=0,
            approved_bookings=0,
            rejected_bookings=0,
            expired_bookings=0,
            paid_orders=0,
            rejected_payments=0,
            total_revenue=0.0,
            booking_conversion_rate=0.0,
            average_order_value=0.0,
        )

    total_bookings = await _counter("total_bookings")
    paid_orders = await _counter("paid_orders")
    total_revenue = float(await redis_client.get("metrics:total_revenue") or 0.0)

    conversion_rate = (paid_orders / total_bookings * 100) if total_bookings > 0 else 0.0
    average_order_value = (total_revenue / paid_orders) if paid_orders > 0 else 0.0

    return MetricsResponse(
        total_bookings=total_bookings,
        approved_bookings=await _counter("approved_bookings"),
        rejected_bookings=await _counter("rejected_bookings"),
        expired_bookings=await _counter("expired_bookings"),
        paid_orders=paid_orders,
        rejected_payments=await _counter("rejected_payments"),
        total_revenue=round(total_revenue, 2),
        booking_conversion_rate=round(conversion_rate, 2),
        average_order_value=round(average_order_value, 2),
    )


@app.get("/events/stats", response_model=List[EventStatsResponse])
async def get_event_stats():
    """Get event type statistics."""
    if not redis_client:
        return []

    stats = []
    for event_type in EventType:
        count = int(await redis_client.get(f"events:count:{event_type.value}") or 0)
        if count > 0:
            stats.append(EventStatsResponse(event_type=event_type.value, count=count))

    return stats


@app.get("/bookings/recent")
async def get_recent_bookings():
    """Get the ten most recent bookings."""
    if not redis_client:
        return []

    recent = await redis_client.zrevrange(RECENT_BOOKINGS_KEY, 0, 9, withscores=True)

    bookings = []
    for booking_data, timestamp in recent:
        booking_info = json.loads(booking_data)
        booking_info["timestamp"] = datetime.fromtimestamp(timestamp).isoformat()
        bookings.append(booking_info)

    return bookings


# Analytics Logic
async def track_event(event: BaseEvent):
    """Track event in Redis."""
    if not redis_client:
        return

    # Increment event counter
    await redis_client.incr(f"events:count:{event.event_type.value}")

    # Store event in time-series (last 1000 events)
    event_data = {
        "event_id": str(event.event_id),
        "event_type": event.event_type.value,
        "aggregate_id": str(event.aggregate_id),
        "correlation_id": str(event.correlation_id),
        "timestamp": event.timestamp.isoformat(),
    }

    await redis_client.zadd(TIMELINE_KEY, {json.dumps(event_data): event.timestamp.timestamp()})
    await redis_client.zremrangebyrank(TIMELINE_KEY, 0, -1001)


async def record_booking(event: BookingCreatedEvent):
    """Count the booking and keep it in the recent list."""
    if not redis_client:
        return

    await redis_client.incr("metrics:total_bookings")

    booking_data = {
        "booking_id": str(event.booking_id),
        "product_id": str(event.product_id),
        "user_id": str(event.user_id) if event.user_id else None,
        "approval_status": event.approval_status,
        "expires_at": event.expires_at.isoformat(),
    }

    await redis_client.zadd(
        RECENT_BOOKINGS_KEY,
        {json.dumps(booking_data): event.timestamp.timestamp()}
    )

    # Keep only last 100 bookings
    await redis_client.zremrangebyrank(RECENT_BOOKINGS_KEY, 0, -101)


async def record_sale(amount: float):
    """A payment that settled: online, or an approved bank transfer."""
    if not redis_client:
        return

    await redis_client.incr("metrics:paid_orders")
    await redis_client.incrbyfloat("metrics:total_revenue", amount)


async def increment(name: str):
    if not redis_client:
        return

    await redis_client.incr(f"metrics:{name}")


# Event Handlers
async def handle_booking_created(event: BookingCreatedEvent):
    await track_event(event)
    await record_booking(event)
    logger.info(f"Analytics: Booking created {event.booking_id}")


async def handle_payment_completed(event: PaymentCompletedEvent):
    await track_event(event)
    await record_sale(event.amount)
    logger.info(f"Analytics: Online payment ${event.amount}")


async def handle_payment_submitted(event: PaymentSubmittedEvent):
    await track_event(event)
    await increment("submitted_payments")
    logger.info(f"Analytics: Payment slip submitted for order {event.order_id}")


async def handle_payment_approved(event: PaymentApprovedEvent):
    await track_event(event)
    await record_sale(event.amount)
    logger.info(f"Analytics: Bank transfer approved ${event.amount}")


async def handle_payment_rejected(event: PaymentRejectedEvent):
    await track_event(event)
    await increment("rejected_payments")
    logger.info(f"Analytics: Payment rejected for order {event.order_id}")


def counting_handler(counter: str):
    """Handler that only tracks the event and bumps one counter."""

    async def handle(event: BaseEvent):
        await track_event(event)
        await increment(counter)

    return handle


async def subscribe_to_events():
    """Subscribe to booking and payment events for analytics."""
    subscriptions = [
        (EventType.BOOKING_CREATED, "analytics_service_booking_created", handle_booking_created),
        (EventType.BOOKING_APPROVED, "analytics_service_booking_approved",
         counting_handler("approved_bookings")),
        (EventType.BOOKING_REJECTED, "analytics_service_booking_rejected",
         counting_handler("rejected_bookings")),
        (EventType.BOOKING_EXPIRED, "analytics_service_booking_expired",
         counting_handler("expired_bookings")),
        (EventType.PAYMENT_COMPLETED, "analytics_service_payment_completed", handle_payment_completed),
        (EventType.PAYMENT_SUBMITTED, "analytics_service_payment_submitted", handle_payment_submitted),
        (EventType.PAYMENT_APPROVED, "analytics_service_payment_approved", handle_payment_approved),
        (EventType.PAYMENT_REJECTED, "analytics_service_payment_rejected", handle_payment_rejected),
    ]

    for event_type, queue_name, handler in subscriptions:
        await message_broker.subscribe_to_event(event_type, queue_name, handler)

    logger.info("Subscribed to analytics events")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.service_port)
