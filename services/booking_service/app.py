"""Booking Service FastAPI application: the customer-facing storefront API."""
import logging
from contextlib import asynccontextmanager
from typing import List, Optional
from uuid import UUID

from fastapi import Depends, FastAPI
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront import catalog, invoices, orders
from storefront.auth import CurrentUser, build_auth_dependencies
from storefront.bookings import BookingStateMachine
from storefront.config import Settings
from storefront.database import Database
from storefront.errors import BlockedUserError, register_exception_handlers
from storefront.message_broker import MessageBroker
from storefront.models import BookingStatus, PaymentMethod
from storefront.outbox import OutboxPublisher
from storefront.payments import PaymentFinalizer
from storefront.schemas import (
    BookedProductResponse,
    BookingLimitResponse,
    BookingResponse,
    InvoiceDetailResponse,
    InvoiceResponse,
    InvoiceSummaryResponse,
    OrderDetailResponse,
    OrderResponse,
    ProductResponse,
)
from storefront.system_settings import load_booking_policy

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Settings
settings = Settings(
    service_name="booking-service",
    service_port=8001,
)

# Database and message broker
database = Database(settings.database_url)
message_broker = MessageBroker(settings.rabbitmq_url)
outbox_publisher: Optional[OutboxPublisher] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for the application."""
    global outbox_publisher

    # Startup
    logger.info("Starting Booking Service...")

    await database.create_tables()
    await message_broker.connect()

    outbox_publisher = OutboxPublisher(
        session_factory=database.session_factory,
        message_broker=message_broker,
        poll_interval=settings.outbox_poll_interval,
        batch_size=settings.outbox_batch_size,
    )
    await outbox_publisher.start()

    logger.info("Booking Service started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Booking Service...")
    if outbox_publisher:
        await outbox_publisher.stop()
    await message_broker.disconnect()
    await database.close()


app = FastAPI(title="Booking Service", lifespan=lifespan)
register_exception_handlers(app)


async def get_session() -> AsyncSession:
    """Get database session."""
    async with database.session_factory() as session:
        yield session


auth = build_auth_dependencies(settings, get_session)


async def optional_customer(
    user: Optional[CurrentUser] = Depends(auth.optional_user),
) -> Optional[CurrentUser]:
    """Signed-in customer if there is one; blocked accounts are turned away."""
    if user is not None and user.is_blocked:
        raise BlockedUserError()
    return user


# Request models
class BookingRequest(BaseModel):
    """Request to reserve a product."""
    product_id: UUID
    guest: bool = False


class PaymentRequest(BaseModel):
    """Request to pay for the pending booking of a product."""
    product_id: UUID
    payment_method: PaymentMethod
    shipping_address: str = Field(..., min_length=1)
    payment_slip_url: Optional[str] = None


# Catalogue
@app.get("/products", response_model=List[ProductResponse])
async def list_products(
    search: Optional[str] = None,
    session: AsyncSession = Depends(get_session)
):
    """List products, newest first."""
    return await catalog.list_products(session, search)


@app.get("/products/featured", response_model=List[ProductResponse])
async def featured_products(session: AsyncSession = Depends(get_session)):
    """Latest products available for booking."""
    return await catalog.featured_products(session)


@app.get("/products/{product_id}", response_model=ProductResponse)
async def get_product(product_id: UUID, session: AsyncSession = Depends(get_session)):
    """Get product by ID."""
    return await catalog.get_product(session, product_id)


@app.get("/products/{product_id}/booking", response_model=BookedProductResponse)
async def get_booked_product(
    product_id: UUID,
    user: Optional[CurrentUser] = Depends(optional_customer),
    session: AsyncSession = Depends(get_session)
):
    """Product with the caller's pending booking, for the confirmation page."""
    product, booking = await BookingStateMachine(session).get_booked_product(product_id)

    if booking and booking.user_id is not None and (user is None or booking.user_id != user.id):
        booking = None

    return BookedProductResponse(
        product=ProductResponse.model_validate(product),
        booking=BookingResponse.model_validate(booking) if booking else None,
    )


# Bookings
@app.get("/bookings/limit", response_model=BookingLimitResponse)
async def check_booking_limit(
    product_id: UUID,
    user: CurrentUser = Depends(auth.require_user),
    session: AsyncSession = Depends(get_session)
):
    """How many more times the caller may book a product."""
    return await BookingStateMachine(session).check_booking_limit(product_id, user.id)


@app.post("/bookings", response_model=BookingResponse, status_code=201)
async def create_booking(
    request: BookingRequest,
    user: Optional[CurrentUser] = Depends(optional_customer),
    session: AsyncSession = Depends(get_session)
):
    """Reserve one unit of a product."""
    policy = await load_booking_policy(session)
    return await BookingStateMachine(session).create_booking(
        request.product_id,
        policy,
        user_id=user.id if user else None,
        allow_guest=request.guest,
    )


@app.get("/bookings/mine", response_model=List[BookingResponse])
async def my_bookings(
    status: Optional[BookingStatus] = None,
    user: CurrentUser = Depends(auth.require_user),
    session: AsyncSession = Depends(get_session)
):
    """The caller's bookings, newest first."""
    return await BookingStateMachine(session).list_user_bookings(user.id, status)


# Payments
@app.post("/payments", response_model=OrderResponse, status_code=201)
async def complete_payment(
    request: PaymentRequest,
    user: Optional[CurrentUser] = Depends(optional_customer),
    session: AsyncSession = Depends(get_session)
):
    """Pay for the pending booking of a product."""
    return await PaymentFinalizer(session).complete_payment(
        request.product_id,
        request.payment_method,
        request.shipping_address,
        payment_slip_url=request.payment_slip_url,
        user_id=user.id if user else None,
    )


# Orders and invoices
@app.get("/orders", response_model=List[OrderDetailResponse])
async def my_orders(
    user: CurrentUser = Depends(auth.require_user),
    session: AsyncSession = Depends(get_session)
):
    """The caller's orders, newest first."""
    return await orders.list_user_orders(session, user.id)


@app.get("/orders/{order_id}", response_model=OrderDetailResponse)
async def get_order(
    order_id: UUID,
    user: CurrentUser = Depends(auth.require_user),
    session: AsyncSession = Depends(get_session)
):
    """One of the caller's orders."""
    return await orders.get_order_detail(session, order_id, user_id=user.id)


@app.post("/orders/{order_id}/invoice", response_model=InvoiceResponse, status_code=201)
async def create_invoice(
    order_id: UUID,
    user: CurrentUser = Depends(auth.require_user),
    session: AsyncSession = Depends(get_session)
):
    """Issue the invoice for one of the caller's orders."""
    return await invoices.create_invoice(session, order_id, user_id=user.id)


@app.get("/orders/{order_id}/invoice", response_model=InvoiceDetailResponse)
async def get_invoice(
    order_id: UUID,
    user: CurrentUser = Depends(auth.require_user),
    session: AsyncSession = Depends(get_session)
):
    """Invoice of one of the caller's orders."""
    return await invoices.get_invoice_by_order(session, order_id, user_id=user.id)


@app.get("/invoices", response_model=List[InvoiceSummaryResponse])
async def my_invoices(
    user: CurrentUser = Depends(auth.require_user),
    session: AsyncSession = Depends(get_session)
):
    """The caller's invoices."""
    return await invoices.list_user_invoices(session, user.id)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "booking-service"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.service_port)
