"""Admin Service FastAPI application: back office for products, bookings, payments and users."""
import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, FastAPI, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront import catalog, orders, reports, users
from storefront.auth import CurrentUser, build_auth_dependencies
from storefront.bookings import BookingStateMachine
from storefront.catalog import ProductData
from storefront.config import Settings
from storefront.database import Database
from storefront.errors import register_exception_handlers
from storefront.identity import IdentityProviderClient
from storefront.message_broker import MessageBroker
from storefront.models import ApprovalStatus, BookingStatus, OrderStatus, UserRole
from storefront.outbox import OutboxPublisher, requeue_failed_messages
from storefront.payments import PaymentFinalizer
from storefront.schemas import (
    BookingListItem,
    BookingResponse,
    OrderDetailResponse,
    OrderResponse,
    PendingPaymentResponse,
    ProductResponse,
    UserResponse,
)
from storefront.system_settings import BookingPolicy, load_booking_policy, update_booking_policy
from storefront.users import NewUser, UserChanges

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Settings
settings = Settings(
    service_name="admin-service",
    service_port=8002,
)

# Database, message broker and identity provider
database = Database(settings.database_url)
message_broker = MessageBroker(settings.rabbitmq_url)
identity_client = IdentityProviderClient(
    settings.identity_provider_url,
    settings.identity_provider_service_key,
    timeout=settings.identity_provider_timeout,
)
outbox_publisher: Optional[OutboxPublisher] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for the application."""
    global outbox_publisher

    # Startup
    logger.info("Starting Admin Service...")

    await database.create_tables()
    await message_broker.connect()

    outbox_publisher = OutboxPublisher(
        session_factory=database.session_factory,
        message_broker=message_broker,
        poll_interval=settings.outbox_poll_interval,
        batch_size=settings.outbox_batch_size,
    )
    await outbox_publisher.start()

    logger.info("Admin Service started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Admin Service...")
    if outbox_publisher:
        await outbox_publisher.stop()
    await message_broker.disconnect()
    await identity_client.close()
    await database.close()


app = FastAPI(title="Admin Service", lifespan=lifespan)
register_exception_handlers(app)


async def get_session() -> AsyncSession:
    """Get database session."""
    async with database.session_factory() as session:
        yield session


def get_identity_client() -> IdentityProviderClient:
    return identity_client


auth = build_auth_dependencies(settings, get_session)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(auth.require_admin)])


# Request models
class BulkUploadRequest(BaseModel):
    """Rows parsed from an uploaded product sheet."""
    products: List[ProductData] = Field(..., min_length=1)


class BookingDecisionRequest(BaseModel):
    decision: ApprovalStatus
    notes: Optional[str] = None


class ExtendBookingRequest(BaseModel):
    additional_hours: int = Field(..., ge=1)


class OrderStatusRequest(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = None


class RejectPaymentRequest(BaseModel):
    reason: Optional[str] = None


class RoleRequest(BaseModel):
    role: UserRole


class BlockRequest(BaseModel):
    is_blocked: bool


# Products
@router.get("/products", response_model=List[ProductResponse])
async def list_products(
    search: Optional[str] = None,
    session: AsyncSession = Depends(get_session)
):
    return await catalog.list_products(session, search)


@router.post("/products", response_model=ProductResponse, status_code=201)
async def add_product(request: ProductData, session: AsyncSession = Depends(get_session)):
    """Create a new product."""
    return await catalog.add_product(session, request)


@router.post("/products/bulk")
async def bulk_upload_products(
    request: BulkUploadRequest,
    session: AsyncSession = Depends(get_session)
):
    """Insert many products at once; reports how many were stored."""
    rows = [product.model_dump() for product in request.products]
    success_count = await catalog.bulk_upload_products(session, rows)
    return {"success": success_count, "total": len(rows)}


@router.get("/products/{product_id}", response_model=ProductResponse)
async def get_product(product_id: UUID, session: AsyncSession = Depends(get_session)):
    return await catalog.get_product(session, product_id)


@router.put("/products/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: UUID,
    request: ProductData,
    session: AsyncSession = Depends(get_session)
):
    return await catalog.update_product(session, product_id, request)


@router.delete("/products/{product_id}", status_code=204)
async def delete_product(product_id: UUID, session: AsyncSession = Depends(get_session)):
    await catalog.delete_product(session, product_id)
    return Response(status_code=204)


# Bookings
@router.get("/bookings", response_model=List[BookingListItem])
async def list_bookings(
    status: Optional[BookingStatus] = None,
    session: AsyncSession = Depends(get_session)
):
    return await BookingStateMachine(session).list_bookings(status)


@router.post("/bookings/{booking_id}/decision", response_model=BookingResponse)
async def decide_booking(
    booking_id: UUID,
    request: BookingDecisionRequest,
    session: AsyncSession = Depends(get_session)
):
    """Approve a booking, or reject it and return its unit to stock."""
    return await BookingStateMachine(session).decide_booking(
        booking_id, request.decision, request.notes
    )


@router.post("/bookings/{booking_id}/extend", response_model=BookingResponse)
async def extend_booking(
    booking_id: UUID,
    request: ExtendBookingRequest,
    session: AsyncSession = Depends(get_session)
):
    """Give the customer more time to pay."""
    return await BookingStateMachine(session).extend_booking(booking_id, request.additional_hours)


# Orders
@router.get("/orders", response_model=List[OrderDetailResponse])
async def list_orders(
    status: Optional[OrderStatus] = None,
    session: AsyncSession = Depends(get_session)
):
    return await orders.list_orders(session, status)


@router.get("/orders/{order_id}", response_model=OrderDetailResponse)
async def get_order(order_id: UUID, session: AsyncSession = Depends(get_session)):
    return await orders.get_order_detail(session, order_id)


@router.put("/orders/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: UUID,
    request: OrderStatusRequest,
    session: AsyncSession = Depends(get_session)
):
    return await orders.update_order_status(
        session, order_id, request.status, request.tracking_number
    )


# Bank-transfer payments
@router.get("/payments/pending", response_model=List[PendingPaymentResponse])
async def list_pending_payments(session: AsyncSession = Depends(get_session)):
    """Bank-transfer payments waiting for slip review."""
    return await PaymentFinalizer(session).list_pending_payments()


@router.post("/payments/{order_id}/approve", response_model=OrderResponse)
async def approve_payment(
    order_id: UUID,
    admin: CurrentUser = Depends(auth.require_admin),
    session: AsyncSession = Depends(get_session)
):
    return await PaymentFinalizer(session).approve_payment(order_id, admin_id=admin.id)


@router.post("/payments/{order_id}/reject", response_model=OrderResponse)
async def reject_payment(
    order_id: UUID,
    request: RejectPaymentRequest,
    admin: CurrentUser = Depends(auth.require_admin),
    session: AsyncSession = Depends(get_session)
):
    return await PaymentFinalizer(session).reject_payment(
        order_id, reason=request.reason, admin_id=admin.id
    )


# Event outbox
@router.post("/outbox/retry")
async def retry_failed_events(
    limit: int = Query(100, ge=1, le=1000),
    session: AsyncSession = Depends(get_session)
) -> Dict[str, int]:
    """Requeue events that exhausted their publish retries."""
    return {"requeued": await requeue_failed_messages(session, limit)}


# Users
@router.get("/users", response_model=List[UserResponse])
async def list_users(session: AsyncSession = Depends(get_session)):
    return await users.list_users(session)


@router.get("/users/{user_id}", response_model=UserResponse)
async def get_user(user_id: UUID, session: AsyncSession = Depends(get_session)):
    return await users.get_user(session, user_id)


@router.post("/users", response_model=UserResponse, status_code=201)
async def create_user(
    request: NewUser,
    session: AsyncSession = Depends(get_session),
    identity: IdentityProviderClient = Depends(get_identity_client)
):
    return await users.create_user(session, identity, request)


@router.put("/users/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: UUID,
    request: UserChanges,
    session: AsyncSession = Depends(get_session),
    identity: IdentityProviderClient = Depends(get_identity_client)
):
    return await users.update_user(session, identity, user_id, request)


@router.put("/users/{user_id}/role", response_model=UserResponse)
async def set_role(
    user_id: UUID,
    request: RoleRequest,
    session: AsyncSession = Depends(get_session)
):
    return await users.set_role(session, user_id, request.role)


@router.put("/users/{user_id}/block", response_model=UserResponse)
async def set_blocked(
    user_id: UUID,
    request: BlockRequest,
    session: AsyncSession = Depends(get_session)
):
    return await users.set_blocked(session, user_id, request.is_blocked)


@router.delete("/users/{user_id}", status_code=204)
async def delete_user(
    user_id: UUID,
    session: AsyncSession = Depends(get_session),
    identity: IdentityProviderClient = Depends(get_identity_client)
):
    await users.delete_user(session, identity, user_id)
    return Response(status_code=204)


# System settings
@router.get("/settings", response_model=BookingPolicy)
async def get_settings(session: AsyncSession = Depends(get_session)):
    policy = await load_booking_policy(session)
    await session.commit()
    return policy


@router.put("/settings", response_model=BookingPolicy)
async def update_settings(request: BookingPolicy, session: AsyncSession = Depends(get_session)):
    return await update_booking_policy(session, request)


# Dashboard and reports
@router.get("/dashboard")
async def dashboard(session: AsyncSession = Depends(get_session)):
    result = await reports.dashboard(session)
    result["recent_products"] = [
        ProductResponse.model_validate(product) for product in result["recent_products"]
    ]
    return result


@router.get("/reports/payment-methods")
async def payment_methods_report(session: AsyncSession = Depends(get_session)) -> Dict[str, int]:
    return await reports.payment_method_breakdown(session)


@router.get("/reports/approval-rates")
async def approval_rates_report(session: AsyncSession = Depends(get_session)) -> Dict[str, int]:
    return await reports.approval_rates(session)


@router.get("/reports/sales")
async def sales_report(days: int = 30, session: AsyncSession = Depends(get_session)):
    return await reports.sales_over_time(session, days)


app.include_router(router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "admin-service"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.service_port)
