"""Order lookups and admin fulfilment updates."""
import logging
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import InvalidTransitionError, OrderNotFoundError
from .events import OrderStatusChangedEvent
from .models import ApprovalStatus, Booking, Order, OrderStatus, Product, Profile
from .outbox import save_event_to_outbox

logger = logging.getLogger(__name__)

ALLOWED_ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.PAID, OrderStatus.CANCELLED},
    OrderStatus.PAID: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}


def _detail_query():
    return (
        select(Order, Product.name, Booking.expires_at, Profile.full_name, Profile.email)
        .outerjoin(Booking, Booking.id == Order.booking_id)
        .outerjoin(Product, Product.id == Booking.product_id)
        .outerjoin(Profile, Profile.id == Order.user_id)
    )


def _detail(row) -> dict[str, Any]:
    order, product_name, expires_at, full_name, email = row
    return {
        "order": order,
        "product_name": product_name or "Unknown Product",
        "booking_expires_at": expires_at,
        "customer_name": full_name,
        "customer_email": email or "Guest",
    }


async def list_user_orders(session: AsyncSession, user_id: UUID) -> list[dict[str, Any]]:
    """A customer's orders, newest first."""
    result = await session.execute(
        _detail_query()
        .where(Order.user_id == user_id)
        .order_by(Order.created_at.desc())
    )
    return [_detail(row) for row in result.all()]


async def get_order_detail(
    session: AsyncSession,
    order_id: UUID,
    user_id: Optional[UUID] = None,
) -> dict[str, Any]:
    """
    One order with customer, product and booking details.

    When user_id is given, orders belonging to someone else are reported as
    not found.
    """
    query = _detail_query().where(Order.id == order_id).execution_options(populate_existing=True)
    if user_id is not None:
        query = query.where(Order.user_id == user_id)

    row = (await session.execute(query)).first()
    if row is None:
        raise OrderNotFoundError()
    return _detail(row)


async def list_orders(session: AsyncSession, status: Optional[OrderStatus] = None) -> list[dict[str, Any]]:
    query = _detail_query().order_by(Order.created_at.desc())
    if status is not None:
        query = query.where(Order.status == status.value)
    result = await session.execute(query)
    return [_detail(row) for row in result.all()]


async def update_order_status(
    session: AsyncSession,
    order_id: UUID,
    status: OrderStatus,
    tracking_number: Optional[str] = None,
) -> Order:
    """
    Move an order along its fulfilment path.

    Bank-transfer orders whose slip is still awaiting review only change
    through the payment decision.
    """
    try:
        order = await session.get(Order, order_id, populate_existing=True)
        if not order:
            raise OrderNotFoundError()

        if order.payment_approval_status == ApprovalStatus.PENDING.value:
            raise InvalidTransitionError(
                "This order has a payment awaiting review; approve or reject the payment instead"
            )

        previous = OrderStatus(order.status)
        if status not in ALLOWED_ORDER_TRANSITIONS[previous]:
            raise InvalidTransitionError(
                f"Cannot change order status from {previous.value} to {status.value}"
            )

        values = {"status": status.value, "updated_at": datetime.utcnow()}
        if tracking_number:
            values["tracking_number"] = tracking_number

        result = await session.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.status == previous.value,
                Order.payment_approval_status.is_distinct_from(ApprovalStatus.PENDING.value),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError("Order was changed by someone else; reload and retry")

        await save_event_to_outbox(
            session,
            OrderStatusChangedEvent(
                aggregate_id=order.id,
                correlation_id=order.booking_id or order.id,
                order_id=order.id,
                user_id=order.user_id,
                previous_status=previous.value,
                status=status.value,
                tracking_number=tracking_number or order.tracking_number,
            ),
        )

        await session.commit()

    except Exception:
        await session.rollback()
        raise

    logger.info(f"Order {order_id} status {previous.value} -> {status.value}")
    return await session.get(Order, order_id, populate_existing=True)
