"""Admin dashboard figures and reports."""
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    Booking,
    BookingStatus,
    Order,
    OrderStatus,
    PaymentMethod,
    Product,
    Profile,
)

RECENT_LIMIT = 5

# Orders whose money has been collected
REVENUE_STATUSES = (
    OrderStatus.PAID.value,
    OrderStatus.SHIPPED.value,
    OrderStatus.DELIVERED.value,
)


async def _count(session: AsyncSession, query) -> int:
    return (await session.execute(query)).scalar_one() or 0


async def dashboard(session: AsyncSession) -> dict[str, Any]:
    """Totals, revenue and the latest orders and products."""
    total_products = await _count(session, select(func.count(Product.id)))
    total_orders = await _count(session, select(func.count(Order.id)))
    total_users = await _count(session, select(func.count(Profile.id)))
    pending_bookings = await _count(
        session,
        select(func.count(Booking.id)).where(Booking.status == BookingStatus.PENDING.value),
    )
    revenue = (await session.execute(
        select(func.coalesce(func.sum(Order.total_amount), 0.0))
        .where(Order.status.in_(REVENUE_STATUSES))
    )).scalar_one()

    recent_orders = await session.execute(
        select(Order, Product.name, Profile.email)
        .outerjoin(Booking, Booking.id == Order.booking_id)
        .outerjoin(Product, Product.id == Booking.product_id)
        .outerjoin(Profile, Profile.id == Order.user_id)
        .order_by(Order.created_at.desc())
        .limit(RECENT_LIMIT)
    )
    recent_products = await session.execute(
        select(Product).order_by(Product.created_at.desc()).limit(RECENT_LIMIT)
    )

    return {
        "total_products": total_products,
        "total_orders": total_orders,
        "total_revenue": float(revenue),
        "total_users": total_users,
        "pending_bookings": pending_bookings,
        "recent_orders": [
            {
                "id": order.id,
                "customer": email or "Guest",
                "product": product_name or "Unknown Product",
                "status": order.status,
                "date": order.created_at,
                "total": order.total_amount,
            }
            for order, product_name, email in recent_orders.all()
        ],
        "recent_products": list(recent_products.scalars().all()),
    }


async def payment_method_breakdown(session: AsyncSession) -> dict[str, int]:
    """Number of orders per payment method."""
    result = await session.execute(
        select(Order.payment_method, func.count(Order.id)).group_by(Order.payment_method)
    )
    counts = {method.value: 0 for method in PaymentMethod}
    counts.update({method: count for method, count in result.all()})
    return counts


async def approval_rates(session: AsyncSession) -> dict[str, int]:
    """Bank-transfer payments by admin decision."""
    result = await session.execute(
        select(Order.payment_approval_status, func.count(Order.id))
        .where(Order.payment_method == PaymentMethod.BANK_TRANSFER.value)
        .group_by(Order.payment_approval_status)
    )
    return {status: count for status, count in result.all()}


async def sales_over_time(session: AsyncSession, days: int = 30) -> list[dict[str, Any]]:
    """Paid revenue per day over the last `days` days, oldest first."""
    since = datetime.utcnow() - timedelta(days=days)
    day = func.date(Order.created_at)
    result = await session.execute(
        select(day, func.count(Order.id), func.sum(Order.total_amount))
        .where(
            Order.status.in_(REVENUE_STATUSES),
            Order.created_at >= since,
        )
        .group_by(day)
        .order_by(day)
    )
    return [
        {"date": str(date), "orders": count, "revenue": float(revenue or 0)}
        for date, count, revenue in result.all()
    ]
