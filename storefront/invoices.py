"""Invoices issued on demand for orders."""
import logging
import random
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import InvoiceNotFoundError, OrderNotFoundError
from .events import InvoiceCreatedEvent
from .models import Booking, Invoice, InvoiceStatus, Order, Product
from .outbox import save_event_to_outbox
from .reports import REVENUE_STATUSES

logger = logging.getLogger(__name__)

INVOICE_DUE_DAYS = 14
INVOICE_TAX = 0.0


def generate_invoice_number(now: Optional[datetime] = None) -> str:
    """INV-YYMM-NNNN with a random four-digit suffix."""
    now = now or datetime.utcnow()
    return f"INV-{now:%y%m}-{random.randint(0, 9999):04d}"


async def _unused_invoice_number(session: AsyncSession, now: datetime) -> str:
    while True:
        number = generate_invoice_number(now)
        taken = await session.execute(
            select(Invoice.id).where(Invoice.invoice_number == number).limit(1)
        )
        if taken.first() is None:
            return number


async def create_invoice(
    session: AsyncSession,
    order_id: UUID,
    user_id: Optional[UUID] = None,
) -> Invoice:
    """
    Issue the invoice for an order, or return the one already issued.

    When user_id is given the order must belong to that user.
    """
    try:
        order = await session.get(Order, order_id, populate_existing=True)
        if not order or (user_id is not None and order.user_id != user_id):
            raise OrderNotFoundError()

        existing = await session.execute(select(Invoice).where(Invoice.order_id == order_id))
        invoice = existing.scalar_one_or_none()
        if invoice:
            return invoice

        now = datetime.utcnow()
        subtotal = order.total_amount
        invoice = Invoice(
            id=uuid4(),
            order_id=order_id,
            invoice_number=await _unused_invoice_number(session, now),
            invoice_date=now,
            due_date=now + timedelta(days=INVOICE_DUE_DAYS),
            subtotal=subtotal,
            tax=INVOICE_TAX,
            total=subtotal + INVOICE_TAX,
            status=(
                InvoiceStatus.PAID.value
                if order.status in REVENUE_STATUSES
                else InvoiceStatus.UNPAID.value
            ),
            notes=f"Invoice for order {order_id}",
        )
        session.add(invoice)

        await save_event_to_outbox(
            session,
            InvoiceCreatedEvent(
                aggregate_id=invoice.id,
                correlation_id=order.booking_id or order.id,
                invoice_id=invoice.id,
                order_id=order_id,
                invoice_number=invoice.invoice_number,
                total=invoice.total,
            ),
        )

        await session.commit()

    except Exception:
        await session.rollback()
        raise

    logger.info(f"Issued invoice {invoice.invoice_number} for order {order_id}")
    return invoice


async def get_invoice_by_order(
    session: AsyncSession,
    order_id: UUID,
    user_id: Optional[UUID] = None,
) -> dict[str, Any]:
    """Invoice of an order with its product and order details."""
    query = (
        select(Invoice, Order, Product)
        .join(Order, Order.id == Invoice.order_id)
        .outerjoin(Booking, Booking.id == Order.booking_id)
        .outerjoin(Product, Product.id == Booking.product_id)
        .where(Invoice.order_id == order_id)
    )
    if user_id is not None:
        query = query.where(Order.user_id == user_id)

    row = (await session.execute(query)).first()
    if row is None:
        raise InvoiceNotFoundError()

    invoice, order, product = row
    return {"invoice": invoice, "order": order, "product": product}


async def list_user_invoices(session: AsyncSession, user_id: UUID) -> list[dict[str, Any]]:
    """A customer's invoices with product names, newest first."""
    result = await session.execute(
        select(Invoice, Product.name)
        .join(Order, Order.id == Invoice.order_id)
        .outerjoin(Booking, Booking.id == Order.booking_id)
        .outerjoin(Product, Product.id == Booking.product_id)
        .where(Order.user_id == user_id)
        .order_by(Invoice.invoice_date.desc())
    )
    return [
        {"invoice": invoice, "product_name": product_name or "Unknown Product"}
        for invoice, product_name in result.all()
    ]
