"""Order/payment finalizer: turns an approved booking into an order."""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .bookings import BookingStateMachine, payment_under_review, transition_booking
from .errors import (
    BookingExpiredError,
    BookingNotApprovedError,
    BookingNotFoundError,
    InvalidTransitionError,
    OrderNotFoundError,
    PaymentAlreadySubmittedError,
)
from .events import PaymentApprovedEvent, PaymentCompletedEvent, PaymentRejectedEvent, PaymentSubmittedEvent
from .inventory import InventoryLedger
from .models import (
    ApprovalStatus,
    Booking,
    BookingStatus,
    Order,
    OrderStatus,
    PaymentMethod,
    Product,
    Profile,
)
from .outbox import save_event_to_outbox

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_NOTE = "Payment rejected"


class PaymentFinalizer:
    """Completes payments and applies admin decisions on bank transfers."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.inventory = InventoryLedger(session)

    async def complete_payment(
        self,
        product_id: UUID,
        method: PaymentMethod,
        shipping_address: str,
        payment_slip_url: Optional[str] = None,
        user_id: Optional[UUID] = None,
    ) -> Order:
        """
        Pay for the most recent pending booking of a product.

        Online payments settle immediately. Bank transfers create an order
        that waits for an admin to check the payment slip; the booking stays
        pending until then.
        """
        try:
            booking = await BookingStateMachine(self.session).latest_pending_booking(product_id)
            if not booking or (booking.user_id is not None and booking.user_id != user_id):
                raise BookingNotFoundError()

            now = datetime.utcnow()
            if booking.expires_at < now:
                raise BookingExpiredError()
            if booking.approval_status != ApprovalStatus.APPROVED.value:
                raise BookingNotApprovedError()
            if await payment_under_review(self.session, booking.id):
                raise PaymentAlreadySubmittedError()

            product = await self.session.get(Product, booking.product_id)
            amount = product.sale_price

            if method == PaymentMethod.ONLINE:
                paid = await transition_booking(
                    self.session,
                    booking.id,
                    BookingStatus.PENDING,
                    BookingStatus.PAID,
                    Booking.expires_at >= now,
                )
                if not paid:
                    # The expiry sweep got there first
                    raise BookingExpiredError()
                await self.inventory.release_hold(booking.product_id)

                order = self._new_order(
                    booking, amount, method, shipping_address, None,
                    status=OrderStatus.PAID,
                    approval=ApprovalStatus.APPROVED,
                )
                order.payment_approved_at = now
                event = PaymentCompletedEvent(
                    aggregate_id=order.id,
                    correlation_id=booking.id,
                    order_id=order.id,
                    booking_id=booking.id,
                    user_id=booking.user_id,
                    amount=amount,
                )
            else:
                order = self._new_order(
                    booking, amount, method, shipping_address, payment_slip_url,
                    status=OrderStatus.PENDING,
                    approval=ApprovalStatus.PENDING,
                )
                event = PaymentSubmittedEvent(
                    aggregate_id=order.id,
                    correlation_id=booking.id,
                    order_id=order.id,
                    booking_id=booking.id,
                    user_id=booking.user_id,
                    amount=amount,
                    payment_slip_url=payment_slip_url,
                )

            self.session.add(order)
            await save_event_to_outbox(self.session, event)
            await self.session.commit()

        except Exception as e:
            await self.session.rollback()
            logger.warning(f"Payment for product {product_id} refused: {str(e)}")
            raise

        logger.info(
            f"Payment via {method.value} for booking {booking.id} created order {order.id} "
            f"(status={order.status})"
        )
        return order

    async def approve_payment(self, order_id: UUID, admin_id: Optional[UUID] = None) -> Order:
        """
        Accept a bank-transfer payment: the order and its booking become paid.

        Refused once the booking has expired, since its unit is back in stock.
        """
        try:
            order = await self._get_order(order_id)
            now = datetime.utcnow()

            decided = await self._decide_order(
                order_id,
                status=OrderStatus.PAID,
                approval=ApprovalStatus.APPROVED,
                payment_approved_at=now,
                payment_approved_by=admin_id,
            )
            if not decided:
                raise InvalidTransitionError("Payment has already been reviewed")

            if order.booking_id:
                booking = await self.session.get(Booking, order.booking_id)
                paid = await transition_booking(
                    self.session, order.booking_id, BookingStatus.PENDING, BookingStatus.PAID
                )
                if not paid:
                    await self.session.refresh(booking)
                    if booking.status == BookingStatus.EXPIRED.value:
                        raise BookingExpiredError()
                    raise InvalidTransitionError("Booking is no longer pending")
                await self.inventory.release_hold(booking.product_id)

            await save_event_to_outbox(
                self.session,
                PaymentApprovedEvent(
                    aggregate_id=order.id,
                    correlation_id=order.booking_id or order.id,
                    order_id=order.id,
                    booking_id=order.booking_id,
                    user_id=order.user_id,
                    amount=order.total_amount,
                ),
            )

            await self.session.commit()

        except Exception:
            await self.session.rollback()
            raise

        logger.info(f"Approved payment for order {order_id}")
        return await self._get_order(order_id)

    async def reject_payment(
        self,
        order_id: UUID,
        reason: Optional[str] = None,
        admin_id: Optional[UUID] = None,
    ) -> Order:
        """
        Refuse a bank-transfer payment, cancel the booking and return its unit.

        A booking the sweep already expired has had its unit returned; only the
        order is cancelled then.
        """
        note = reason or DEFAULT_REJECTION_NOTE
        try:
            order = await self._get_order(order_id)

            decided = await self._decide_order(
                order_id,
                status=OrderStatus.CANCELLED,
                approval=ApprovalStatus.REJECTED,
                payment_approved_by=admin_id,
            )
            if not decided:
                raise InvalidTransitionError("Payment has already been reviewed")

            stock_returned = False
            if order.booking_id:
                booking = await self.session.get(Booking, order.booking_id)
                cancelled = await transition_booking(
                    self.session,
                    order.booking_id,
                    BookingStatus.PENDING,
                    BookingStatus.CANCELLED,
                    admin_notes=note,
                )
                if cancelled:
                    stock_returned = await self.inventory.return_unit(booking.product_id)

            await save_event_to_outbox(
                self.session,
                PaymentRejectedEvent(
                    aggregate_id=order.id,
                    correlation_id=order.booking_id or order.id,
                    order_id=order.id,
                    booking_id=order.booking_id,
                    user_id=order.user_id,
                    reason=note,
                    stock_returned=stock_returned,
                ),
            )

            await self.session.commit()

        except Exception:
            await self.session.rollback()
            raise

        logger.info(f"Rejected payment for order {order_id} (stock returned: {stock_returned})")
        return await self._get_order(order_id)

    async def list_pending_payments(self) -> list[dict]:
        """Bank-transfer orders waiting for slip review, oldest first."""
        result = await self.session.execute(
            select(Order, Product.name, Profile.full_name, Profile.email)
            .outerjoin(Booking, Booking.id == Order.booking_id)
            .outerjoin(Product, Product.id == Booking.product_id)
            .outerjoin(Profile, Profile.id == Order.user_id)
            .where(
                Order.payment_method == PaymentMethod.BANK_TRANSFER.value,
                Order.payment_approval_status == ApprovalStatus.PENDING.value,
            )
            .order_by(Order.created_at)
        )
        return [
            {
                "order": order,
                "product_name": product_name or "Unknown Product",
                "customer_name": full_name or email or "Guest",
            }
            for order, product_name, full_name, email in result.all()
        ]

    async def _decide_order(
        self,
        order_id: UUID,
        status: OrderStatus,
        approval: ApprovalStatus,
        **values,
    ) -> bool:
        result = await self.session.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.payment_approval_status == ApprovalStatus.PENDING.value,
            )
            .values(
                status=status.value,
                payment_approval_status=approval.value,
                updated_at=datetime.utcnow(),
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _new_order(
        self,
        booking: Booking,
        amount: float,
        method: PaymentMethod,
        shipping_address: str,
        payment_slip_url: Optional[str],
        status: OrderStatus,
        approval: ApprovalStatus,
    ) -> Order:
        return Order(
            id=uuid4(),
            booking_id=booking.id,
            user_id=booking.user_id,
            total_amount=amount,
            status=status.value,
            payment_method=method.value,
            payment_slip_url=payment_slip_url,
            payment_approval_status=approval.value,
            shipping_address=shipping_address,
        )

    async def _get_order(self, order_id: UUID) -> Order:
        order = await self.session.get(Order, order_id, populate_existing=True)
        if not order:
            raise OrderNotFoundError()
        return order
