"""Booking state machine: reservation, admin decision and payment window."""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import (
    AlreadyBookedError,
    AuthenticationError,
    BookingLimitExceededError,
    BookingNotFoundError,
    DuplicateBookingError,
    InvalidTransitionError,
    OutOfStockError,
    ProductNotFoundError,
)
from .events import (
    BookingApprovedEvent,
    BookingCreatedEvent,
    BookingExtendedEvent,
    BookingRejectedEvent,
)
from .inventory import InventoryLedger
from .models import (
    ApprovalStatus,
    Booking,
    BookingStatus,
    Order,
    PaymentMethod,
    Product,
    ProductStatus,
    Profile,
)
from .outbox import save_event_to_outbox
from .system_settings import BookingPolicy

logger = logging.getLogger(__name__)


@dataclass
class BookingLimitCheck:
    """Outcome of the per-product, per-user booking limit."""
    can_book: bool
    current_bookings: int
    max_bookings: int
    message: Optional[str] = None


async def transition_booking(
    session: AsyncSession,
    booking_id: UUID,
    from_status: BookingStatus,
    to_status: BookingStatus,
    *extra_conditions,
    **values,
) -> bool:
    """
    Move a booking between statuses only if it is still in from_status.

    This is the one place booking status changes happen. The caller that gets
    True owns the transition; everyone else sees False.
    """
    result = await session.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.status == from_status.value,
            *extra_conditions,
        )
        .values(status=to_status.value, updated_at=datetime.utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def payment_under_review(session: AsyncSession, booking_id: UUID) -> Optional[Order]:
    """Bank-transfer order for the booking still waiting on an admin decision."""
    result = await session.execute(
        select(Order)
        .where(
            Order.booking_id == booking_id,
            Order.payment_method == PaymentMethod.BANK_TRANSFER.value,
            Order.payment_approval_status == ApprovalStatus.PENDING.value,
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


class BookingStateMachine:
    """
    Drives bookings from pending to their terminal states.

    Each public method is one transaction: the booking row, the stock counter
    and the outbox event commit together or not at all.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.inventory = InventoryLedger(session)

    async def check_booking_limit(self, product_id: UUID, user_id: UUID) -> BookingLimitCheck:
        """Count the user's non-cancelled bookings of a product against its limit."""
        product = await self._get_product(product_id)
        max_bookings = product.max_booking_per_user or 1

        result = await self.session.execute(
            select(func.count(Booking.id)).where(
                Booking.product_id == product_id,
                Booking.user_id == user_id,
                Booking.status != BookingStatus.CANCELLED.value,
            )
        )
        current = result.scalar_one()

        if current >= max_bookings:
            return BookingLimitCheck(
                can_book=False,
                current_bookings=current,
                max_bookings=max_bookings,
                message=(
                    f"You have reached the maximum limit of {max_bookings} "
                    f"bookings for this product."
                ),
            )

        return BookingLimitCheck(can_book=True, current_bookings=current, max_bookings=max_bookings)

    async def create_booking(
        self,
        product_id: UUID,
        policy: BookingPolicy,
        user_id: Optional[UUID] = None,
        allow_guest: bool = False,
    ) -> Booking:
        """
        Reserve one unit of a product.

        Args:
            product_id: Product to reserve
            policy: Current system settings
            user_id: Signed-in customer, if any
            allow_guest: Explicit opt-in for an anonymous booking

        Returns:
            The pending booking
        """
        if user_id is None and not allow_guest:
            raise AuthenticationError("You must be logged in to book a product")

        try:
            product = await self._get_product(product_id)

            if user_id is not None:
                limit = await self.check_booking_limit(product_id, user_id)
                if not limit.can_book:
                    raise BookingLimitExceededError(limit.message)

                if not policy.allow_duplicate_bookings and await self._has_pending_booking(user_id):
                    raise DuplicateBookingError()

            if product.status == ProductStatus.BOOKED.value:
                raise AlreadyBookedError()
            if product.stock <= 0:
                raise OutOfStockError()

            if not await self.inventory.take_unit(product_id):
                # Lost the race for the unit since the product was read
                await self.session.refresh(product)
                if product.status == ProductStatus.BOOKED.value:
                    raise AlreadyBookedError()
                raise OutOfStockError()

            now = datetime.utcnow()
            approval_status = (
                ApprovalStatus.PENDING if policy.default_approval_required else ApprovalStatus.APPROVED
            )
            booking = Booking(
                id=uuid4(),
                product_id=product_id,
                user_id=user_id,
                booked_at=now,
                expires_at=now + timedelta(hours=policy.payment_timeout_hours),
                status=BookingStatus.PENDING.value,
                approval_status=approval_status.value,
            )
            self.session.add(booking)

            await save_event_to_outbox(
                self.session,
                BookingCreatedEvent(
                    aggregate_id=booking.id,
                    correlation_id=booking.id,
                    booking_id=booking.id,
                    product_id=product_id,
                    user_id=user_id,
                    expires_at=booking.expires_at,
                    approval_status=booking.approval_status,
                ),
            )

            await self.session.commit()

        except Exception as e:
            await self.session.rollback()
            logger.warning(f"Booking of product {product_id} refused: {str(e)}")
            raise

        logger.info(
            f"Created booking {booking.id} for product {product_id} "
            f"(user={user_id or 'guest'}, approval={booking.approval_status}, "
            f"expires_at={booking.expires_at.isoformat()})"
        )
        return booking

    async def approve_booking(self, booking_id: UUID, notes: Optional[str] = None) -> Booking:
        """Sign off a pending booking so its payment can proceed; stock is untouched."""
        try:
            booking = await self._get_booking(booking_id)

            if booking.approval_status == ApprovalStatus.APPROVED.value:
                return booking

            result = await self.session.execute(
                update(Booking)
                .where(
                    Booking.id == booking_id,
                    Booking.status == BookingStatus.PENDING.value,
                    Booking.approval_status == ApprovalStatus.PENDING.value,
                )
                .values(
                    approval_status=ApprovalStatus.APPROVED.value,
                    admin_notes=notes,
                    updated_at=datetime.utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidTransitionError("Only pending bookings can be approved")

            await save_event_to_outbox(
                self.session,
                BookingApprovedEvent(
                    aggregate_id=booking.id,
                    correlation_id=booking.id,
                    booking_id=booking.id,
                    product_id=booking.product_id,
                    user_id=booking.user_id,
                ),
            )

            await self.session.commit()

        except Exception:
            await self.session.rollback()
            raise

        logger.info(f"Approved booking {booking_id}")
        return await self._get_booking(booking_id)

    async def reject_booking(self, booking_id: UUID, notes: Optional[str] = None) -> Booking:
        """Cancel a pending booking and give its unit back to the pool."""
        try:
            booking = await self._get_booking(booking_id)

            if await payment_under_review(self.session, booking_id):
                raise InvalidTransitionError(
                    "This booking has a payment awaiting review; approve or reject the payment instead"
                )

            cancelled = await transition_booking(
                self.session,
                booking_id,
                BookingStatus.PENDING,
                BookingStatus.CANCELLED,
                approval_status=ApprovalStatus.REJECTED.value,
                admin_notes=notes,
            )
            if not cancelled:
                raise InvalidTransitionError("Booking is no longer pending")

            await self.inventory.return_unit(booking.product_id)

            await save_event_to_outbox(
                self.session,
                BookingRejectedEvent(
                    aggregate_id=booking.id,
                    correlation_id=booking.id,
                    booking_id=booking.id,
                    product_id=booking.product_id,
                    user_id=booking.user_id,
                    notes=notes,
                ),
            )

            await self.session.commit()

        except Exception:
            await self.session.rollback()
            raise

        logger.info(f"Rejected booking {booking_id}; unit returned to product {booking.product_id}")
        return await self._get_booking(booking_id)

    async def decide_booking(
        self,
        booking_id: UUID,
        decision: ApprovalStatus,
        notes: Optional[str] = None,
    ) -> Booking:
        """Apply an admin decision from the bookings table."""
        if decision == ApprovalStatus.APPROVED:
            return await self.approve_booking(booking_id, notes)
        if decision == ApprovalStatus.REJECTED:
            return await self.reject_booking(booking_id, notes)
        raise InvalidTransitionError("Decision must be approved or rejected")

    async def extend_booking(self, booking_id: UUID, additional_hours: int) -> Booking:
        """Push back the payment deadline of a pending booking."""
        try:
            booking = await self._get_booking(booking_id)
            new_expiry = booking.expires_at + timedelta(hours=additional_hours)

            result = await self.session.execute(
                update(Booking)
                .where(
                    Booking.id == booking_id,
                    Booking.status == BookingStatus.PENDING.value,
                )
                .values(expires_at=new_expiry, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidTransitionError("Only pending bookings can be extended")

            await save_event_to_outbox(
                self.session,
                BookingExtendedEvent(
                    aggregate_id=booking.id,
                    correlation_id=booking.id,
                    booking_id=booking.id,
                    user_id=booking.user_id,
                    expires_at=new_expiry,
                ),
            )

            await self.session.commit()

        except Exception:
            await self.session.rollback()
            raise

        logger.info(f"Extended booking {booking_id} by {additional_hours}h to {new_expiry.isoformat()}")
        return await self._get_booking(booking_id)

    async def get_booked_product(self, product_id: UUID) -> tuple[Product, Optional[Booking]]:
        """Product together with its most recent pending booking, if any."""
        product = await self._get_product(product_id)
        booking = await self.latest_pending_booking(product_id)
        return product, booking

    async def list_user_bookings(
        self,
        user_id: UUID,
        status: Optional[BookingStatus] = None,
    ) -> list[Booking]:
        query = select(Booking).where(Booking.user_id == user_id)
        if status is not None:
            query = query.where(Booking.status == status.value)
        result = await self.session.execute(query.order_by(Booking.booked_at.desc()))
        return list(result.scalars().all())

    async def list_bookings(self, status: Optional[BookingStatus] = None) -> list[dict]:
        """Every booking with its product name and customer email, newest first."""
        query = (
            select(Booking, Product.name, Profile.email)
            .outerjoin(Product, Product.id == Booking.product_id)
            .outerjoin(Profile, Profile.id == Booking.user_id)
            .order_by(Booking.booked_at.desc())
        )
        if status is not None:
            query = query.where(Booking.status == status.value)

        result = await self.session.execute(query)
        return [
            {
                "booking": booking,
                "product_name": product_name or "Unknown Product",
                "customer_email": email or "Guest",
            }
            for booking, product_name, email in result.all()
        ]

    async def latest_pending_booking(self, product_id: UUID) -> Optional[Booking]:
        result = await self.session.execute(
            select(Booking)
            .where(
                Booking.product_id == product_id,
                Booking.status == BookingStatus.PENDING.value,
            )
            .order_by(Booking.booked_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _has_pending_booking(self, user_id: UUID) -> bool:
        result = await self.session.execute(
            select(Booking.id)
            .where(
                Booking.user_id == user_id,
                Booking.status == BookingStatus.PENDING.value,
            )
            .limit(1)
        )
        return result.first() is not None

    async def _get_product(self, product_id: UUID) -> Product:
        product = await self.session.get(Product, product_id, populate_existing=True)
        if not product:
            raise ProductNotFoundError()
        return product

    async def _get_booking(self, booking_id: UUID) -> Booking:
        booking = await self.session.get(Booking, booking_id, populate_existing=True)
        if not booking:
            raise BookingNotFoundError()
        return booking
