"""Expiry sweep: releases inventory held by unpaid bookings past their deadline."""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select

from .bookings import transition_booking
from .database import unit_of_work
from .events import BookingExpiredEvent
from .inventory import InventoryLedger
from .models import Booking, BookingStatus
from .outbox import save_event_to_outbox

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Bookings expired by one sweep, and the ones that failed."""
    expired: list[UUID] = field(default_factory=list)
    failed: list[UUID] = field(default_factory=list)

    @property
    def message(self) -> str:
        if not self.expired and not self.failed:
            return "No expired bookings found"
        return f"Processed {len(self.expired)} expired bookings"


class ExpirySweeper:
    """Expires pending bookings whose payment window has passed."""

    def __init__(self, session_factory, interval_seconds: int = 3600):
        """
        Initialize the sweeper.

        Args:
            session_factory: Async session factory for database access
            interval_seconds: Seconds between periodic sweeps; 0 disables the loop
        """
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        """Start periodic sweeping."""
        if self.interval_seconds <= 0:
            logger.info("Periodic expiry sweep disabled")
            return
        if self._running:
            logger.warning("Expiry sweeper already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._sweep_periodically())
        logger.info(f"Expiry sweeper started (every {self.interval_seconds}s)")

    async def stop(self):
        """Stop periodic sweeping."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        logger.info("Expiry sweeper stopped")

    async def _sweep_periodically(self):
        while self._running:
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Error in expiry sweep: {str(e)}", exc_info=True)

            await asyncio.sleep(self.interval_seconds)

    async def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Expire every due pending booking and return its unit to inventory.

        A bank-transfer slip still awaiting review does not hold the unit past
        the deadline. Each booking is handled in its own transaction.
        """
        now = now or datetime.utcnow()
        result = SweepResult()

        for booking_id in await self._find_due_bookings(now):
            try:
                if await self._expire_booking(booking_id, now):
                    result.expired.append(booking_id)
            except Exception as e:
                logger.error(f"Error expiring booking {booking_id}: {str(e)}", exc_info=True)
                result.failed.append(booking_id)

        if result.expired or result.failed:
            logger.info(
                f"Expiry sweep finished: {len(result.expired)} expired, {len(result.failed)} failed"
            )
        return result

    async def _find_due_bookings(self, now: datetime) -> list[UUID]:
        async with self.session_factory() as session:
            rows = await session.execute(
                select(Booking.id)
                .where(
                    Booking.status == BookingStatus.PENDING.value,
                    Booking.expires_at < now,
                )
                .order_by(Booking.expires_at)
            )
            return list(rows.scalars().all())

    async def _expire_booking(self, booking_id: UUID, now: datetime) -> bool:
        async with unit_of_work(self.session_factory) as session:
            booking = await session.get(Booking, booking_id)

            expired = await transition_booking(
                session,
                booking_id,
                BookingStatus.PENDING,
                BookingStatus.EXPIRED,
                Booking.expires_at < now,
            )
            if not expired:
                # Paid, cancelled or already swept in the meantime
                return False

            await InventoryLedger(session).return_unit(booking.product_id)

            await save_event_to_outbox(
                session,
                BookingExpiredEvent(
                    aggregate_id=booking.id,
                    correlation_id=booking.id,
                    booking_id=booking.id,
                    product_id=booking.product_id,
                    user_id=booking.user_id,
                    expired_at=now,
                ),
            )

        logger.info(f"Expired booking {booking_id}; unit returned to product {booking.product_id}")
        return True
