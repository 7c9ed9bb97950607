"""Admin-editable booking policy stored in the system_settings singleton row."""
import logging

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import SystemSettings

logger = logging.getLogger(__name__)

SETTINGS_ROW_ID = 1


class BookingPolicy(BaseModel):
    """Snapshot of the system settings handed to booking creation."""
    payment_timeout_hours: int = Field(default=24, ge=1)
    allow_duplicate_bookings: bool = False
    default_approval_required: bool = True

    class Config:
        from_attributes = True


async def _get_or_create_row(session: AsyncSession) -> SystemSettings:
    result = await session.execute(select(SystemSettings).limit(1))
    row = result.scalar_one_or_none()
    if row is None:
        defaults = BookingPolicy()
        row = SystemSettings(id=SETTINGS_ROW_ID, **defaults.model_dump())
        session.add(row)
        await session.flush()
        logger.info("Created default system settings row")
    return row


async def load_booking_policy(session: AsyncSession) -> BookingPolicy:
    """Read the current booking policy, creating the defaults row if needed."""
    row = await _get_or_create_row(session)
    return BookingPolicy.model_validate(row)


async def update_booking_policy(session: AsyncSession, policy: BookingPolicy) -> BookingPolicy:
    """Persist a new booking policy."""
    row = await _get_or_create_row(session)
    row.payment_timeout_hours = policy.payment_timeout_hours
    row.allow_duplicate_bookings = policy.allow_duplicate_bookings
    row.default_approval_required = policy.default_approval_required
    await session.commit()

    logger.info(
        f"System settings updated: timeout={policy.payment_timeout_hours}h "
        f"duplicates={policy.allow_duplicate_bookings} "
        f"approval_required={policy.default_approval_required}"
    )
    return policy
