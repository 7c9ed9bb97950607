"""User profiles; accounts themselves live with the identity provider."""
import logging
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import UserDeletionError, UserNotFoundError
from .identity import IdentityProviderClient
from .models import Booking, BookingStatus, Profile, UserRole

logger = logging.getLogger(__name__)


class NewUser(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    full_name: Optional[str] = None
    role: UserRole = UserRole.USER
    is_blocked: bool = False


class UserChanges(BaseModel):
    """Admin edit of a user. Email and password go to the identity provider."""
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, min_length=6)
    full_name: Optional[str] = None
    role: Optional[UserRole] = None
    is_blocked: Optional[bool] = None


async def list_users(session: AsyncSession) -> list[Profile]:
    result = await session.execute(select(Profile).order_by(Profile.created_at.desc()))
    return list(result.scalars().all())


async def get_user(session: AsyncSession, user_id: UUID) -> Profile:
    profile = await session.get(Profile, user_id, populate_existing=True)
    if not profile:
        raise UserNotFoundError()
    return profile


async def create_user(
    session: AsyncSession,
    identity: IdentityProviderClient,
    data: NewUser,
) -> Profile:
    """Create the account at the provider, then its profile row."""
    user_id = await identity.create_user(data.email, data.password, data.full_name)

    profile = Profile(
        id=user_id,
        email=data.email,
        full_name=data.full_name,
        role=data.role.value,
        is_blocked=data.is_blocked,
    )
    session.add(profile)
    await session.commit()

    logger.info(f"Created user {user_id} ({data.email}) with role {data.role.value}")
    return profile


async def update_user(
    session: AsyncSession,
    identity: IdentityProviderClient,
    user_id: UUID,
    changes: UserChanges,
) -> Profile:
    profile = await get_user(session, user_id)

    if changes.email or changes.password:
        await identity.update_user(user_id, email=changes.email, password=changes.password)

    if changes.email:
        profile.email = changes.email
    if changes.full_name is not None:
        profile.full_name = changes.full_name
    if changes.role is not None:
        profile.role = changes.role.value
    if changes.is_blocked is not None:
        profile.is_blocked = changes.is_blocked

    await session.commit()

    logger.info(f"Updated user {user_id}")
    return profile


async def set_role(session: AsyncSession, user_id: UUID, role: UserRole) -> Profile:
    profile = await get_user(session, user_id)
    profile.role = role.value
    await session.commit()

    logger.info(f"Set role of user {user_id} to {role.value}")
    return profile


async def set_blocked(session: AsyncSession, user_id: UUID, is_blocked: bool) -> Profile:
    profile = await get_user(session, user_id)
    profile.is_blocked = is_blocked
    await session.commit()

    logger.info(f"{'Blocked' if is_blocked else 'Unblocked'} user {user_id}")
    return profile


async def delete_user(
    session: AsyncSession,
    identity: IdentityProviderClient,
    user_id: UUID,
):
    """
    Delete a user who has no pending or paid bookings.

    The account is removed at the provider first, then the profile.
    """
    await get_user(session, user_id)

    result = await session.execute(
        select(Booking.id)
        .where(
            Booking.user_id == user_id,
            Booking.status.in_([BookingStatus.PENDING.value, BookingStatus.PAID.value]),
        )
        .limit(1)
    )
    if result.first() is not None:
        raise UserDeletionError()

    await identity.delete_user(user_id)

    profile = await get_user(session, user_id)
    await session.delete(profile)
    await session.commit()

    logger.info(f"Deleted user {user_id}")
