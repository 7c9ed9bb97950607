"""Shared fixtures: a throwaway SQLite database and data factories."""
from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from jose import jwt

from storefront.database import Database
from storefront.models import Product, Profile, UserRole, derive_product_status
from storefront.system_settings import BookingPolicy


@pytest.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}")
    await db.create_tables()
    yield db
    await db.drop_tables()
    await db.close()


@pytest.fixture
async def session(database):
    async with database.session_factory() as session:
        yield session


@pytest.fixture
def make_product(session):
    async def factory(
        stock: int = 3,
        price: float = 699.0,
        discounted_price: float = None,
        name: str = "Pixel 8",
        description: str = "128GB, obsidian",
        max_booking_per_user: int = 1,
        created_at: datetime = None,
    ) -> Product:
        product = Product(
            id=uuid4(),
            name=name,
            description=description,
            price=price,
            discounted_price=discounted_price,
            stock=stock,
            status=derive_product_status(stock).value,
            max_booking_per_user=max_booking_per_user,
            created_at=created_at or datetime.utcnow(),
        )
        session.add(product)
        await session.commit()
        return product

    return factory


@pytest.fixture
def make_profile(session):
    async def factory(
        role: UserRole = UserRole.USER,
        email: str = None,
        full_name: str = "Ada Lovelace",
        is_blocked: bool = False,
    ) -> Profile:
        profile = Profile(
            id=uuid4(),
            email=email or f"{uuid4().hex[:8]}@example.com",
            full_name=full_name,
            role=role.value,
            is_blocked=is_blocked,
        )
        session.add(profile)
        await session.commit()
        return profile

    return factory


@pytest.fixture
def instant_policy():
    """Bookings are approved on creation."""
    return BookingPolicy(default_approval_required=False)


@pytest.fixture
def review_policy():
    """Bookings wait for an admin decision."""
    return BookingPolicy(default_approval_required=True)


def make_token(settings, user_id, expires_in: timedelta = timedelta(hours=1)) -> str:
    """Access token shaped like the identity provider's."""
    claims = {
        "sub": str(user_id),
        "exp": datetime.utcnow() + expires_in,
    }
    if settings.jwt_audience:
        claims["aud"] = settings.jwt_audience
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def bearer(settings, user_id) -> dict:
    return {"Authorization": f"Bearer {make_token(settings, user_id)}"}


@pytest.fixture
def auth_headers():
    return bearer
