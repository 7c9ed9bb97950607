"""HTTP tests for the expiry service."""
from datetime import datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update

import services.expiry_service.app as expiry_service
from storefront.bookings import BookingStateMachine
from storefront.expiry import ExpirySweeper
from storefront.models import Booking


@pytest.fixture
async def client(database):
    sweeper = ExpirySweeper(database.session_factory, interval_seconds=0)
    expiry_service.app.dependency_overrides[expiry_service.get_sweeper] = lambda: sweeper
    transport = ASGITransport(app=expiry_service.app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    expiry_service.app.dependency_overrides.clear()


async def test_sweep_endpoint_expires_overdue_bookings(
    client, session, make_product, make_profile, review_policy
):
    product = await make_product(stock=3)
    customer = await make_profile()
    booking = await BookingStateMachine(session).create_booking(
        product.id, review_policy, user_id=customer.id
    )
    await session.execute(
        update(Booking)
        .where(Booking.id == booking.id)
        .values(expires_at=datetime.utcnow() - timedelta(minutes=5))
    )
    await session.commit()

    response = await client.post("/sweep")

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "Processed 1 expired bookings",
        "expired": [str(booking.id)],
        "failed": [],
    }


async def test_sweep_token_is_checked_when_configured(client, monkeypatch):
    monkeypatch.setattr(expiry_service.settings, "sweep_token", "s3cret")

    missing = await client.post("/sweep")
    wrong = await client.post("/sweep", headers={"X-Sweep-Token": "guess"})
    right = await client.post("/sweep", headers={"X-Sweep-Token": "s3cret"})

    assert missing.status_code == 401
    assert wrong.json() == {"detail": "Invalid sweep token"}
    assert right.json()["message"] == "No expired bookings found"
