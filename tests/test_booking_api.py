"""HTTP tests for the customer-facing booking service."""
from datetime import timedelta
from uuid import UUID, uuid4

import pytest
from httpx import ASGITransport, AsyncClient

import services.booking_service.app as booking_service
from conftest import make_token
from storefront.auth import decode_access_token
from storefront.bookings import BookingStateMachine
from storefront.errors import AuthenticationError
from storefront.models import ProductStatus

settings = booking_service.settings


@pytest.fixture
async def client(database):
    async def override_session():
        async with database.session_factory() as session:
            yield session

    booking_service.app.dependency_overrides[booking_service.get_session] = override_session
    transport = ASGITransport(app=booking_service.app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    booking_service.app.dependency_overrides.clear()


def test_decode_access_token(auth_headers):
    user_id = uuid4()
    token = auth_headers(settings, user_id)["Authorization"].split()[1]

    assert decode_access_token(token, settings) == user_id
    with pytest.raises(AuthenticationError):
        decode_access_token(token + "x", settings)


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service": "booking-service"}


async def test_catalogue_browsing(client, make_product):
    product = await make_product(stock=3, name="Pixel 8")
    await make_product(stock=0, name="Nokia 105")

    listed = await client.get("/products", params={"search": "pixel"})
    featured = await client.get("/products/featured")
    single = await client.get(f"/products/{product.id}")
    missing = await client.get(f"/products/{uuid4()}")

    assert [p["name"] for p in listed.json()] == ["Pixel 8"]
    assert [p["name"] for p in featured.json()] == ["Pixel 8"]
    assert single.json()["status"] == ProductStatus.LOW_STOCK.value
    assert missing.status_code == 404
    assert missing.json() == {"detail": "Product not found"}


async def test_anonymous_booking_needs_guest_flag(client, make_product):
    product = await make_product(stock=3)

    refused = await client.post("/bookings", json={"product_id": str(product.id)})
    guest = await client.post("/bookings", json={"product_id": str(product.id), "guest": True})

    assert refused.status_code == 401
    assert refused.json()["detail"] == "You must be logged in to book a product"
    assert guest.status_code == 201
    assert guest.json()["user_id"] is None


async def test_token_checks(client, make_profile, auth_headers):
    blocked = await make_profile(is_blocked=True)

    missing = await client.get("/bookings/mine")
    garbage = await client.get("/bookings/mine", headers={"Authorization": "Bearer not-a-jwt"})
    unknown = await client.get("/bookings/mine", headers=auth_headers(settings, uuid4()))
    refused = await client.get("/bookings/mine", headers=auth_headers(settings, blocked.id))

    assert missing.status_code == 401
    assert garbage.status_code == 401
    assert unknown.status_code == 401
    assert refused.status_code == 403
    assert refused.json()["detail"] == "Your account has been blocked"


async def test_expired_token_is_refused(client, make_profile):
    customer = await make_profile()
    token = make_token(settings, customer.id, expires_in=timedelta(minutes=-5))

    response = await client.get("/bookings/mine", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


async def test_booking_then_purchase(client, session, make_product, make_profile, auth_headers):
    product = await make_product(stock=1, price=799.0)
    customer = await make_profile()
    rival = await make_profile()
    headers = auth_headers(settings, customer.id)

    created = await client.post("/bookings", json={"product_id": str(product.id)}, headers=headers)
    assert created.status_code == 201
    booking = created.json()
    assert booking["status"] == "pending"
    assert booking["approval_status"] == "pending"

    second = await client.post(
        "/bookings", json={"product_id": str(product.id)}, headers=auth_headers(settings, rival.id)
    )
    assert second.status_code == 409
    assert second.json()["detail"] == "Product is already booked"

    own_view = await client.get(f"/products/{product.id}/booking", headers=headers)
    rival_view = await client.get(
        f"/products/{product.id}/booking", headers=auth_headers(settings, rival.id)
    )
    assert own_view.json()["booking"]["id"] == booking["id"]
    assert own_view.json()["product"]["status"] == "booked"
    assert rival_view.json()["booking"] is None

    payment = {
        "product_id": str(product.id),
        "payment_method": "online",
        "shipping_address": "221B Baker Street",
    }
    not_yet = await client.post("/payments", json=payment, headers=headers)
    assert not_yet.status_code == 409
    assert not_yet.json()["detail"] == "Booking has not been approved by admin yet"

    await BookingStateMachine(session).approve_booking(UUID(booking["id"]))

    paid = await client.post("/payments", json=payment, headers=headers)
    assert paid.status_code == 201
    order = paid.json()
    assert order["status"] == "paid"
    assert order["payment_approval_status"] == "approved"
    assert order["total_amount"] == 799.0

    mine = await client.get("/bookings/mine", headers=headers)
    assert [b["status"] for b in mine.json()] == ["paid"]

    orders = await client.get("/orders", headers=headers)
    assert [o["order"]["id"] for o in orders.json()] == [order["id"]]

    detail = await client.get(f"/orders/{order['id']}", headers=headers)
    hidden = await client.get(f"/orders/{order['id']}", headers=auth_headers(settings, rival.id))
    assert detail.status_code == 200
    assert hidden.status_code == 404

    invoice = await client.post(f"/orders/{order['id']}/invoice", headers=headers)
    assert invoice.status_code == 201
    assert invoice.json()["status"] == "paid"

    fetched = await client.get(f"/orders/{order['id']}/invoice", headers=headers)
    assert fetched.json()["invoice"]["invoice_number"] == invoice.json()["invoice_number"]

    listed = await client.get("/invoices", headers=headers)
    assert len(listed.json()) == 1


async def test_booking_limit_endpoint(client, make_product, make_profile, auth_headers):
    product = await make_product(stock=3, max_booking_per_user=2)
    customer = await make_profile()

    response = await client.get(
        "/bookings/limit",
        params={"product_id": str(product.id)},
        headers=auth_headers(settings, customer.id),
    )

    assert response.json() == {
        "can_book": True,
        "current_bookings": 0,
        "max_bookings": 2,
        "message": None,
    }


async def test_bank_transfer_payment(client, session, make_product, make_profile, auth_headers):
    product = await make_product(stock=2)
    customer = await make_profile()
    headers = auth_headers(settings, customer.id)
    created = await client.post("/bookings", json={"product_id": str(product.id)}, headers=headers)
    await BookingStateMachine(session).approve_booking(UUID(created.json()["id"]))

    response = await client.post(
        "/payments",
        json={
            "product_id": str(product.id),
            "payment_method": "bank_transfer",
            "shipping_address": "1 Main St",
            "payment_slip_url": "payment-slips/abc.png",
        },
        headers=headers,
    )

    assert response.status_code == 201
    assert response.json()["status"] == "pending"
    assert response.json()["payment_slip_url"] == "payment-slips/abc.png"
