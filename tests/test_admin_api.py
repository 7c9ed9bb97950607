"""HTTP tests for the admin back office."""
import json
from uuid import uuid4

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select, update

import services.admin_service.app as admin_service
from storefront.bookings import BookingStateMachine
from storefront.events import InvoiceCreatedEvent
from storefront.identity import IdentityProviderClient
from storefront.models import PaymentMethod, UserRole
from storefront.outbox import OutboxMessage, OutboxStatus, save_event_to_outbox
from storefront.payments import PaymentFinalizer

settings = admin_service.settings


def identity_provider(request: httpx.Request) -> httpx.Response:
    if request.method == "POST":
        return httpx.Response(200, json={"id": str(uuid4()), "email": json.loads(request.content)["email"]})
    return httpx.Response(200, json={})


@pytest.fixture
async def client(database):
    async def override_session():
        async with database.session_factory() as session:
            yield session

    identity = IdentityProviderClient(
        "http://idp.test", "service-key", transport=httpx.MockTransport(identity_provider)
    )
    admin_service.app.dependency_overrides[admin_service.get_session] = override_session
    admin_service.app.dependency_overrides[admin_service.get_identity_client] = lambda: identity
    transport = ASGITransport(app=admin_service.app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    admin_service.app.dependency_overrides.clear()
    await identity.close()


@pytest.fixture
async def admin_headers(make_profile, auth_headers):
    admin = await make_profile(role=UserRole.ADMIN, email="admin@example.com")
    return auth_headers(settings, admin.id)


async def test_back_office_requires_an_admin(client, make_profile, auth_headers):
    customer = await make_profile()

    anonymous = await client.get("/admin/products")
    customer_call = await client.get("/admin/products", headers=auth_headers(settings, customer.id))
    health = await client.get("/health")

    assert anonymous.status_code == 401
    assert customer_call.status_code == 403
    assert customer_call.json() == {"detail": "Admin access required"}
    assert health.status_code == 200


async def test_product_management(client, admin_headers):
    created = await client.post(
        "/admin/products",
        json={"name": "Galaxy S24", "price": 899.0, "stock": 10},
        headers=admin_headers,
    )
    assert created.status_code == 201
    product = created.json()
    assert product["status"] == "in-stock"

    invalid = await client.post(
        "/admin/products", json={"name": "Broken", "price": -1, "stock": 1}, headers=admin_headers
    )
    assert invalid.status_code == 422

    updated = await client.put(
        f"/admin/products/{product['id']}",
        json={"name": "Galaxy S24", "price": 849.0, "stock": 1},
        headers=admin_headers,
    )
    assert updated.json()["price"] == 849.0
    assert updated.json()["status"] == "low-stock"

    bulk = await client.post(
        "/admin/products/bulk",
        json={"products": [{"name": "Moto G", "price": 199.0, "stock": 10}]},
        headers=admin_headers,
    )
    assert bulk.json() == {"success": 1, "total": 1}

    listed = await client.get("/admin/products", headers=admin_headers)
    assert {p["name"] for p in listed.json()} == {"Galaxy S24", "Moto G"}

    deleted = await client.delete(f"/admin/products/{product['id']}", headers=admin_headers)
    missing = await client.get(f"/admin/products/{product['id']}", headers=admin_headers)
    assert deleted.status_code == 204
    assert missing.status_code == 404


async def test_booking_decisions(
    client, session, admin_headers, make_product, make_profile, review_policy
):
    product = await make_product(stock=3)
    customer = await make_profile(email="ada@example.com")
    machine = BookingStateMachine(session)
    first = await machine.create_booking(product.id, review_policy, user_id=customer.id)
    first_id = str(first.id)

    listed = await client.get("/admin/bookings", params={"status": "pending"}, headers=admin_headers)
    assert [b["customer_email"] for b in listed.json()] == ["ada@example.com"]

    extended = await client.post(
        f"/admin/bookings/{first_id}/extend", json={"additional_hours": 12}, headers=admin_headers
    )
    assert extended.status_code == 200

    rejected = await client.post(
        f"/admin/bookings/{first_id}/decision",
        json={"decision": "rejected", "notes": "Duplicate order"},
        headers=admin_headers,
    )
    assert rejected.json()["status"] == "cancelled"
    assert rejected.json()["admin_notes"] == "Duplicate order"

    again = await client.post(
        f"/admin/bookings/{first_id}/decision", json={"decision": "approved"}, headers=admin_headers
    )
    assert again.status_code == 409

    stock = await client.get(f"/admin/products/{product.id}", headers=admin_headers)
    assert stock.json()["stock"] == 3


async def test_bank_transfer_review(
    client, session, admin_headers, make_product, make_profile, instant_policy
):
    product = await make_product(stock=3, price=400.0)
    product_id = product.id
    customer = await make_profile(full_name="Ada")
    await BookingStateMachine(session).create_booking(product_id, instant_policy, user_id=customer.id)
    order = await PaymentFinalizer(session).complete_payment(
        product_id, PaymentMethod.BANK_TRANSFER, "1 Main St", "slips/1.png", user_id=customer.id
    )
    order_id = str(order.id)

    pending = await client.get("/admin/payments/pending", headers=admin_headers)
    assert [p["customer_name"] for p in pending.json()] == ["Ada"]

    bypassed = await client.put(
        f"/admin/orders/{order_id}/status", json={"status": "cancelled"}, headers=admin_headers
    )
    assert bypassed.status_code == 409

    approved = await client.post(f"/admin/payments/{order_id}/approve", headers=admin_headers)
    assert approved.json()["status"] == "paid"
    assert approved.json()["payment_approval_status"] == "approved"

    rejected = await client.post(
        f"/admin/payments/{order_id}/reject", json={"reason": "late"}, headers=admin_headers
    )
    assert rejected.status_code == 409

    shipped = await client.put(
        f"/admin/orders/{order_id}/status",
        json={"status": "shipped", "tracking_number": "TRK-9"},
        headers=admin_headers,
    )
    assert shipped.json()["tracking_number"] == "TRK-9"

    summary = await client.get("/admin/dashboard", headers=admin_headers)
    assert summary.json()["total_revenue"] == 400.0
    assert summary.json()["recent_products"][0]["id"] == str(product_id)

    methods = await client.get("/admin/reports/payment-methods", headers=admin_headers)
    assert methods.json() == {"online": 0, "bank_transfer": 1}


async def test_user_management(client, admin_headers):
    created = await client.post(
        "/admin/users",
        json={"email": "grace@example.com", "password": "s3cret!", "full_name": "Grace"},
        headers=admin_headers,
    )
    assert created.status_code == 201
    user_id = created.json()["id"]

    bad_email = await client.post(
        "/admin/users", json={"email": "not-an-email", "password": "s3cret!"}, headers=admin_headers
    )
    assert bad_email.status_code == 422

    role = await client.put(f"/admin/users/{user_id}/role", json={"role": "admin"}, headers=admin_headers)
    blocked = await client.put(
        f"/admin/users/{user_id}/block", json={"is_blocked": True}, headers=admin_headers
    )
    assert role.json()["role"] == "admin"
    assert blocked.json()["is_blocked"] is True

    listed = await client.get("/admin/users", headers=admin_headers)
    assert {u["email"] for u in listed.json()} == {"admin@example.com", "grace@example.com"}

    deleted = await client.delete(f"/admin/users/{user_id}", headers=admin_headers)
    missing = await client.get(f"/admin/users/{user_id}", headers=admin_headers)
    assert deleted.status_code == 204
    assert missing.status_code == 404


async def test_system_settings(client, admin_headers):
    defaults = await client.get("/admin/settings", headers=admin_headers)
    assert defaults.json() == {
        "payment_timeout_hours": 24,
        "allow_duplicate_bookings": False,
        "default_approval_required": True,
    }

    changed = await client.put(
        "/admin/settings",
        json={
            "payment_timeout_hours": 48,
            "allow_duplicate_bookings": True,
            "default_approval_required": False,
        },
        headers=admin_headers,
    )
    reloaded = await client.get("/admin/settings", headers=admin_headers)

    assert changed.status_code == 200
    assert reloaded.json()["payment_timeout_hours"] == 48
    assert reloaded.json()["default_approval_required"] is False


async def test_failed_events_can_be_requeued(client, session, admin_headers):
    order_id = uuid4()
    await save_event_to_outbox(
        session,
        InvoiceCreatedEvent(
            aggregate_id=order_id,
            correlation_id=order_id,
            invoice_id=uuid4(),
            order_id=order_id,
            invoice_number="INV-2401-0007",
            total=120.0,
        ),
    )
    await session.commit()
    await session.execute(
        update(OutboxMessage).values(status=OutboxStatus.FAILED.value, retry_count=5)
    )
    await session.commit()

    requeued = await client.post("/admin/outbox/retry", headers=admin_headers)
    nothing_left = await client.post("/admin/outbox/retry", headers=admin_headers)

    assert requeued.json() == {"requeued": 1}
    assert nothing_left.json() == {"requeued": 0}
    row = (
        await session.execute(select(OutboxMessage).execution_options(populate_existing=True))
    ).scalar_one()
    assert row.status == OutboxStatus.PENDING.value
    assert row.retry_count == 0
