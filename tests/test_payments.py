"""Tests for payment completion and bank-transfer review."""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import update

from storefront.bookings import BookingStateMachine
from storefront.errors import (
    BookingExpiredError,
    BookingNotApprovedError,
    BookingNotFoundError,
    InvalidTransitionError,
    PaymentAlreadySubmittedError,
)
from storefront.models import (
    ApprovalStatus,
    Booking,
    BookingStatus,
    OrderStatus,
    PaymentMethod,
    ProductStatus,
)
from storefront.payments import DEFAULT_REJECTION_NOTE, PaymentFinalizer


@pytest.fixture
def book(session, instant_policy):
    async def factory(product, user):
        return await BookingStateMachine(session).create_booking(
            product.id, instant_policy, user_id=user.id
        )

    return factory


async def test_online_payment_pays_booking_and_order(session, make_product, make_profile, book):
    product = await make_product(stock=4, price=899.0, discounted_price=799.0)
    customer = await make_profile()
    booking = await book(product, customer)

    order = await PaymentFinalizer(session).complete_payment(
        product.id, PaymentMethod.ONLINE, "221B Baker Street", user_id=customer.id
    )

    await session.refresh(booking)
    await session.refresh(product)
    assert order.status == OrderStatus.PAID.value
    assert order.payment_approval_status == ApprovalStatus.APPROVED.value
    assert order.payment_approved_at is not None
    assert order.total_amount == 799.0
    assert order.booking_id == booking.id
    assert booking.status == BookingStatus.PAID.value
    # The unit stays sold; the product is bookable again
    assert product.stock == 3
    assert product.status == ProductStatus.LOW_STOCK.value


async def test_bank_transfer_waits_for_review(session, make_product, make_profile, book):
    product = await make_product(stock=4, price=499.0)
    customer = await make_profile()
    booking = await book(product, customer)

    order = await PaymentFinalizer(session).complete_payment(
        product.id,
        PaymentMethod.BANK_TRANSFER,
        "221B Baker Street",
        payment_slip_url="slips/abc.jpg",
        user_id=customer.id,
    )

    await session.refresh(booking)
    assert order.status == OrderStatus.PENDING.value
    assert order.payment_approval_status == ApprovalStatus.PENDING.value
    assert order.payment_slip_url == "slips/abc.jpg"
    assert order.total_amount == 499.0
    assert booking.status == BookingStatus.PENDING.value


async def test_second_slip_for_same_booking_is_refused(session, make_product, make_profile, book):
    product = await make_product(stock=4)
    customer = await make_profile()
    await book(product, customer)
    product_id, customer_id = product.id, customer.id
    finalizer = PaymentFinalizer(session)
    await finalizer.complete_payment(
        product_id, PaymentMethod.BANK_TRANSFER, "addr", "slips/1.jpg", user_id=customer_id
    )

    with pytest.raises(PaymentAlreadySubmittedError):
        await finalizer.complete_payment(
            product_id, PaymentMethod.ONLINE, "addr", user_id=customer_id
        )


async def test_payment_requires_pending_approved_unexpired_booking(
    session, make_product, make_profile, review_policy
):
    product_id = (await make_product(stock=4)).id
    customer_id = (await make_profile()).id
    finalizer = PaymentFinalizer(session)

    with pytest.raises(BookingNotFoundError):
        await finalizer.complete_payment(product_id, PaymentMethod.ONLINE, "addr", user_id=customer_id)

    booking = await BookingStateMachine(session).create_booking(
        product_id, review_policy, user_id=customer_id
    )
    booking_id = booking.id
    with pytest.raises(BookingNotApprovedError):
        await finalizer.complete_payment(product_id, PaymentMethod.ONLINE, "addr", user_id=customer_id)

    await BookingStateMachine(session).approve_booking(booking_id)
    await session.execute(
        update(Booking)
        .where(Booking.id == booking_id)
        .values(expires_at=datetime.utcnow() - timedelta(minutes=1))
    )
    await session.commit()

    with pytest.raises(BookingExpiredError, match="Booking has expired"):
        await finalizer.complete_payment(product_id, PaymentMethod.ONLINE, "addr", user_id=customer_id)


async def test_someone_elses_booking_cannot_be_paid(session, make_product, make_profile, book):
    product = await make_product(stock=4)
    owner = await make_profile()
    stranger_id = (await make_profile()).id
    await book(product, owner)
    product_id = product.id

    with pytest.raises(BookingNotFoundError):
        await PaymentFinalizer(session).complete_payment(
            product_id, PaymentMethod.ONLINE, "addr", user_id=stranger_id
        )


async def test_approving_bank_transfer_pays_booking(session, make_product, make_profile, book):
    product = await make_product(stock=1)
    customer = await make_profile()
    admin = await make_profile()
    booking = await book(product, customer)
    finalizer = PaymentFinalizer(session)
    order = await finalizer.complete_payment(
        product.id, PaymentMethod.BANK_TRANSFER, "addr", "slips/1.jpg", user_id=customer.id
    )

    approved = await finalizer.approve_payment(order.id, admin_id=admin.id)

    await session.refresh(booking)
    await session.refresh(product)
    assert approved.status == OrderStatus.PAID.value
    assert approved.payment_approval_status == ApprovalStatus.APPROVED.value
    assert approved.payment_approved_by == admin.id
    assert booking.status == BookingStatus.PAID.value
    assert product.stock == 0
    assert product.status == ProductStatus.OUT_OF_STOCK.value

    order_id = order.id
    with pytest.raises(InvalidTransitionError):
        await finalizer.approve_payment(order_id)


async def test_rejecting_bank_transfer_returns_unit_once(session, make_product, make_profile, book):
    product = await make_product(stock=2)
    customer = await make_profile()
    booking = await book(product, customer)
    finalizer = PaymentFinalizer(session)
    order = await finalizer.complete_payment(
        product.id, PaymentMethod.BANK_TRANSFER, "addr", "slips/blurry.jpg", user_id=customer.id
    )

    rejected = await finalizer.reject_payment(order.id)

    await session.refresh(booking)
    await session.refresh(product)
    assert rejected.status == OrderStatus.CANCELLED.value
    assert rejected.payment_approval_status == ApprovalStatus.REJECTED.value
    assert booking.status == BookingStatus.CANCELLED.value
    assert booking.admin_notes == DEFAULT_REJECTION_NOTE
    assert product.stock == 2
    assert product.status == ProductStatus.LOW_STOCK.value

    order_id = order.id
    with pytest.raises(InvalidTransitionError):
        await finalizer.reject_payment(order_id, "again")

    await session.refresh(product)
    assert product.stock == 2


async def test_pending_payments_listing(session, make_product, make_profile, book):
    product = await make_product(stock=3, name="Moto G")
    customer = await make_profile(full_name="Grace Hopper")
    await book(product, customer)
    finalizer = PaymentFinalizer(session)
    order = await finalizer.complete_payment(
        product.id, PaymentMethod.BANK_TRANSFER, "addr", "slips/1.jpg", user_id=customer.id
    )

    pending = await finalizer.list_pending_payments()

    assert len(pending) == 1
    assert pending[0]["order"].id == order.id
    assert pending[0]["product_name"] == "Moto G"
    assert pending[0]["customer_name"] == "Grace Hopper"

    await finalizer.approve_payment(order.id)
    assert await finalizer.list_pending_payments() == []
