"""Tests for stock status derivation and the inventory ledger."""
import pytest

from storefront.inventory import InventoryLedger
from storefront.models import LOW_STOCK_THRESHOLD, Product, ProductStatus, derive_product_status


@pytest.mark.parametrize(
    "stock,expected",
    [
        (0, ProductStatus.OUT_OF_STOCK),
        (1, ProductStatus.LOW_STOCK),
        (LOW_STOCK_THRESHOLD, ProductStatus.LOW_STOCK),
        (LOW_STOCK_THRESHOLD + 1, ProductStatus.IN_STOCK),
        (40, ProductStatus.IN_STOCK),
    ],
)
def test_derive_product_status(stock, expected):
    assert derive_product_status(stock) == expected


async def test_take_unit_marks_product_booked(session, make_product):
    product = await make_product(stock=3)

    assert await InventoryLedger(session).take_unit(product.id)
    await session.commit()
    await session.refresh(product)

    assert product.stock == 2
    assert product.status == ProductStatus.BOOKED.value


async def test_take_unit_refuses_booked_or_empty_products(session, make_product):
    ledger = InventoryLedger(session)
    empty = await make_product(stock=0)
    held = await make_product(stock=4)
    assert await ledger.take_unit(held.id)

    assert not await ledger.take_unit(empty.id)
    assert not await ledger.take_unit(held.id)


async def test_return_unit_recomputes_status_and_never_restores_booked(session, make_product):
    product = await make_product(stock=1)
    ledger = InventoryLedger(session)
    await ledger.take_unit(product.id)

    assert await ledger.return_unit(product.id)
    await session.commit()
    await session.refresh(product)

    assert product.stock == 1
    assert product.status == ProductStatus.LOW_STOCK.value


async def test_return_unit_crossing_low_stock_threshold(session, make_product):
    product = await make_product(stock=LOW_STOCK_THRESHOLD)

    await InventoryLedger(session).return_unit(product.id)
    await session.commit()
    await session.refresh(product)

    assert product.stock == LOW_STOCK_THRESHOLD + 1
    assert product.status == ProductStatus.IN_STOCK.value


async def test_release_hold_keeps_the_sold_unit(session, make_product):
    product = await make_product(stock=1)
    ledger = InventoryLedger(session)
    await ledger.take_unit(product.id)

    assert await ledger.release_hold(product.id)
    await session.commit()
    await session.refresh(product)

    assert product.stock == 0
    assert product.status == ProductStatus.OUT_OF_STOCK.value
    assert not await ledger.release_hold(product.id)


async def test_last_unit_goes_to_exactly_one_of_two_sessions(database, make_product):
    product = await make_product(stock=1)

    async with database.session_factory() as first, database.session_factory() as second:
        # Both requests see one unit available
        assert (await first.get(Product, product.id)).stock == 1
        assert (await second.get(Product, product.id)).stock == 1

        assert await InventoryLedger(first).take_unit(product.id)
        await first.commit()

        assert not await InventoryLedger(second).take_unit(product.id)
        await second.rollback()

    async with database.session_factory() as check:
        stored = await check.get(Product, product.id)
        assert stored.stock == 0
        assert stored.status == ProductStatus.BOOKED.value
