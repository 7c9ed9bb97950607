"""Inventory ledger: every change to a product's stock counter goes through here."""
import logging
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Product, ProductStatus, stock_status_expression

logger = logging.getLogger(__name__)


class InventoryLedger:
    """
    Stock mutations expressed as single conditional UPDATE statements.

    Nothing here reads stock into Python and writes it back, so two requests
    touching the same product cannot both act on the same stale value.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def take_unit(self, product_id: UUID) -> bool:
        """
        Take one unit for a new booking and mark the product booked.

        Returns False when the product is missing, out of stock or already
        booked; at most one of several concurrent callers can win the last unit.
        """
        result = await self.session.execute(
            update(Product)
            .where(
                Product.id == product_id,
                Product.stock > 0,
                Product.status != ProductStatus.BOOKED.value,
            )
            .values(
                stock=Product.stock - 1,
                status=ProductStatus.BOOKED.value,
            )
            .execution_options(synchronize_session=False)
        )
        taken = result.rowcount == 1
        if taken:
            logger.info(f"Took one unit of product {product_id}")
        return taken

    async def return_unit(self, product_id: UUID) -> bool:
        """
        Return one unit to the pool and recompute status from the new stock.

        Callers invoke this only after winning a conditional booking
        transition out of pending, so each booking returns at most one unit.
        """
        result = await self.session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(
                stock=Product.stock + 1,
                status=stock_status_expression(Product.stock + 1),
            )
            .execution_options(synchronize_session=False)
        )
        returned = result.rowcount == 1
        if returned:
            logger.info(f"Returned one unit of product {product_id} to inventory")
        else:
            logger.warning(f"Product {product_id} missing, unit not returned")
        return returned

    async def release_hold(self, product_id: UUID) -> bool:
        """Clear the booked override after a sale; the unit stays sold."""
        result = await self.session.execute(
            update(Product)
            .where(
                Product.id == product_id,
                Product.status == ProductStatus.BOOKED.value,
            )
            .values(status=stock_status_expression(Product.stock))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
