"""Product catalogue: customer browsing and admin product management."""
import logging
from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import ProductDeletionError, ProductNotFoundError
from .models import Booking, Product, ProductStatus, derive_product_status

logger = logging.getLogger(__name__)

BULK_BATCH_SIZE = 100
DEFAULT_IMAGE_URL = "/placeholder.svg?height=300&width=300"


class ProductData(BaseModel):
    """Fields an admin supplies when adding or editing a product."""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    price: float = Field(..., gt=0)
    discounted_price: Optional[float] = Field(default=None, gt=0)
    image_url: Optional[str] = None
    category: str = "mobile"
    stock: int = Field(..., ge=0)
    max_booking_per_user: int = Field(default=1, ge=1)


async def add_product(session: AsyncSession, data: ProductData) -> Product:
    """Insert a product with status derived from its stock."""
    product = Product(
        id=uuid4(),
        status=derive_product_status(data.stock).value,
        **data.model_dump(),
    )
    session.add(product)
    await session.commit()

    logger.info(f"Created product {product.id}: {product.name}")
    return product


async def bulk_upload_products(session: AsyncSession, rows: list[dict[str, Any]]) -> int:
    """
    Insert products from an uploaded sheet in batches.

    A batch that fails is logged and skipped; the count of inserted rows is
    returned.
    """
    products = [_product_from_row(row) for row in rows]
    success_count = 0

    for start in range(0, len(products), BULK_BATCH_SIZE):
        batch = products[start:start + BULK_BATCH_SIZE]
        try:
            session.add_all(batch)
            await session.commit()
            success_count += len(batch)
        except Exception as e:
            await session.rollback()
            logger.error(
                f"Error inserting batch {start // BULK_BATCH_SIZE + 1}: {str(e)}",
                exc_info=True
            )

    logger.info(f"Bulk upload inserted {success_count} of {len(products)} products")
    return success_count


def _product_from_row(row: dict[str, Any]) -> Product:
    stock = int(row["stock"])
    discounted = row.get("discounted_price")
    return Product(
        id=uuid4(),
        name=str(row["name"]).strip(),
        description=row.get("description"),
        price=float(row["price"]),
        discounted_price=float(discounted) if discounted else None,
        image_url=row.get("image_url") or DEFAULT_IMAGE_URL,
        category=row.get("category") or "mobile",
        stock=stock,
        status=derive_product_status(stock).value,
        max_booking_per_user=int(row.get("max_booking_per_user") or 1),
    )


async def update_product(session: AsyncSession, product_id: UUID, data: ProductData) -> Product:
    """Replace a product's editable fields; a booked product keeps its hold."""
    product = await get_product(session, product_id)

    for key, value in data.model_dump().items():
        setattr(product, key, value)

    if product.status != ProductStatus.BOOKED.value:
        product.status = derive_product_status(product.stock).value
    product.updated_at = datetime.utcnow()

    await session.commit()

    logger.info(f"Updated product {product_id}")
    return product


async def delete_product(session: AsyncSession, product_id: UUID):
    """Delete a product that has never been booked."""
    product = await get_product(session, product_id)

    if product.status == ProductStatus.BOOKED.value:
        raise ProductDeletionError("Cannot delete a product that is currently booked.")

    result = await session.execute(
        select(Booking.id).where(Booking.product_id == product_id).limit(1)
    )
    if result.first() is not None:
        raise ProductDeletionError(
            "Cannot delete a product that has booking history. "
            "Consider marking it as out of stock instead."
        )

    await session.delete(product)
    await session.commit()

    logger.info(f"Deleted product {product_id}")


async def get_product(session: AsyncSession, product_id: UUID) -> Product:
    product = await session.get(Product, product_id, populate_existing=True)
    if not product:
        raise ProductNotFoundError()
    return product


async def list_products(session: AsyncSession, search: Optional[str] = None) -> list[Product]:
    """All products, newest first, optionally filtered by name or description."""
    query = select(Product)
    if search:
        pattern = f"%{search}%"
        query = query.where(
            or_(
                Product.name.ilike(pattern),
                Product.description.ilike(pattern),
            )
        )
    result = await session.execute(query.order_by(Product.created_at.desc()))
    return list(result.scalars().all())


async def featured_products(session: AsyncSession, limit: int = 4) -> list[Product]:
    """Newest products a customer can book right now."""
    result = await session.execute(
        select(Product)
        .where(Product.status.in_([ProductStatus.IN_STOCK.value, ProductStatus.LOW_STOCK.value]))
        .order_by(Product.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
