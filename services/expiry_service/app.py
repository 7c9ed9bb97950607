"""Expiry Service FastAPI application: releases stock held by unpaid bookings."""
import logging
import secrets
from contextlib import asynccontextmanager
from typing import List, Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Header
from pydantic import BaseModel

from storefront.config import Settings
from storefront.database import Database
from storefront.errors import AuthenticationError, register_exception_handlers
from storefront.expiry import ExpirySweeper
from storefront.message_broker import MessageBroker
from storefront.outbox import OutboxPublisher

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Settings
settings = Settings(
    service_name="expiry-service",
    service_port=8003,
)

# Database and message broker
database = Database(settings.database_url)
message_broker = MessageBroker(settings.rabbitmq_url)
outbox_publisher: Optional[OutboxPublisher] = None
sweeper = ExpirySweeper(
    session_factory=database.session_factory,
    interval_seconds=settings.expiry_sweep_interval_seconds,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for the application."""
    global outbox_publisher

    # Startup
    logger.info("Starting Expiry Service...")

    await database.create_tables()
    await message_broker.connect()

    outbox_publisher = OutboxPublisher(
        session_factory=database.session_factory,
        message_broker=message_broker,
        poll_interval=settings.outbox_poll_interval,
        batch_size=settings.outbox_batch_size,
    )
    await outbox_publisher.start()
    await sweeper.start()

    logger.info("Expiry Service started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Expiry Service...")
    await sweeper.stop()
    if outbox_publisher:
        await outbox_publisher.stop()
    await message_broker.disconnect()
    await database.close()


app = FastAPI(title="Expiry Service", lifespan=lifespan)
register_exception_handlers(app)


def get_sweeper() -> ExpirySweeper:
    return sweeper


async def verify_sweep_token(x_sweep_token: Optional[str] = Header(default=None)):
    """Callers of the sweep must present the shared token when one is configured."""
    if settings.sweep_token is None:
        return
    if x_sweep_token is None or not secrets.compare_digest(x_sweep_token, settings.sweep_token):
        logger.warning("Rejected sweep request with missing or wrong token")
        raise AuthenticationError("Invalid sweep token")


class SweepResponse(BaseModel):
    """Result of one sweep."""
    success: bool = True
    message: str
    expired: List[UUID]
    failed: List[UUID]


@app.post("/sweep", response_model=SweepResponse, dependencies=[Depends(verify_sweep_token)])
async def sweep(expiry_sweeper: ExpirySweeper = Depends(get_sweeper)):
    """Expire every overdue pending booking now."""
    result = await expiry_sweeper.sweep()
    return SweepResponse(
        message=result.message,
        expired=result.expired,
        failed=result.failed,
    )


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "expiry-service"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.service_port)
