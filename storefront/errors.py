"""Error taxonomy shared by all storefront services."""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class StorefrontError(Exception):
    """Base class for errors shown to the caller as a plain message."""

    status_code = 400
    default_message = "Operation failed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# Not found

class NotFoundError(StorefrontError):
    status_code = 404
    default_message = "Not found"


class ProductNotFoundError(NotFoundError):
    default_message = "Product not found"


class BookingNotFoundError(NotFoundError):
    default_message = "Booking not found"


class OrderNotFoundError(NotFoundError):
    default_message = "Order not found"


class InvoiceNotFoundError(NotFoundError):
    default_message = "Invoice not found"


class UserNotFoundError(NotFoundError):
    default_message = "User not found"


# Business rules

class BusinessRuleError(StorefrontError):
    status_code = 409
    default_message = "Operation not allowed"


class OutOfStockError(BusinessRuleError):
    default_message = "Product is out of stock"


class AlreadyBookedError(BusinessRuleError):
    default_message = "Product is already booked"


class DuplicateBookingError(BusinessRuleError):
    default_message = (
        "You already have a pending booking. "
        "Please complete or cancel it before booking another product."
    )


class BookingLimitExceededError(BusinessRuleError):
    default_message = "You have reached the maximum number of bookings for this product."


class BookingExpiredError(BusinessRuleError):
    default_message = "Booking has expired"


class BookingNotApprovedError(BusinessRuleError):
    default_message = "Booking has not been approved by admin yet"


class InvalidTransitionError(BusinessRuleError):
    default_message = "This change is not allowed in the current state"


class PaymentAlreadySubmittedError(BusinessRuleError):
    default_message = "A payment for this booking is already awaiting review"


class ProductDeletionError(BusinessRuleError):
    default_message = "Product cannot be deleted"


class UserDeletionError(BusinessRuleError):
    default_message = "Cannot delete user with active bookings. Please cancel or complete them first."


# Identity

class AuthenticationError(StorefrontError):
    status_code = 401
    default_message = "Could not validate credentials"


class PermissionDeniedError(StorefrontError):
    status_code = 403
    default_message = "Admin access required"


class BlockedUserError(PermissionDeniedError):
    default_message = "Your account has been blocked"


# Upstream

class UpstreamServiceError(StorefrontError):
    status_code = 502
    default_message = "Identity provider request failed"


def register_exception_handlers(app: FastAPI):
    """Render storefront and database errors as {"detail": message}."""

    @app.exception_handler(StorefrontError)
    async def handle_storefront_error(request: Request, exc: StorefrontError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message},
            headers=headers,
        )

    @app.exception_handler(SQLAlchemyError)
    async def handle_database_error(request: Request, exc: SQLAlchemyError):
        logger.error(
            f"Database error on {request.method} {request.url.path}: {str(exc)}",
            exc_info=True,
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "Operation failed: database unavailable"},
        )
