"""
Exception Handler Module
Provides the ledger error taxonomy and the FastAPI handlers that render it
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base class for every failure a caller can be told about"""

    code = "InternalError"
    http_status = 500
    default_message = "Server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_response(self) -> dict:
        return {"error": self.code, "message": self.message}


class ValidationError(LedgerError):
    """Custom validation error for input validation failures"""

    code = "ValidationError"
    http_status = 400
    default_message = "Invalid request"


class InvalidAmount(ValidationError):
    code = "InvalidAmount"
    default_message = "Amount must be a positive number with at most two decimals"


class NotFound(LedgerError):
    code = "NotFound"
    http_status = 400
    default_message = "Not found"


class PlayerNotFound(NotFound):
    code = "PlayerNotFound"
    default_message = "Player not found"


class RoundNotFound(NotFound):
    code = "RoundNotFound"
    default_message = "Round not found"


class RoundOwnershipMismatch(LedgerError):
    code = "RoundOwnershipMismatch"
    http_status = 400
    default_message = "Round does not belong to this player"


class InsufficientFunds(LedgerError):
    code = "InsufficientFunds"
    http_status = 400
    default_message = "Insufficient balance"


class InvalidSignature(LedgerError):
    """Trust boundary violation on an inbound gateway notification"""

    code = "InvalidSignature"
    http_status = 403
    default_message = "invalid signature"


class GatewayError(LedgerError):
    """Upstream payment gateway failed or answered with a non-success result"""

    code = "GatewayError"
    http_status = 400
    default_message = "Payment gateway error"


class InternalError(LedgerError):
    pass


class ConcurrentUpdateError(InternalError):
    """Raised when a compare-and-swap keeps losing after all retries"""

    default_message = "Concurrent update, please retry"


async def _ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error(f"❌ LEDGER_ERROR: {request.method} {request.url.path} -> {exc.code}: {exc.message}")
        return JSONResponse(status_code=exc.http_status, content=InternalError().to_response())

    logger.info(f"⚠️ REQUEST_REJECTED: {request.method} {request.url.path} -> {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_response())


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    if location:
        message = f"{location}: {message}"
    logger.info(f"⚠️ VALIDATION_FAILED: {request.method} {request.url.path} -> {message}")
    return JSONResponse(status_code=400, content=ValidationError(message).to_response())


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"❌ UNHANDLED_ERROR: {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content=InternalError().to_response())


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the ledger error renderers to a FastAPI application"""
    app.add_exception_handler(LedgerError, _ledger_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
