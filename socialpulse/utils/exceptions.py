"""
Billing error taxonomy and the FastAPI handlers that render it.

Every error reaches the client as JSON {"error": "..."}; upstream payloads and
tracebacks stay in the logs.
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class BillingError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code:
            self.status_code = status_code


class ValidationError(BillingError):
    """Missing or malformed client input. Raised before any side effect."""
    status_code = 400


class SignatureError(BillingError):
    """Webhook signature did not match the shared secret."""
    status_code = 401


class UsageLimitExceeded(BillingError):
    """Raised when a usage limit is exceeded"""
    status_code = 403

    def __init__(self, message: str, feature_key: str, used: int, limit: int, plan_id: str):
        super().__init__(message)
        self.feature_key = feature_key
        self.used = used
        self.limit = limit
        self.plan_id = plan_id


class NotFoundError(BillingError):
    status_code = 404


class UpstreamError(BillingError):
    """The payment processor (or another third party) rejected or failed a call."""
    status_code = 500


class WebhookPayloadError(BillingError):
    """Webhook body is not JSON or lacks the fields needed to route it."""
    status_code = 500


def require_fields(**fields) -> None:
    """Raise ValidationError naming every field whose value is empty."""
    missing = [name for name, value in fields.items() if value is None or value == ""]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query")]
        fields.append(".".join(loc) or error.get("msg", "request"))
    message = f"Invalid request: {', '.join(fields)}" if fields else "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BillingError, billing_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
