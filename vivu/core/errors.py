"""Error normalization and handlers."""

import logging
import builtins
from enum import Enum
from typing import Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from vivu.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class PermissionError(AppError, builtins.PermissionError):
    code = "forbidden"
    status_code = 403


class AuthenticationError(AppError):
    code = "invalid_credentials"
    status_code = 401


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class SubscriptionRequiredError(AppError):
    """Raised when the account may not use the metered feature right now."""
    code = "subscription_required"
    status_code = 402


class BillingDisabledError(AppError):
    code = "billing_disabled"
    status_code = 503


class PaymentProviderError(AppError):
    code = "payment_provider_error"
    status_code = 502


class RedemptionErrorKind(str, Enum):
    INVALID_INPUT = "InvalidInput"
    NOT_FOUND = "NotFound"
    NOT_REDEEMABLE = "NotRedeemable"
    ALREADY_USED = "AlreadyUsed"
    CONCURRENCY_CONFLICT = "ConcurrencyConflict"


class RedemptionError(AppError):
    """Base class for promo redemption failures. `kind` names the variant."""
    code = "redemption_error"
    status_code = 400
    kind: RedemptionErrorKind


class InvalidPromoCodeError(RedemptionError, ValueError):
    code = "invalid_promo_code"
    status_code = 400
    kind = RedemptionErrorKind.INVALID_INPUT


class PromoNotFoundError(RedemptionError):
    code = "promo_not_found"
    status_code = 404
    kind = RedemptionErrorKind.NOT_FOUND


class PromoNotRedeemableError(RedemptionError):
    code = "promo_not_redeemable"
    status_code = 409
    kind = RedemptionErrorKind.NOT_REDEEMABLE


class PromoAlreadyUsedError(RedemptionError):
    code = "promo_already_used"
    status_code = 409
    kind = RedemptionErrorKind.ALREADY_USED


class ConcurrencyConflictError(RedemptionError, ConflictError):
    """Optimistic-concurrency check failed; retry from a fresh read."""
    code = "concurrency_conflict"
    status_code = 409
    kind = RedemptionErrorKind.CONCURRENCY_CONFLICT


# Framework-raised HTTPExceptions (auth dependency, unknown routes)
_HTTP_CODES = {401: "unauthorized", 403: "forbidden", 404: "not_found", 405: "method_not_allowed"}


def _request_id_for(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or uuid4().hex


def _error_response(request: Request, status: int, code: str, message: str, **fields) -> JSONResponse:
    rid = _request_id_for(request)
    error = {"code": code, "message": message, "request_id": rid}
    error.update(fields)
    response = JSONResponse(status_code=status, content={"error": error, "detail": message})
    response.headers["x-request-id"] = rid
    return response


async def app_error_handler(request: Request, exc: AppError):
    logging.getLogger("vivu").log(
        logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        "app.error",
        extra={"error_code": exc.code, "status": exc.status_code, "path": request.url.path},
    )
    fields = {}
    kind = getattr(exc, "kind", None)
    if kind is not None:
        fields["kind"] = kind.value
    if exc.request_id:
        request.state.request_id = exc.request_id
    return _error_response(request, exc.status_code, exc.code, exc.message, **fields)


async def http_error_handler(request: Request, exc: HTTPException):
    code = _HTTP_CODES.get(exc.status_code, "http_error")
    logging.getLogger("vivu").warning("http.error", extra={"error_code": code, "status": exc.status_code})
    return _error_response(request, exc.status_code, code, str(exc.detail or "HTTP error"))


async def unhandled_exception_handler(request: Request, exc: Exception):
    logging.getLogger("vivu").error("unhandled.exception", exc_info=exc, extra={"error_code": "internal_error"})
    return _error_response(request, 500, "internal_error", "Unexpected error")


def install_error_handlers(app) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
