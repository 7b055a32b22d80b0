"""Maps BillingError kinds to HTTP responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from errors import BillingError, ErrorKind

logger = logging.getLogger(__name__)

# kind → (HTTP status, user-facing category)
ERROR_TABLE: dict[ErrorKind, tuple[int, str]] = {
    ErrorKind.UNRESOLVABLE_AMOUNT: (422, "payment"),
    ErrorKind.GATEWAY_CAPTURE_FAILED: (402, "payment"),
    ErrorKind.INVALID_TRANSITION: (409, "duplicate"),
    ErrorKind.STORAGE_TRANSIENT: (503, "network"),
    ErrorKind.INVALID_REQUEST: (400, "format"),
    ErrorKind.NOT_FOUND: (404, "not_found"),
    ErrorKind.PERMISSION_DENIED: (403, "permissions"),
    ErrorKind.RECEIPT_REJECTED: (400, "format"),
}


def error_response(exc: BillingError) -> JSONResponse:
    status_code, category = ERROR_TABLE.get(exc.kind, (400, "format"))
    body = exc.to_dict()
    body["category"] = category
    body["detail"] = exc.message
    return JSONResponse(status_code=status_code, content=body)


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(BillingError)
    async def billing_error_handler(request: Request, exc: BillingError):
        status_code, _ = ERROR_TABLE.get(exc.kind, (400, "format"))
        if status_code >= 500:
            logger.warning("%s %s → %s: %s", request.method, request.url.path, exc.kind.value, exc.message)
        return error_response(exc)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"kind": "internal", "category": "network", "detail": "Internal server error"},
        )
