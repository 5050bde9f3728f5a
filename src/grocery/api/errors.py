"""HTTP mapping for domain errors.

Protean's own handlers are registered first; the grocery-specific ones below
replace or refine them. FastAPI picks the most specific class in the MRO, so
``InsufficientStockError`` and ``IllegalTransitionError`` win over their
``ValidationError`` base.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.integrations.fastapi import register_exception_handlers

from grocery.exceptions import (
    IllegalTransitionError,
    InsufficientStockError,
    InvalidSignatureError,
    LockTimeoutError,
)

logger = structlog.get_logger(__name__)


async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"error": exc.messages})


async def _conflict(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"error": exc.messages})


async def _not_found(request: Request, exc: ObjectNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": "Not found"})


async def _lock_timeout(request: Request, exc: LockTimeoutError) -> JSONResponse:
    logger.warning("Request timed out waiting for a lock", path=request.url.path, key=exc.key)
    return JSONResponse(status_code=503, content={"error": "Busy, please try again"})


async def _invalid_signature(request: Request, exc: InvalidSignatureError) -> JSONResponse:
    return JSONResponse(status_code=401, content={"error": "Invalid webhook signature"})


def register_error_handlers(app: FastAPI) -> None:
    register_exception_handlers(app)
    app.add_exception_handler(ValidationError, _validation_error)
    app.add_exception_handler(InsufficientStockError, _conflict)
    app.add_exception_handler(IllegalTransitionError, _conflict)
    app.add_exception_handler(ObjectNotFoundError, _not_found)
    app.add_exception_handler(LockTimeoutError, _lock_timeout)
    app.add_exception_handler(InvalidSignatureError, _invalid_signature)
