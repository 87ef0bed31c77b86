"""Maps domain errors to HTTP responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fleet_engine.core.errors import (
    AdmissionDenied,
    AlreadyExists,
    AuthenticationError,
    ConcurrencyError,
    ConflictError,
    FleetError,
    FleetValidationError,
    NotFoundError,
    PersistenceError,
    PortBlockOwnershipError,
    ResourceExhausted,
)

logger = logging.getLogger(__name__)


# Most specific first
STATUS_CODES = (
    (FleetValidationError, 400),
    (AuthenticationError, 401),
    (PortBlockOwnershipError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (ResourceExhausted, 409),
    (AdmissionDenied, 409),
    (AlreadyExists, 409),
    (ConcurrencyError, 409),
    (PersistenceError, 500),
)


def status_code_for(error: FleetError) -> int:
    for error_type, status_code in STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


async def fleet_error_handler(request: Request, exc: FleetError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"[api] {request.method} {request.url.path} failed: {exc}")

    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FleetError, fleet_error_handler)
