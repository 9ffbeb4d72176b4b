"""
api/errors.py — maps domain errors onto HTTP responses.

Clients only ever see the fixed public message of each error class; the
detailed message stays in the logs. StorageError never carries query text
to the client.
"""

import logging
from typing import Dict, Type

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from core.errors import (
    CatalogError,
    Conflict,
    CredentialError,
    CycleDetected,
    DeadlineExceeded,
    Forbidden,
    NotFound,
    PermissionDenied,
    RequestCancelled,
    StorageError,
    ValidationError,
)
from core.metrics import record_error

logger = logging.getLogger(__name__)

# Most specific class first; lookup walks the MRO of the raised error
STATUS_CODES: Dict[Type[CatalogError], int] = {
    NotFound: 404,
    Forbidden: 403,
    PermissionDenied: 403,
    ValidationError: 400,
    Conflict: 409,
    CycleDetected: 409,
    CredentialError: 401,
    DeadlineExceeded: 504,
    RequestCancelled: 503,
    StorageError: 500,
}


def status_for(error: CatalogError) -> int:
    for cls in type(error).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return 500


def error_body(error: CatalogError) -> Dict[str, str]:
    # Validation messages are about the caller's own input and safe to echo
    if isinstance(error, ValidationError):
        return {"detail": error.message}
    return {"detail": error.public_message}


async def catalog_error_handler(request: Request, exc: CatalogError) -> JSONResponse:
    status_code = status_for(exc)
    record_error(type(exc).__name__)

    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {status_code}: {exc.message}")

    return JSONResponse(status_code=status_code, content=error_body(exc))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CatalogError, catalog_error_handler)
