"""
Gestionnaires d'exceptions utilisés par la factory.
- Erreurs métier (SettlementError et sous-classes) -> JSON {"error", "code"}.
- HTTPException et erreurs de validation -> même forme JSON pour les clients API.
"""
import logging
from fastapi import FastAPI, Request
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from marketplace.errors import (
    MalformedMetadataError,
    NotificationError,
    PersistenceError,
    SessionCreationError,
    SettlementError,
    UntrustedEventError,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = {
    SessionCreationError: 400,
    UntrustedEventError: 400,
    MalformedMetadataError: 400,
    PersistenceError: 500,
    NotificationError: 500,
}

def status_for(exc: SettlementError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[cls]
    return 500

def register_exception_handlers(app: FastAPI) -> None:
    """
    Enregistre les handlers:
    - SettlementError: code HTTP selon la sous-classe, corps {"error", "code"}.
    - HTTPException: {"error": detail, "code": "http_<status>"}.
    - RequestValidationError: 422 {"error", "code": "invalid_request", "details"}.
    """
    @app.exception_handler(SettlementError)
    async def settlement_error_handler(request: Request, exc: SettlementError):
        status = status_for(exc)
        if status >= 500:
            logger.error("app.settlement_error path=%s code=%s error=%s", request.url.path, exc.code, exc)
        else:
            logger.warning("app.settlement_error path=%s code=%s error=%s", request.url.path, exc.code, exc)
        return JSONResponse(status_code=status, content={"error": str(exc), "code": exc.code})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail), "code": f"http_{exc.status_code}"},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0].get("msg") if errors else "Requête invalide"
        return JSONResponse(
            status_code=422,
            content={"error": first, "code": "invalid_request", "details": jsonable_encoder(errors)},
        )
