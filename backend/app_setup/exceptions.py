"""
Gestionnaires d’exceptions enregistrés par la factory.
- PassError (et sous-classes): JSON {"success": false, "error", "reason"} avec le statut de l'erreur.
- HTTPException: JSON {"detail"} FastAPI standard (401/403/429 des dépendances).
- Toute autre exception: 500 générique; la trace n'est renvoyée qu'en APP_ENV=development.
"""
import logging
import traceback
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.config import APP_ENV
from backend.passes.errors import GatewayError, PassError

logger = logging.getLogger(__name__)

def error_body(exc: PassError) -> dict:
    body = {"success": False, "error": exc.message, "reason": exc.reason}
    if isinstance(exc, GatewayError) and exc.upstream:
        body["message"] = exc.upstream
    return body

def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(PassError)
    async def pass_error_handler(request: Request, exc: PassError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.reason)
        return JSONResponse(status_code=exc.status_code, content=error_body(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors()]
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Invalid request", "reason": "invalid_request", "fields": fields},
        )

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("%s %s unexpected error", request.method, request.url.path)
        body = {"success": False, "error": "Something went wrong!", "reason": "internal_error"}
        if APP_ENV == "development":
            body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return JSONResponse(status_code=500, content=body)
