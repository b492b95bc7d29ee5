"""
Error taxonomy and the JSON error envelope.

Every failure leaves the API as `{"message": ..., "errors": [...]?}` with the
HTTP status carrying the category. Validation and auth errors are returned
verbatim; anything unexpected is logged and answered with a generic message.
"""
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from logging_config import get_logger

logger = get_logger("errors")

GENERIC_MESSAGE = "An unexpected error occurred"


class PortalError(Exception):
    """Base class for errors that map directly onto an HTTP response."""

    status_code = 500

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        self.message = message
        self.errors = errors
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationError(PortalError):
    status_code = 400


class ConflictError(ValidationError):
    """Duplicate unique key. Reported as 400 to match existing clients."""


class AuthenticationError(PortalError):
    status_code = 401

    NO_TOKEN = "NoToken"
    INVALID_OR_EXPIRED = "InvalidOrExpired"

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        if message is None:
            message = "No token provided" if reason == self.NO_TOKEN else "Invalid or expired token"
        super().__init__(message)


class AuthorizationError(PortalError):
    status_code = 403

    ROLE_MISMATCH = "RoleMismatch"
    NOT_OWNER = "NotOwner"

    def __init__(self, reason: str, message: str = "Access denied"):
        self.reason = reason
        super().__init__(message)


class NotFoundError(PortalError):
    status_code = 404

    def __init__(self, resource: str):
        super().__init__(f"{resource} not found")


class UnexpectedError(PortalError):
    status_code = 500


class HashingError(UnexpectedError):
    pass


def _field_errors(exc: RequestValidationError) -> List[Dict[str, str]]:
    out = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "header", "form")]
        out.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    return out


def unexpected_error_response() -> JSONResponse:
    return JSONResponse(status_code=500, content={"message": GENERIC_MESSAGE})


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(PortalError)
    async def portal_error(request: Request, exc: PortalError):
        if exc.status_code >= 500:
            logger.error("%s on %s %s", exc.message, request.method, request.url.path, exc_info=exc)
            return JSONResponse(status_code=exc.status_code, content={"message": GENERIC_MESSAGE})
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"message": "Validation failed", "errors": _field_errors(exc)},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(PyMongoError)
    async def store_error(request: Request, exc: PyMongoError):
        logger.error("Store error on %s %s", request.method, request.url.path, exc_info=exc)
        return unexpected_error_response()

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return unexpected_error_response()
