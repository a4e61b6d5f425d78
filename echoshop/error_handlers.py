"""
Error handling for the security API

Every error leaves the API as one JSON shape:

    {"error": <human message>, "code": <machine code>, "path": <request path>, ...extra}

Services raise APIError subclasses; HTTPException, validation and database
errors raised by the framework are rendered into the same shape here.
"""
import logging
from typing import Optional, Union
from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import SQLAlchemyError, IntegrityError, OperationalError
from pydantic import ValidationError

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base class for errors rendered as API responses

    Subclasses pin ``status_code``, ``error_code`` and ``default_message``;
    callers may still override any of them per raise.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "INTERNAL_ERROR"
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        extra: Optional[dict] = None,
    ):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.extra = extra or {}
        super().__init__(self.message)


class BadRequestError(APIError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "BAD_REQUEST"
    default_message = "Bad request"

    def __init__(self, message: Optional[str] = None, error_code: Optional[str] = None, extra: Optional[dict] = None):
        super().__init__(message, error_code=error_code, extra=extra)


class AuthenticationError(APIError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "AUTHENTICATION_ERROR"
    default_message = "Authentication failed"


class AuthorizationError(APIError):
    status_code = status.HTTP_403_FORBIDDEN
    error_code = "AUTHORIZATION_ERROR"
    default_message = "Insufficient permissions"


class NotFoundError(APIError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"
    default_message = "Resource not found"

    def __init__(self, message: Optional[str] = None, resource_type: str = "resource"):
        super().__init__(message)
        self.resource_type = resource_type


class LockedError(APIError):
    """Too many failed 2FA attempts; refused until the lockout window ends"""
    status_code = status.HTTP_423_LOCKED
    error_code = "LOCKED"
    default_message = "Account is temporarily locked. Please try again later."


class TwoFactorRequiredError(APIError):
    """Protected action attempted without a verified 2FA session

    The ``requires2FA`` flag tells clients to run the challenge flow and retry.
    """
    status_code = status.HTTP_403_FORBIDDEN
    error_code = "2FA_REQUIRED"
    default_message = "2FA verification required"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, extra={"requires2FA": True, "action": "verify_2fa"})


def error_response(
    request: Request,
    status_code: int,
    message: str,
    code: str,
    extra: Optional[dict] = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    body = {"error": message, "code": code, "path": request.url.path}
    if extra:
        body.update(extra)
    return JSONResponse(status_code=status_code, content=body, headers=headers)


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        f"API error: {exc.error_code} - {exc.message}",
        extra={"error_code": exc.error_code, "status_code": exc.status_code, "path": request.url.path}
    )
    return error_response(request, exc.status_code, exc.message, exc.error_code, exc.extra)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(
        request,
        exc.status_code,
        str(exc.detail),
        "HTTP_ERROR",
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError]
) -> JSONResponse:
    """Malformed input is a 400, with pydantic's error list under "details" """
    errors = exc.errors() if isinstance(exc, RequestValidationError) else [{"msg": str(exc)}]
    logger.warning(f"Validation error on {request.url.path}: {len(errors)} problem(s)", extra={"path": request.url.path})

    return error_response(
        request,
        status.HTTP_400_BAD_REQUEST,
        "Request validation failed",
        "VALIDATION_ERROR",
        {"details": jsonable_encoder(errors)},
    )


async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(f"Database error: {type(exc).__name__}", extra={"path": request.url.path}, exc_info=True)

    if isinstance(exc, IntegrityError):
        return error_response(
            request, status.HTTP_409_CONFLICT, "Database integrity constraint violated", "INTEGRITY_ERROR"
        )
    if isinstance(exc, OperationalError):
        return error_response(
            request, status.HTTP_503_SERVICE_UNAVAILABLE, "Database is currently unavailable", "DATABASE_UNAVAILABLE"
        )
    return error_response(
        request, status.HTTP_500_INTERNAL_SERVER_ERROR, "An unexpected database error occurred", "DATABASE_ERROR"
    )


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled exception: {type(exc).__name__}", extra={"path": request.url.path}, exc_info=True)
    return error_response(
        request, status.HTTP_500_INTERNAL_SERVER_ERROR, APIError.default_message, APIError.error_code
    )


def register_error_handlers(app):
    """Register all error handlers with the FastAPI app"""
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_error_handler)
    app.add_exception_handler(Exception, generic_error_handler)

    logger.info("Error handlers registered")
