"""
Security Headers Middleware

Hardens every response and bounds request body size. Login and 2FA
responses carry passwords' results, TOTP secrets, backup codes and session
tokens, so they are additionally marked uncacheable.
"""
from typing import Dict, Iterable, Tuple
import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger(__name__)

# Responses under these prefixes carry secrets, codes or tokens
NO_STORE_PREFIXES = ("/api/auth/", "/api/security/")

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, private",
    "Pragma": "no-cache",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Adds a fixed set of hardening headers to all responses.

    - X-Content-Type-Options, X-Frame-Options, Referrer-Policy
    - Content-Security-Policy denying everything (JSON API only)
    - Strict-Transport-Security when enabled
    - Cache-Control: no-store under NO_STORE_PREFIXES
    """

    def __init__(
        self,
        app,
        enable_hsts: bool = True,
        hsts_max_age: int = 31536000,  # 1 year
        frame_options: str = "DENY",
        no_store_prefixes: Iterable[str] = NO_STORE_PREFIXES,
    ):
        super().__init__(app)
        self.no_store_prefixes: Tuple[str, ...] = tuple(no_store_prefixes)
        self.headers: Dict[str, str] = {
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": frame_options,
            "Referrer-Policy": "no-referrer",
            "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
        }
        if enable_hsts:
            self.headers["Strict-Transport-Security"] = f"max-age={hsts_max_age}; includeSubDomains"

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        response.headers.update(self.headers)
        if request.url.path.startswith(self.no_store_prefixes):
            response.headers.update(NO_STORE_HEADERS)

        return response


def _reject(request: Request, status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": message, "code": code, "path": request.url.path},
    )


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Rejects bodies whose declared Content-Length exceeds the limit"""

    def __init__(self, app, max_content_length: int = 1024 * 1024):
        super().__init__(app)
        self.max_content_length = max_content_length

    async def dispatch(self, request: Request, call_next) -> Response:
        declared = request.headers.get("content-length")
        if declared is None:
            return await call_next(request)

        if not declared.isdigit():
            return _reject(request, 400, "Invalid Content-Length header", "BAD_REQUEST")

        if int(declared) > self.max_content_length:
            logger.warning(
                f"Rejected {request.method} {request.url.path}: body of {declared} bytes "
                f"exceeds {self.max_content_length}"
            )
            return _reject(request, 413, "Request body too large", "PAYLOAD_TOO_LARGE")

        return await call_next(request)
