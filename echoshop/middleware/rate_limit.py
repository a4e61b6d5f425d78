"""
Request throttling with slowapi.

Every route gets the default limit; the code-verification routes take the
stricter TWO_FACTOR_VERIFY_RATE_LIMIT on top to slow down code guessing.
Counters live in process memory, so each worker throttles independently.
"""
import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from echoshop.config import get_settings
from echoshop.error_handlers import error_response
from echoshop.utils.ip_utils import get_client_ip

logger = logging.getLogger(__name__)

settings = get_settings()


def client_key(request: Request) -> str:
    """Throttle per originating client, honouring X-Forwarded-For"""
    return get_client_ip(request) or get_remote_address(request)


limiter = Limiter(
    key_func=client_key,
    default_limits=[settings.rate_limit_default],
    storage_uri="memory://",
    enabled=settings.rate_limit_enabled,
)

verify_rate_limit = settings.two_factor_verify_rate_limit


def _retry_after(exc: RateLimitExceeded) -> int:
    try:
        return int(exc.limit.limit.get_expiry())
    except AttributeError:
        return 60


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(f"Rate limit {exc.detail} exceeded by {client_key(request)} on {request.url.path}")
    return error_response(
        request,
        429,
        f"Too many requests. Limit: {exc.detail}",
        "RATE_LIMITED",
        headers={"Retry-After": str(_retry_after(exc))},
    )
