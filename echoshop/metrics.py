"""
Prometheus metrics for the security API

Request metrics are labelled by normalized path so user and product ids do
not explode label cardinality. 2FA metrics never carry user identifiers.
"""
import logging
import re
import time

from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, Gauge, Info, generate_latest, CONTENT_TYPE_LATEST

logger = logging.getLogger(__name__)

metrics_router = APIRouter(tags=["metrics"])

REQUEST_LABELS = ["method", "endpoint", "status_code"]

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    REQUEST_LABELS,
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)
HTTP_REQUESTS_TOTAL = Counter("http_requests_total", "Total number of HTTP requests", REQUEST_LABELS)
HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently in progress",
    ["method", "endpoint"]
)

# purpose: login | critical_action
TWO_FACTOR_CHALLENGES_ISSUED = Counter(
    "two_factor_challenges_issued_total",
    "2FA challenge sessions issued",
    ["purpose"]
)
# result: success | failed | locked | rejected
TWO_FACTOR_VERIFICATIONS = Counter(
    "two_factor_verifications_total",
    "2FA verification attempts by outcome",
    ["purpose", "result"]
)
TWO_FACTOR_LOCKOUTS = Counter(
    "two_factor_lockouts_total",
    "Lockouts applied after repeated wrong codes",
    ["purpose"]
)
TWO_FACTOR_SESSIONS_PURGED = Counter(
    "two_factor_sessions_purged_total",
    "Expired 2FA sessions deleted by the housekeeping job"
)
# result: allowed | denied
PROTECTED_ACTIONS = Counter(
    "protected_actions_total",
    "Critical-action gate decisions",
    ["action_type", "result"]
)

APP_INFO = Info("echoshop_security", "Echo Shop security service information")
APP_INFO.info({"version": "1.0.0", "framework": "fastapi"})

_ID_SEGMENT = re.compile(
    r"^(\d+|[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12})$"
)


@metrics_router.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus text exposition of the default registry"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def normalize_path(path: str) -> str:
    """Collapse numeric and UUID path segments to {id}"""
    return "/".join("{id}" if _ID_SEGMENT.match(part) else part for part in path.split("/"))


async def metrics_middleware(request, call_next):
    method = request.method
    endpoint = normalize_path(request.url.path)
    # Unhandled exceptions surface as 500s
    status_code = "500"
    start = time.perf_counter()

    with HTTP_REQUESTS_IN_PROGRESS.labels(method=method, endpoint=endpoint).track_inprogress():
        try:
            response = await call_next(request)
            status_code = str(response.status_code)
            return response
        finally:
            HTTP_REQUEST_DURATION.labels(method, endpoint, status_code).observe(time.perf_counter() - start)
            HTTP_REQUESTS_TOTAL.labels(method, endpoint, status_code).inc()


def record_two_factor_challenge(purpose: str):
    TWO_FACTOR_CHALLENGES_ISSUED.labels(purpose=purpose).inc()


def record_two_factor_verification(purpose: str, result: str):
    TWO_FACTOR_VERIFICATIONS.labels(purpose=purpose, result=result).inc()


def record_two_factor_lockout(purpose: str):
    TWO_FACTOR_LOCKOUTS.labels(purpose=purpose).inc()


def record_sessions_purged(count: int):
    TWO_FACTOR_SESSIONS_PURGED.inc(count)


def record_protected_action(action_type: str, allowed: bool):
    PROTECTED_ACTIONS.labels(action_type=action_type, result="allowed" if allowed else "denied").inc()
