"""
Logging configuration for the security API

Sets up:
- Console output, plain or JSON
- Size-rotated application and error log files when LOG_DIR is set
- Redaction of credential-bearing fields (codes, tokens, secrets, passwords)
- Request logging middleware tagging each request with an X-Request-ID
"""
import json
import logging
import logging.handlers
import re
import sys
import time
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

from echoshop.utils.clock import utcnow
from echoshop.utils.ip_utils import get_client_ip

REDACTED = "[REDACTED]"

# Substrings of extra-field names whose values never reach a log sink
REDACTED_KEYS = (
    "password",
    "secret",
    "token",
    "authorization",
    "code",
    "backup",
)

# Contain "code" but are response labels
LABEL_KEYS = {"error_code", "status_code"}

# Record attributes copied into JSON output when present
CONTEXT_FIELDS = (
    "request_id",
    "method",
    "path",
    "client",
    "status_code",
    "duration_ms",
    "error_code",
    "user_id",
    "purpose",
    "action_type",
    "db_connected",
)

REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9-]{1,64}$")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_LOG_BYTES = 10 * 1024 * 1024  # 10MB
LOG_BACKUP_COUNT = 5


def redact(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Replace values whose key names a credential, recursing into dicts"""
    clean = {}
    for key, value in fields.items():
        if key in LABEL_KEYS:
            clean[key] = value
        elif any(marker in key.lower() for marker in REDACTED_KEYS):
            clean[key] = REDACTED
        elif isinstance(value, dict):
            clean[key] = redact(value)
        else:
            clean[key] = value
    return clean


class JSONFormatter(logging.Formatter):
    """One JSON object per line for log aggregation"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        context = {key: getattr(record, key) for key in CONTEXT_FIELDS if hasattr(record, key)}
        log_data.update(redact(context))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def _formatter(enable_json: bool) -> logging.Formatter:
    if enable_json:
        return JSONFormatter()
    return logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)


def _rotating_handler(path: Path, level: int, enable_json: bool) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(_formatter(enable_json))
    return handler


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[str] = None,
    app_name: str = "echoshop-security",
    enable_json: bool = False
):
    """
    Configure the root logger

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_dir: Directory for rotated log files; console only when None
        app_name: Base name of the log files
        enable_json: Emit JSON lines instead of plain text
    """
    level = getattr(logging, log_level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(_formatter(enable_json))
    root_logger.addHandler(console_handler)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        app_log_file = log_path / f"{app_name}.log"
        root_logger.addHandler(_rotating_handler(app_log_file, level, enable_json))
        root_logger.addHandler(_rotating_handler(log_path / f"{app_name}-error.log", logging.ERROR, enable_json))

        logging.info(f"File logging enabled: {app_log_file}")

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("apscheduler.executors.default").setLevel(logging.WARNING)
    logging.getLogger("passlib").setLevel(logging.ERROR)

    logging.info(f"Logging configured: level={log_level}, json={enable_json}")


def _request_id(request) -> str:
    """Reuse a well-formed inbound X-Request-ID, otherwise mint one"""
    inbound = request.headers.get("x-request-id")
    if inbound and REQUEST_ID_PATTERN.match(inbound):
        return inbound
    return uuid.uuid4().hex[:12]


async def log_requests_middleware(request, call_next):
    """
    Log each request's method, path, status and duration.

    Bodies, query strings and headers are never logged: login and 2FA
    requests carry passwords, codes and session tokens.
    """
    request_id = _request_id(request)
    request.state.request_id = request_id

    logger = logging.getLogger("echoshop.requests")
    context = {
        "request_id": request_id,
        "method": request.method,
        "path": request.url.path,
        "client": get_client_ip(request),
    }

    start_time = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(
            f"Request failed: {request.method} {request.url.path} - {type(e).__name__}",
            extra={**context, "duration_ms": round((time.perf_counter() - start_time) * 1000, 2)},
            exc_info=True
        )
        raise

    duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
    log = logger.warning if response.status_code in (401, 403, 423, 429) else logger.info
    log(
        f"{request.method} {request.url.path} - {response.status_code}",
        extra={**context, "status_code": response.status_code, "duration_ms": duration_ms}
    )

    response.headers["X-Request-ID"] = request_id
    return response
