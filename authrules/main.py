import hmac
import logging
import re
from typing import Any

from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse

from authrules.api.routes.claims import router as claims_router
from authrules.api.routes.health import router as health_router
from authrules.api.routes.rules import router as rules_router
from authrules.core.config import AppEnvironment, settings
from authrules.core.errors import AuthRulesError, get_status_code
from authrules.core.observability import (
    ObservabilityMiddleware,
    configure_structured_logging,
    get_request_id,
    metrics_endpoint,
)

# Configure structured logging before creating logger
if settings.observability_structured_logs:
    configure_structured_logging(settings.app_log_level)

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

_SENSITIVE_PATTERNS = [
    r"[/\\][\w/-]+\.py",  # File paths
    r"SELECT.*FROM",  # SQL text (claim queries, generated DDL)
    r"CREATE\s+(OR\s+REPLACE\s+)?(VIEW|FUNCTION|TRIGGER)",
    r"INSERT INTO.*VALUES",
    r"UPDATE.*SET",
    r"DELETE FROM",
]


def _sanitize_error_details(details: dict[str, Any]) -> dict[str, Any]:
    """
    Sanitize error details to prevent information leakage in production.

    Values that look like file paths or SQL are redacted; structure and
    plain identifiers (relation, claim, operation) are kept.
    """
    if settings.app_env != AppEnvironment.PROD:
        return details

    sanitized: dict[str, Any] = {}
    for key, value in details.items():
        if isinstance(value, str):
            if any(re.search(p, value, re.IGNORECASE | re.DOTALL) for p in _SENSITIVE_PATTERNS):
                sanitized[key] = "[REDACTED]"
            else:
                sanitized[key] = value
        elif isinstance(value, dict):
            sanitized[key] = _sanitize_error_details(value)
        elif isinstance(value, list):
            sanitized[key] = [
                _sanitize_error_details(item) if isinstance(item, dict) else item for item in value
            ]
        else:
            sanitized[key] = value
    return sanitized


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Sets up:
    - Observability middleware (request ids, metrics, request logs)
    - Exception handlers for domain errors
    - Admin API routers
    - Token protected Prometheus metrics endpoint
    """
    app = FastAPI(
        title="Authorization Rules API",
        description="Declarative authorization rules compiled into database objects",
        version="0.1.0",
    )

    if settings.observability_enabled:
        app.add_middleware(ObservabilityMiddleware)

    # ============================================================================
    # Exception Handlers
    # ============================================================================

    @app.exception_handler(AuthRulesError)
    async def auth_rules_error_handler(request: Request, exc: AuthRulesError) -> JSONResponse:
        """Map domain errors to HTTP status codes with a structured body."""
        status_code = get_status_code(exc)
        context = {"details": exc.details, "path": request.url.path, "request_id": get_request_id()}

        if status_code >= 500:
            logger.error(f"{exc.__class__.__name__}: {exc.message}", extra=context)
        else:
            logger.warning(f"{exc.__class__.__name__}: {exc.message}", extra=context)

        return JSONResponse(
            status_code=status_code,
            content={
                "error": exc.__class__.__name__,
                "message": exc.message,
                "details": _sanitize_error_details(exc.details),
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        if exc.status_code in (401, 403):
            logger.warning(
                f"Security event: HTTP {exc.status_code}",
                extra={
                    "security_event": True,
                    "path": request.url.path,
                    "method": request.method,
                    "reason": str(exc.detail),
                },
            )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": "HTTPException", "message": exc.detail, "details": {}},
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Log unexpected exceptions and return a generic 500."""
        logger.error(
            f"Unhandled exception: {exc}",
            exc_info=True,
            extra={"path": request.url.path, "request_id": get_request_id()},
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "InternalServerError",
                "message": "An unexpected error occurred",
                "details": {},
            },
        )

    # ============================================================================
    # Router Registration
    # ============================================================================

    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(claims_router, prefix=API_PREFIX)
    app.include_router(rules_router, prefix=API_PREFIX)

    # ============================================================================
    # Metrics Endpoint (Prometheus) - Token Protected
    # ============================================================================

    async def protected_metrics(request: Request) -> Response:
        """Prometheus metrics; always requires the X-Metrics-Token header."""
        expected_token = settings.metrics_token
        if not expected_token:
            logger.error(
                "Metrics endpoint accessed but METRICS_TOKEN not configured",
                extra={"security_event": True, "event_type": "METRICS_NOT_CONFIGURED"},
            )
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Metrics token not configured. Set METRICS_TOKEN environment variable.",
            )

        metrics_token = request.headers.get("X-Metrics-Token")
        if not hmac.compare_digest(metrics_token or "", expected_token):
            logger.warning(
                "Unauthorized metrics access attempt",
                extra={"security_event": True, "event_type": "METRICS_ACCESS_DENIED"},
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid metrics token",
            )

        return metrics_endpoint()

    if settings.observability_enabled:
        app.add_route("/metrics", protected_metrics)

    return app


app = create_app()
