"""
Observability module for the authorization-rule compiler.

Provides:
- Structured logging with JSON format and correlation IDs
- Request correlation ID (request_id) generation and propagation
- Prometheus metrics collection (HTTP, compiler)
- Request tracking middleware for latency and status codes

Usage:
    from authrules.core.observability import (
        get_request_id,
        set_correlation_id,
        metrics,
    )
"""

import json
import logging
import time
import uuid
from collections.abc import Callable
from contextvars import ContextVar
from datetime import UTC, datetime

from fastapi import Request, Response
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

# ============================================================================
# Context Variables for Request Tracking
# ============================================================================

# Correlation ID - links all logs for a single request
_request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")

# Registry object being defined or dropped (e.g. "rule:files.read", "claim:org_ids")
_subject_ctx: ContextVar[str] = ContextVar("compile_subject", default="")


def generate_request_id() -> str:
    return str(uuid.uuid4())


def get_request_id() -> str:
    """Get the current request ID from context."""
    return _request_id_ctx.get()


def set_correlation_id(request_id: str) -> None:
    """Set the correlation ID for the current request context."""
    _request_id_ctx.set(request_id)


def get_compile_subject() -> str:
    return _subject_ctx.get()


def set_compile_subject(subject: str) -> None:
    _subject_ctx.set(subject)


# ============================================================================
# Structured Logging Configuration
# ============================================================================

_STANDARD_RECORD_KEYS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "message",
    "getMessage",
    "exc_info",
    "exc_text",
    "stack_info",
}


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs as JSON with standard fields:
    - timestamp: ISO 8601 format
    - level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - logger: Logger name
    - message: Log message
    - request_id: Correlation ID (if available)
    - compile_subject: Rule or claim being compiled (if available)
    - extra: Any additional context from logging.extra
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = get_request_id()
        if request_id:
            log_entry["request_id"] = request_id

        subject = get_compile_subject()
        if subject:
            log_entry["compile_subject"] = subject

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
            }

        log_entry["file"] = record.pathname
        log_entry["line"] = record.lineno
        log_entry["function"] = record.funcName

        # These come from logger.info("msg", extra={"key": "value"})
        extra_keys = {k: v for k, v in record.__dict__.items() if k not in _STANDARD_RECORD_KEYS}
        if extra_keys:
            log_entry["extra"] = extra_keys

        return json.dumps(log_entry, default=str)


def configure_structured_logging(level: str = "INFO") -> None:
    """
    Configure root logger with structured JSON formatting.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(handler)


# ============================================================================
# Prometheus Metrics
# ============================================================================

# Use a custom registry to avoid conflicts with other Prometheus metrics
_registry = CollectorRegistry()


class Metrics:
    """
    Centralized metrics collection for the application.

    Metrics groups:
    - HTTP: Request rate, errors, latency of the admin API
    - Compiler: Compilations, duration, degradations, generated objects
    """

    def __init__(self, registry: CollectorRegistry) -> None:
        self.registry = registry

        # -------------------------------------------------------------------
        # HTTP Metrics
        # -------------------------------------------------------------------

        self.http_requests_total = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "route", "status_code"],
            registry=self.registry,
        )

        self.http_request_duration_seconds = Histogram(
            "http_request_duration_seconds",
            "HTTP request latency in seconds",
            ["method", "route"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
            registry=self.registry,
        )

        self.http_requests_in_progress = Gauge(
            "http_requests_in_progress",
            "HTTP requests currently in progress",
            ["method", "route"],
            registry=self.registry,
        )

        self.http_errors_total = Counter(
            "http_errors_total",
            "Total HTTP errors",
            ["error_type", "method", "route"],
            registry=self.registry,
        )

        # -------------------------------------------------------------------
        # Compiler Metrics
        # -------------------------------------------------------------------

        # kind: rule | claim; operation: read/create/update/delete/claim/drop
        self.compilations_total = Counter(
            "authrules_compilations_total",
            "Total rule and claim compilations",
            ["kind", "operation", "status"],
            registry=self.registry,
        )

        self.compile_duration_seconds = Histogram(
            "authrules_compile_duration_seconds",
            "Compilation duration including teardown and apply, in seconds",
            ["kind"],
            buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
            registry=self.registry,
        )

        self.degradations_total = Counter(
            "authrules_degradations_total",
            "Artifacts skipped or conditions ignored during compilation",
            ["reason"],
            registry=self.registry,
        )

        self.generated_objects = Histogram(
            "authrules_generated_objects",
            "Backing-store objects produced per compilation",
            ["kind"],
            buckets=(1, 2, 3, 5, 10, 25),
            registry=self.registry,
        )


# Global metrics instance
metrics = Metrics(_registry)


# ============================================================================
# Middleware
# ============================================================================


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """
    Middleware that adds observability to all requests.

    Features:
    - Generates and propagates request_id (correlation ID)
    - Logs all requests with structured fields
    - Tracks request latency
    - Records Prometheus metrics
    - Adds request_id to response headers
    """

    def __init__(
        self,
        app: ASGIApp,
        metrics_instance: Metrics | None = None,
        skip_paths: list[str] | None = None,
    ) -> None:
        super().__init__(app)
        self.metrics = metrics_instance or metrics
        self.skip_paths = set(skip_paths or ["/health", "/readyz", "/metrics"])

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        set_correlation_id(request_id)

        route = request.scope.get("route")
        route_pattern = route.path if route else request.url.path
        is_skipped_path = any(route_pattern.startswith(path) for path in self.skip_paths)

        self.metrics.http_requests_in_progress.labels(
            method=request.method, route=route_pattern
        ).inc()
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
            latency = time.perf_counter() - start_time

            self.metrics.http_requests_total.labels(
                method=request.method, route=route_pattern, status_code=response.status_code
            ).inc()
            self.metrics.http_request_duration_seconds.labels(
                method=request.method, route=route_pattern
            ).observe(latency)

            response.headers["X-Request-ID"] = request_id

            if not is_skipped_path:
                logging.getLogger("authrules.request").info(
                    f"{request.method} {route_pattern}",
                    extra={
                        "method": request.method,
                        "route": route_pattern,
                        "status_code": response.status_code,
                        "latency_ms": round(latency * 1000, 2),
                    },
                )
            return response

        except Exception as e:
            latency = time.perf_counter() - start_time
            error_type = type(e).__name__
            self.metrics.http_requests_total.labels(
                method=request.method, route=route_pattern, status_code=500
            ).inc()
            self.metrics.http_errors_total.labels(
                error_type=error_type, method=request.method, route=route_pattern
            ).inc()
            self.metrics.http_request_duration_seconds.labels(
                method=request.method, route=route_pattern
            ).observe(latency)

            logging.getLogger("authrules.request").error(
                f"{request.method} {route_pattern} - {error_type}: {e}",
                extra={
                    "method": request.method,
                    "route": route_pattern,
                    "status_code": 500,
                    "latency_ms": round(latency * 1000, 2),
                    "error_type": error_type,
                },
                exc_info=True,
            )
            raise

        finally:
            self.metrics.http_requests_in_progress.labels(
                method=request.method, route=route_pattern
            ).dec()


# ============================================================================
# Metrics Endpoint
# ============================================================================


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format for scraping.
    """
    return Response(
        content=generate_latest(_registry),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
