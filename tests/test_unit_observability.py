"""
Unit tests for observability features.

Tests cover:
- Structured logging with JSON format
- Request correlation ID generation and propagation
- Compile subject context
- Prometheus metrics (HTTP and compiler)
- Token protected metrics endpoint
"""

import json
import logging
import re
import sys
from unittest.mock import patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry

from authrules.core.config import settings
from authrules.core.observability import (
    Metrics,
    ObservabilityMiddleware,
    StructuredFormatter,
    generate_request_id,
    get_compile_subject,
    get_request_id,
    metrics,
    set_compile_subject,
    set_correlation_id,
)
from authrules.domain.enums import Operation
from authrules.domain.filters import Eq, Identity, Literal, Or
from authrules.main import create_app
from authrules.repos.memory import MemoryBackend
from authrules.services.lifecycle import ArtifactLifecycleManager


class TestRequestId:
    def test_generate_request_id_is_uuid(self):
        assert re.match(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", generate_request_id())

    def test_context_roundtrip(self):
        set_correlation_id("request-1")
        assert get_request_id() == "request-1"

    def test_compile_subject(self):
        set_compile_subject("rule:files.read")
        assert get_compile_subject() == "rule:files.read"


class TestStructuredFormatter:
    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord("authrules.test", logging.INFO, __file__, 10, "hello %s", ("x",), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_fields(self):
        set_correlation_id("req-42")
        set_compile_subject("claim:org_ids")

        entry = json.loads(StructuredFormatter().format(self._record(relation="files")))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "authrules.test"
        assert entry["message"] == "hello x"
        assert entry["request_id"] == "req-42"
        assert entry["compile_subject"] == "claim:org_ids"
        assert entry["extra"] == {"relation": "files"}

    def test_exception_info(self):
        try:
            raise ValueError("bad")
        except ValueError:
            record = self._record()
            record.exc_info = sys.exc_info()

        entry = json.loads(StructuredFormatter().format(record))
        assert entry["exception"] == {"type": "ValueError", "message": "bad"}


class TestMiddleware:
    def _app(self, registry: CollectorRegistry) -> tuple[FastAPI, Metrics]:
        local_metrics = Metrics(registry)
        app = FastAPI()
        app.add_middleware(ObservabilityMiddleware, metrics_instance=local_metrics)

        @app.get("/items")
        async def items():
            return {"ok": True}

        return app, local_metrics

    def test_request_id_header_and_metrics(self):
        registry = CollectorRegistry()
        app, _ = self._app(registry)

        resp = TestClient(app).get("/items", headers={"X-Request-ID": "abc"})

        assert resp.headers["X-Request-ID"] == "abc"
        count = registry.get_sample_value(
            "http_requests_total", {"method": "GET", "route": "/items", "status_code": "200"}
        )
        assert count == 1.0

    def test_generates_request_id(self):
        app, _ = self._app(CollectorRegistry())
        resp = TestClient(app).get("/items")
        assert len(resp.headers["X-Request-ID"]) == 36


class TestCompilerMetrics:
    @pytest.mark.anyio
    async def test_compilations_and_degradations_counted(self, options):
        lifecycle = ArtifactLifecycleManager(MemoryBackend(), options, "auth_rules.current_subject()")

        def sample(name, labels):
            return metrics.registry.get_sample_value(name, labels) or 0.0

        before = sample(
            "authrules_compilations_total", {"kind": "rule", "operation": "read", "status": "success"}
        )
        degraded_before = sample("authrules_degradations_total", {"reason": "combinator_in_accessor"})

        await lifecycle.define_rule(
            "files",
            Operation.READ,
            ("id", "owner_id", "status"),
            (Or((Eq("owner_id", Identity()), Eq("status", Literal("public")))),),
        )

        assert sample(
            "authrules_compilations_total", {"kind": "rule", "operation": "read", "status": "success"}
        ) == before + 1
        assert sample("authrules_degradations_total", {"reason": "combinator_in_accessor"}) == (
            degraded_before + 1
        )


class TestMetricsEndpoint:
    def test_requires_configured_token(self):
        with patch.object(settings, "metrics_token", None):
            resp = TestClient(create_app()).get("/metrics")
        assert resp.status_code == 500

    def test_rejects_wrong_token(self):
        with patch.object(settings, "metrics_token", "metrics-secret"):
            resp = TestClient(create_app()).get("/metrics", headers={"X-Metrics-Token": "nope"})
        assert resp.status_code == 403

    def test_serves_prometheus_text(self):
        with patch.object(settings, "metrics_token", "metrics-secret"):
            resp = TestClient(create_app()).get(
                "/metrics", headers={"X-Metrics-Token": "metrics-secret"}
            )
        assert resp.status_code == 200
        assert "authrules_compilations_total" in resp.text
