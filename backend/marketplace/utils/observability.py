from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import time
import uuid
from datetime import datetime

from flask import g, has_request_context, request

SERVICE_NAME = "marketplace-backend"

access_logger = logging.getLogger("marketplace.access")

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")

# Redacted from error reports.
_REDACTED_HEADERS = ("authorization", "stripe-signature", "cookie", "set-cookie", "idempotency-key", "x-idempotency-key")
_REDACTED_FIELDS = ("client_secret", "shipping_address", "bootstrap_secret", "line1", "line2", "postal_code")


def get_request_id() -> str:
    if not has_request_context():
        return ""
    return getattr(g, "request_id", "") or ""


def _incoming_request_id() -> str:
    rid = (request.headers.get("X-Request-Id") or "").strip()
    if rid and _REQUEST_ID_RE.match(rid):
        return rid
    return str(uuid.uuid4())


def _hash_ip(ip: str, salt: str) -> str:
    return hashlib.sha256(f"{salt}:{ip or ''}".encode("utf-8")).hexdigest()[:16]


def annotate(**tags) -> None:
    """Attach tags (event id, listing id, ...) to the current Sentry scope."""
    try:
        import sentry_sdk
    except Exception:
        return
    for key, value in tags.items():
        if value is not None:
            sentry_sdk.set_tag(key, str(value))


def init_sentry(app) -> None:
    dsn = (os.getenv("SENTRY_DSN") or "").strip()
    if not dsn:
        app.logger.info("sentry_disabled_no_dsn")
        return
    try:
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        try:
            traces_rate = float((os.getenv("SENTRY_TRACES_SAMPLE_RATE") or "0").strip())
        except ValueError:
            traces_rate = 0.0
        sentry_sdk.init(
            dsn=dsn,
            environment=(os.getenv("SENTRY_ENVIRONMENT") or os.getenv("MARKETPLACE_ENV") or "dev"),
            release=(os.getenv("GIT_SHA") or "unknown"),
            integrations=[FlaskIntegration()],
            send_default_pii=False,
            traces_sample_rate=max(0.0, min(traces_rate, 1.0)),
            before_send=_before_send_scrub,
        )
        app.logger.info("sentry_enabled")
    except Exception as e:
        app.logger.warning("sentry_init_failed err=%s", e)


def _scrub_mapping(data):
    if isinstance(data, dict):
        return {k: ("[REDACTED]" if str(k).lower() in _REDACTED_FIELDS else _scrub_mapping(v)) for k, v in data.items()}
    if isinstance(data, list):
        return [_scrub_mapping(v) for v in data]
    return data


def _before_send_scrub(event, hint):
    req = event.get("request")
    if not isinstance(req, dict):
        return event
    headers = req.get("headers") or {}
    for key in list(headers.keys()):
        if key.lower() in _REDACTED_HEADERS:
            headers[key] = "[REDACTED]"
    req["headers"] = headers
    if str(req.get("url") or "").rstrip("/").endswith("/api/webhooks/stripe"):
        # Raw platform payloads carry customer and account details.
        req["data"] = "[REDACTED]"
    elif "data" in req:
        req["data"] = _scrub_mapping(req["data"])
    return event


def init_otel(app, *, enabled: bool) -> None:
    if not enabled:
        return
    endpoint = (os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or "").strip()
    if not endpoint:
        app.logger.info("otel_disabled_no_endpoint")
        return
    try:
        from opentelemetry import trace
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.flask import FlaskInstrumentor
        from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        from marketplace.extensions import db

        provider = TracerProvider(
            resource=Resource.create(
                {
                    "service.name": SERVICE_NAME,
                    "service.version": os.getenv("GIT_SHA") or "unknown",
                    "deployment.environment": os.getenv("MARKETPLACE_ENV") or "dev",
                }
            )
        )
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        trace.set_tracer_provider(provider)
        # Health probes would drown out request traces.
        FlaskInstrumentor().instrument_app(app, excluded_urls="api/health")
        with app.app_context():
            SQLAlchemyInstrumentor().instrument(engine=db.engine)
        app.logger.info("otel_enabled endpoint=%s", endpoint)
    except Exception as e:
        app.logger.warning("otel_init_failed err=%s", e)


def install_request_observers(app) -> None:
    """Request ids in and out, plus one JSON access-log line per /api request."""

    @app.before_request
    def _request_observer_begin():
        g.request_id = _incoming_request_id()
        g.request_started_at = time.perf_counter()

    @app.after_request
    def _request_observer_end(response):
        rid = get_request_id() or str(uuid.uuid4())
        response.headers["X-Request-Id"] = rid
        if not request.path.startswith("/api/") or request.path == "/api/health":
            return response
        started = getattr(g, "request_started_at", None)
        rule = request.url_rule.rule if request.url_rule is not None else None
        entry = {
            "ts": datetime.utcnow().isoformat(),
            "request_id": rid,
            "method": request.method,
            "route": rule or request.path,
            "status": int(response.status_code),
            "latency_ms": round((time.perf_counter() - started) * 1000.0, 2) if started is not None else None,
            "user_id": getattr(g, "auth_user_id", None),
            "role": getattr(g, "auth_role", None),
            "idempotent": bool(request.headers.get("Idempotency-Key") or request.headers.get("X-Idempotency-Key")),
            "ip_hash": _hash_ip(request.remote_addr or "", app.config.get("SECRET_KEY", SERVICE_NAME)),
        }
        access_logger.info(json.dumps(entry))
        return response
