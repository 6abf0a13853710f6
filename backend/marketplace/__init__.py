import os
from pathlib import Path

import click
from flask import Flask, g, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from marketplace.errors import MarketplaceError, RateLimited
from marketplace.extensions import cors, db, migrate
from marketplace.integrations.payments.factory import payment_health
from marketplace.models import Profile
from marketplace.segments.segment_admin_actions import admin_actions_bp
from marketplace.segments.segment_checkout import checkout_bp
from marketplace.segments.segment_connect import connect_bp
from marketplace.segments.segment_listings import listings_bp
from marketplace.segments.segment_payment_webhooks import webhooks_bp
from marketplace.utils.jwt_utils import decode_token, get_bearer_token
from marketplace.utils.observability import (
    SERVICE_NAME,
    annotate,
    init_otel,
    init_sentry,
    install_request_observers,
)
from marketplace.utils.rate_limit import build_rate_limit_subject, check_limit, limiter_stats, rate_limit_enabled
from marketplace.utils.settings import SETTINGS_KEY, env_bool, env_int, load_settings

MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "migrations"
INSTANCE_DIR = Path(__file__).resolve().parents[1] / "instance"

CORS_ALLOW_HEADERS = [
    "Authorization",
    "Content-Type",
    "Idempotency-Key",
    "X-Idempotency-Key",
    "X-Request-Id",
    "Stripe-Signature",
]

# Paths the global limiter never counts; the platform retries webhooks itself.
RATE_LIMIT_EXEMPT_PREFIXES = ("/api/webhooks/", "/api/health", "/api/version")

BLUEPRINTS = (checkout_bp, connect_bp, webhooks_bp, admin_actions_bp, listings_bp)


def _database_url(production: bool) -> str:
    url = (os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL") or "").strip()
    if not url:
        if production:
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")
        INSTANCE_DIR.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{(INSTANCE_DIR / 'marketplace.db').as_posix()}"
    # Hosted Postgres providers still hand out the legacy scheme.
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url


def _engine_options(url: str) -> dict:
    options = {
        "pool_pre_ping": True,
        "pool_reset_on_return": "rollback",
        "pool_recycle": env_int("DB_POOL_RECYCLE_SECONDS", 1800, minimum=60, maximum=86400),
    }
    if url.startswith("sqlite://"):
        return options
    options.update(
        pool_size=env_int("DB_POOL_SIZE", 10, minimum=1, maximum=200),
        max_overflow=env_int("DB_MAX_OVERFLOW", 20, minimum=0, maximum=500),
        pool_timeout=env_int("DB_POOL_TIMEOUT_SECONDS", 30, minimum=1, maximum=300),
    )
    return options


def _cors_origins(production: bool) -> list:
    origins = [o.strip() for o in (os.getenv("CORS_ORIGINS") or "").split(",") if o.strip()]
    if origins or production:
        return origins
    return ["*"]


def _alembic_head() -> str:
    try:
        from alembic.config import Config
        from alembic.script import ScriptDirectory

        cfg = Config(str(MIGRATIONS_DIR / "alembic.ini"))
        cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
        return ScriptDirectory.from_config(cfg).get_current_head() or "unknown"
    except Exception:
        return "unknown"


def _git_sha() -> str:
    return (os.getenv("GIT_SHA") or os.getenv("SOURCE_VERSION") or "unknown").strip()


def _error_response(payload: dict, status: int, headers: dict | None = None):
    rid = (getattr(g, "request_id", "") or "").strip()
    if rid:
        payload["trace_id"] = rid
    return jsonify(payload), status, headers or {}


def _register_error_handlers(app) -> None:
    @app.errorhandler(MarketplaceError)
    def _marketplace_error(error: MarketplaceError):
        if error.status_code >= 500:
            app.logger.error("request_failed path=%s error=%s message=%s", request.path, error.code, error.message)
        return _error_response(error.to_dict(), error.status_code, error.headers())

    @app.errorhandler(HTTPException)
    def _http_error(error: HTTPException):
        if not request.path.startswith("/api/"):
            return error
        status = int(error.code or 500)
        payload = {"ok": False, "error": error.name, "message": error.description or error.name, "status": status}
        return _error_response(payload, status)

    @app.errorhandler(Exception)
    def _unhandled_error(error: Exception):
        app.logger.exception("unhandled_exception path=%s", request.path)
        db.session.rollback()
        payload = {"ok": False, "error": "INTERNAL_ERROR", "message": "Internal server error", "status": 500}
        return _error_response(payload, 500)


def _register_status_routes(app, env: str) -> None:
    @app.get("/api/health")
    def health():
        payload = {
            "ok": True,
            "service": SERVICE_NAME,
            "env": env,
            "db": "ok",
            "payments": payment_health(app.config[SETTINGS_KEY]),
            "rate_limit": limiter_stats(),
            "git_sha": _git_sha(),
            "alembic_head": _alembic_head(),
        }
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            # Driver errors can carry the DSN; keep them in the log only.
            app.logger.exception("health_db_check_failed")
            payload["db"] = "fail"
        return jsonify(payload)

    @app.get("/")
    def root():
        return jsonify({"ok": True, "service": SERVICE_NAME, "env": env})

    @app.get("/api/version")
    def version():
        return jsonify({"ok": True, "alembic_head": _alembic_head(), "git_sha": _git_sha()})


def _register_request_hooks(app) -> None:
    @app.before_request
    def _reset_db_session():
        db.session.rollback()

    @app.before_request
    def _capture_auth_context():
        # Attribution only (access log, Sentry, per-user limits). Services
        # authenticate on their own through resolve_identity.
        g.auth_user_id = None
        g.auth_role = None
        token = get_bearer_token(request.headers.get("Authorization"))
        if not token:
            return
        sub = str((decode_token(token) or {}).get("sub") or "").strip()
        if not sub:
            return
        g.auth_user_id = sub
        try:
            profile = db.session.get(Profile, sub)
        except SQLAlchemyError:
            db.session.rollback()
            return
        if profile is not None:
            g.auth_role = profile.role
            annotate(user_id=sub, auth_role=profile.role)

    @app.before_request
    def _global_rate_limit_guard():
        if app.config.get("TESTING") and not env_bool("RATE_LIMIT_IN_TESTS", False):
            return
        if not rate_limit_enabled(True) or request.method == "OPTIONS":
            return
        path = request.path or ""
        if not path.startswith("/api/") or path.startswith(RATE_LIMIT_EXEMPT_PREFIXES):
            return
        user_id = getattr(g, "auth_user_id", None)
        subject = build_rate_limit_subject(scope="user" if user_id else "ip", user_id=user_id)
        if request.method in ("GET", "HEAD"):
            tier, limit = "read", env_int("RATE_LIMIT_READ_PER_MINUTE", 120, minimum=1, maximum=100000)
        else:
            tier, limit = "write", env_int("RATE_LIMIT_WRITE_PER_MINUTE", 60, minimum=1, maximum=100000)
        ok, retry_after = check_limit(f"app:{tier}:{path}:{subject}", limit=limit, window_seconds=60)
        if not ok:
            raise RateLimited(retry_after)

    @app.teardown_request
    def _cleanup_db_session(exc):
        if exc is not None:
            db.session.rollback()
        db.session.remove()


def _register_cli(app) -> None:
    @app.cli.command("sync-connect-account")
    @click.option("--user-id", "user_id", required=True, help="Seller profile id")
    def sync_connect_account(user_id: str):
        """Re-read a seller's payout account from the payment platform."""
        from marketplace.services.payout_account_service import sync_account

        try:
            status = sync_account(user_id.strip())
        except MarketplaceError as e:
            raise click.ClickException(f"{e.code}: {e.message}")
        click.echo(
            f"connect_account_synced user_id={user_id} account_id={status.account_id} "
            f"charges_enabled={str(status.charges_enabled).lower()} account_status={status.account_status}"
        )


def create_app():
    app = Flask(__name__)
    init_sentry(app)

    # Raises on invalid fee percentage, short bootstrap secret, missing prod keys.
    settings = load_settings()
    production = settings.is_production
    secret_key = (os.getenv("SECRET_KEY") or "").strip()
    if production and len(secret_key) < 16:
        raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")

    database_url = _database_url(production)
    app.config.update(
        {
            SETTINGS_KEY: settings,
            "SECRET_KEY": secret_key or "dev-secret",
            "SQLALCHEMY_DATABASE_URI": database_url,
            "SQLALCHEMY_ENGINE_OPTIONS": _engine_options(database_url),
            "SQLALCHEMY_TRACK_MODIFICATIONS": False,
        }
    )
    if not database_url.startswith("sqlite://"):
        options = app.config["SQLALCHEMY_ENGINE_OPTIONS"]
        app.logger.info(
            "db_pooling_enabled pool_size=%s max_overflow=%s pool_timeout=%s pool_recycle=%s",
            options["pool_size"],
            options["max_overflow"],
            options["pool_timeout"],
            options["pool_recycle"],
        )

    cors.init_app(
        app,
        resources={r"/api/*": {"origins": _cors_origins(production)}},
        allow_headers=CORS_ALLOW_HEADERS,
        expose_headers=["X-Request-Id", "Retry-After"],
    )
    db.init_app(app)
    migrate.init_app(app, db, directory=str(MIGRATIONS_DIR))
    install_request_observers(app)
    init_otel(app, enabled=env_bool("OTEL_ENABLED", False))

    _register_error_handlers(app)
    for blueprint in BLUEPRINTS:
        app.register_blueprint(blueprint)
    _register_status_routes(app, settings.env)
    _register_request_hooks(app)
    _register_cli(app)
    return app
