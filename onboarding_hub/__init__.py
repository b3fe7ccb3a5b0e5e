"""
Partner Onboarding Hub
Flask Application Factory.

Usage:
    from onboarding_hub import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from werkzeug.exceptions import HTTPException

from onboarding_hub.auth import clear_session_cookie, init_auth
from onboarding_hub.config import config
from onboarding_hub.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    MalformedCriteriaError,
    NotFoundError,
    SessionIntegrityError,
    StorageError,
    ValidationError,
)
from onboarding_hub.middleware.logging_config import configure_logging
from onboarding_hub.middleware.rate_limiter import init_rate_limits
from onboarding_hub.middleware.security_headers import init_security_headers
from onboarding_hub.middleware.timing import init_request_timing
from onboarding_hub.models import db
from onboarding_hub.utils.errors import E, api_error

logger = logging.getLogger(__name__)

migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit, applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)

GENERIC_RETRY_MESSAGE = "Something went wrong while saving your data. Please try again."


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # Instantiated so ProductionConfig can refuse to start without its env vars
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()], supports_credentials=True)
    else:
        CORS(app)

    # ── Request timing (before auth so rejected requests are timed too) ──
    init_request_timing(app)

    # ── Session authentication & route access ────────────────────────────
    init_auth(app)

    # ── Security headers (CSP, HSTS, X-Frame-Options, etc.) ─────────────
    init_security_headers(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    # ── Tables (blob store is a single table) ────────────────────────────
    from onboarding_hub.models import blob as _blob_models  # noqa: F401
    if app.config.get("SQLALCHEMY_DATABASE_URI", "").startswith("sqlite:///") and not app.testing:
        os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from onboarding_hub.blueprints.auth_bp import auth_bp
    from onboarding_hub.blueprints.health_bp import health_bp
    from onboarding_hub.blueprints.partner_bp import partner_bp
    from onboarding_hub.blueprints.submission_bp import submission_bp
    from onboarding_hub.blueprints.template_bp import template_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(partner_bp)
    app.register_blueprint(submission_bp)
    app.register_blueprint(template_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-templates")
    def seed_templates_cmd():
        """Create version 1 of every missing default questionnaire template."""
        from onboarding_hub.services.template_seed import seed_default_templates
        count = seed_default_templates()
        logger.info("Seeded %s new questionnaire templates.", count)

    _register_error_handlers(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app


def _register_error_handlers(app):
    """One JSON handler per exception type, shared by every blueprint."""

    @app.errorhandler(ValidationError)
    def _validation(e):
        return api_error(E.VALIDATION, str(e), details=e.details)

    @app.errorhandler(SessionIntegrityError)
    def _session_integrity(e):
        code = E.SESSION_EXPIRED if e.reason == SessionIntegrityError.EXPIRED else E.SESSION_CORRUPTED
        logger.info("Session rejected (%s) for %s", e.reason, request.path)
        response, status = api_error(code, str(e), extra={"reauthenticate": True})
        return clear_session_cookie(response), status

    @app.errorhandler(AuthenticationError)
    def _unauthenticated(e):
        return api_error(E.UNAUTHORIZED, str(e))

    @app.errorhandler(AuthorizationError)
    def _forbidden(e):
        return api_error(E.FORBIDDEN, str(e))

    @app.errorhandler(NotFoundError)
    def _not_found(e):
        return api_error(E.NOT_FOUND, str(e))

    @app.errorhandler(ConflictError)
    def _conflict(e):
        details = {"currentVersion": e.current_version} if e.current_version is not None else None
        return api_error(E.CONFLICT, str(e), details=details, extra={"retryable": True})

    @app.errorhandler(StorageError)
    def _storage(e):
        logger.error("Storage failure: %s", e, extra={"event_type": "storage_error"})
        return api_error(E.STORAGE, GENERIC_RETRY_MESSAGE)

    @app.errorhandler(MalformedCriteriaError)
    def _malformed_criteria(e):
        logger.error("Malformed pass/fail criteria: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    @app.errorhandler(404)
    def _route_not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return api_error(E.VALIDATION, "Method not allowed", status=405)

    @app.errorhandler(429)
    def _rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests", extra={"retry_after": e.description})

    @app.errorhandler(Exception)
    def _unexpected(e):
        if isinstance(e, HTTPException):
            return api_error(E.VALIDATION if e.code < 500 else E.INTERNAL, e.description or e.name,
                             status=e.code)
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return api_error(E.INTERNAL, "Internal server error")
