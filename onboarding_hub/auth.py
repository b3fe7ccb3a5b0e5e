"""
Partner Onboarding Hub
Authentication & route authorization middleware.

Provides:
    - Session resolution from ``Authorization: Bearer <token>`` or the
      session cookie, exposed as ``g.session`` / ``g.current_user``
    - Table-driven route access via rbac.can_access_route
    - Role decorator for admin-only endpoints
    - Content-Type enforcement on state-changing requests (CSRF mitigation)

Security model:
    - All /api/v1/* endpoints require a session (except /api/v1/health*)
    - Expired or tampered tokens raise SessionIntegrityError; the error
      handler clears the cookie and asks the client to log in again
    - Template writes, partner deletion and gate overrides require PDM

Configuration:
    SESSION_AUTH_ENABLED  "false" makes every request act as a PDM dev user
                          (development only)
"""

import functools
import logging
import os

from flask import current_app, g, request

from onboarding_hub.core.exceptions import AuthenticationError, AuthorizationError
from onboarding_hub.models.records import AuthUser, Role, Session
from onboarding_hub.services import rbac
from onboarding_hub.services.session_service import resolve_session, token_from_request
from onboarding_hub.utils.errors import E, api_error

logger = logging.getLogger(__name__)

_FALSY = ("false", "0", "no", "off")

# Paths under /api/v1 that never need a session
AUTH_SKIP_PREFIXES = (
    "/api/v1/health",
)


def _is_auth_enabled() -> bool:
    """Check whether session auth is enabled (env var or app config)."""
    env_val = os.getenv("SESSION_AUTH_ENABLED", "")
    if env_val and not current_app.testing:
        return env_val.lower() not in _FALSY
    return str(current_app.config.get("SESSION_AUTH_ENABLED", "true")).lower() not in _FALSY


def _dev_user() -> AuthUser:
    return AuthUser(
        id="dev",
        email=current_app.config.get("DEV_USER_EMAIL", "dev-pdm@localhost"),
        role=Role.PDM,
        name="Development PDM",
    )


# ── Request accessors ────────────────────────────────────────────────────────

def current_user() -> AuthUser:
    """Authenticated caller of this request. Raises AuthenticationError."""
    user = getattr(g, "current_user", None)
    if user is None:
        raise AuthenticationError()
    return user


def current_session() -> Session | None:
    return getattr(g, "session", None)


# ── Role decorator ───────────────────────────────────────────────────────────

def require_role(*roles: Role):
    """
    Decorator: require one of *roles*.

    Usage:
        @bp.route("/templates/<template_id>", methods=["PUT"])
        @require_role(Role.PDM)
        def save_template(template_id): ...
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = current_user()
            if user.role not in roles:
                logger.warning(
                    "Access denied: role '%s' tried to access %s (requires %s)",
                    user.role.value, request.path, "/".join(r.value for r in roles),
                    extra={"user_email": user.email},
                )
                raise AuthorizationError("Insufficient permissions")
            return f(*args, **kwargs)
        return decorated
    return decorator


def clear_session_cookie(response):
    response.delete_cookie(current_app.config.get("HUB_SESSION_COOKIE", "hub_session"))
    return response


# ── CSRF protection for API ──────────────────────────────────────────────────

def _check_content_type():
    """
    For state-changing requests with a body, require
    Content-Type: application/json. HTML forms cannot send it.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if "application/json" not in ct and request.content_length and request.content_length > 0:
            return api_error(E.VALIDATION, "Content-Type must be application/json for state-changing requests",
                             status=415)
    return None


# ── before_request hook installer ────────────────────────────────────────────

def init_auth(app):
    """
    Install session authentication on the Flask app.

    - Skips non-API routes, health checks and OPTIONS pre-flight
    - Sets g.session / g.current_user, or raises so the app-level
      error handlers produce the 401 / 403 response
    """
    @app.before_request
    def _before_request_auth():
        g.session = None
        g.current_user = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return None
        if any(path.startswith(prefix) for prefix in AUTH_SKIP_PREFIXES):
            return None
        if request.method == "OPTIONS":
            return None

        csrf_error = _check_content_type()
        if csrf_error:
            return csrf_error

        if not _is_auth_enabled():
            g.current_user = _dev_user()
            return None

        token = token_from_request(request)
        if not token:
            raise AuthenticationError()

        session = resolve_session(token)
        g.session = session
        g.current_user = session.user

        if not rbac.can_access_route(session.user, path):
            logger.warning(
                "Route denied: %s (%s) → %s", session.user.email, session.user.role.value, path,
                extra={"user_email": session.user.email},
            )
            raise AuthorizationError("You do not have access to this page")
        return None

    with app.app_context():
        logger.info("Session auth middleware installed (enabled=%s)", _is_auth_enabled())
