"""
Session Service — signed session tokens for PAM / PDM users.

The identity provider in front of the hub hands users a signed token; the
hub only verifies it and rebuilds the caller from its claims.  Nothing is
kept server-side.

Algorithm: HS256 (secret: SESSION_SECRET_KEY, falls back to SECRET_KEY)
Lifetime:  SESSION_TTL_SECONDS (8 hours by default)

Token payload:
{
    "sub": <user_id>,
    "email": "pam@example.com",
    "role": "PAM" | "PDM",
    "name": "Pat Example",
    "type": "session",
    "iat": <issued_at>,
    "exp": <expires_at>,
    "jti": <unique_id>
}

Any token that fails verification is reported as a SessionIntegrityError so
the client is told to log in again instead of being served a broken identity.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone

import jwt
from email_validator import EmailNotValidError, validate_email
from flask import current_app

from onboarding_hub.core.exceptions import SessionIntegrityError, ValidationError
from onboarding_hub.models.records import AuthUser, Role, Session

logger = logging.getLogger(__name__)

# ─── Defaults ────────────────────────────────────────────────
DEFAULT_TTL = 28800   # 8 hours
ALGORITHM = "HS256"
TOKEN_TYPE = "session"


def _get_secret():
    return current_app.config.get("SESSION_SECRET_KEY") or current_app.config["SECRET_KEY"]


def _get_ttl():
    return int(current_app.config.get("SESSION_TTL_SECONDS", DEFAULT_TTL))


# ═══════════════════════════════════════════════════════════════
# Token Generation
# ═══════════════════════════════════════════════════════════════
def issue_session_token(user: AuthUser, ttl: int | None = None, now: datetime | None = None) -> str:
    """Sign a session token for *user*. Used by tests and the dev CLI."""
    now = now or datetime.now(timezone.utc)
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role.value,
        "name": user.name,
        "type": TOKEN_TYPE,
        "iat": now,
        "exp": now + timedelta(seconds=_get_ttl() if ttl is None else ttl),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


# ═══════════════════════════════════════════════════════════════
# Token Verification
# ═══════════════════════════════════════════════════════════════
def resolve_session(token: str) -> Session:
    """Verify *token* and return the Session it carries.

    Raises SessionIntegrityError("expired") for an expired token and
    SessionIntegrityError("corrupted") for anything else that does not verify.
    """
    try:
        payload = jwt.decode(
            token,
            _get_secret(),
            algorithms=[ALGORITHM],
            options={"require": ["sub", "exp", "iat"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise SessionIntegrityError(SessionIntegrityError.EXPIRED) from exc
    except jwt.InvalidTokenError as exc:
        logger.warning("Rejected session token: %s", exc)
        raise SessionIntegrityError(SessionIntegrityError.CORRUPTED) from exc

    if payload.get("type") != TOKEN_TYPE:
        logger.warning("Rejected session token: unexpected type %r", payload.get("type"))
        raise SessionIntegrityError(SessionIntegrityError.CORRUPTED)

    try:
        role = Role.parse(payload.get("role"))
        email = validate_email(str(payload.get("email") or ""), check_deliverability=False).normalized
    except (ValidationError, EmailNotValidError) as exc:
        logger.warning("Rejected session token: bad identity claims (%s)", exc)
        raise SessionIntegrityError(SessionIntegrityError.CORRUPTED) from exc

    user = AuthUser(id=str(payload["sub"]), email=email, role=role, name=payload.get("name"))
    return Session(
        user=user,
        issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )


def token_from_request(request) -> str | None:
    """Bearer token first, then the session cookie."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    cookie = request.cookies.get(current_app.config.get("HUB_SESSION_COOKIE", "hub_session"))
    return cookie or None
