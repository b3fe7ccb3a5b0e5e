"""Shared utility functions.

utcnow / to_iso:              timestamp handling for JSON-serialised records
parse_date_input:             optional calendar dates on partner records
new_record_id:                "<prefix>-<epoch ms>-<random>" identifiers
client_ip:                    caller address behind proxies
"""
import secrets
import time
from datetime import date, datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    """Serialise a datetime as ISO-8601, assuming UTC for naive values."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def parse_date_input(value):
    """Parse a YYYY-MM-DD date (or ISO timestamp), raising ValueError on bad input.

    Empty values return None.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError as exc:
        raise ValueError("Invalid date format. Use YYYY-MM-DD.") from exc


def new_record_id(prefix: str) -> str:
    """Return a sortable, collision-resistant id such as ``partner-1718000000000-3f9a1c2e``."""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def client_ip(request) -> str | None:
    """First hop of X-Forwarded-For, then X-Real-IP, then the socket address."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    real_ip = request.headers.get("X-Real-IP", "").strip()
    if real_ip:
        return real_ip
    return request.remote_addr
