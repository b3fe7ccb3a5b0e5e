"""Key-value blob table backing the partner, submission and template stores.

One row per ``(namespace, key)``; ``data`` holds the record serialised as JSON.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint

from onboarding_hub.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class StoredBlob(db.Model):
    """A single JSON document addressed by namespace + key."""

    __tablename__ = "blobs"
    __table_args__ = (
        UniqueConstraint("namespace", "key", name="uq_blobs_namespace_key"),
    )

    id = Column(Integer, primary_key=True)
    namespace = Column(String(50), nullable=False, index=True)  # partners | submissions | templates
    key = Column(String(255), nullable=False)  # e.g. "current/gate-0", "versions/gate-0/000003"
    data = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<StoredBlob {self.namespace}/{self.key}>"
