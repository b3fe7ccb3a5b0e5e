"""
Blob Store — JSON documents addressed by (namespace, key) on top of SQLAlchemy.

Every partner, submission and template record lives in the ``blobs`` table.
Each operation is a single row read or write, retried on transient database
errors with exponential backoff before surfacing a StorageError.

    get(namespace, key)            → dict | None
    set(namespace, key, value)     upsert, last writer wins
    create(namespace, key, value)  insert-only, KeyExistsError if taken
    list_keys(namespace, prefix)   keys in ascending order
    list_values(namespace, prefix) values in key order
    delete(namespace, key)         → bool

Retry policy (from app config):
    STORAGE_MAX_ATTEMPTS      attempts per operation (default 3)
    STORAGE_RETRY_BASE_DELAY  sleep base * 2**(attempt-1) between attempts

Usage:
    from onboarding_hub.services.blob_store import BlobStore

    store = BlobStore()
    store.set("partners", "partner-1", {"id": "partner-1"})
"""

import json
import logging
import time

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from onboarding_hub.core.exceptions import KeyExistsError, StorageError
from onboarding_hub.models import db
from onboarding_hub.models.blob import StoredBlob

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_BASE_DELAY = 0.5  # seconds


class BlobStore:
    """Retrying key-value facade over the ``blobs`` table."""

    def __init__(self, max_attempts: int | None = None, base_delay: float | None = None, sleep=time.sleep):
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._sleep = sleep

    # ── Retry policy ─────────────────────────────────────────────────────

    def _attempts(self) -> int:
        if self._max_attempts is not None:
            return max(1, self._max_attempts)
        return max(1, int(current_app.config.get("STORAGE_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)))

    def _delay(self, attempt: int) -> float:
        base = self._base_delay
        if base is None:
            base = float(current_app.config.get("STORAGE_RETRY_BASE_DELAY", DEFAULT_RETRY_BASE_DELAY))
        return base * (2 ** (attempt - 1))

    def _run(self, operation: str, namespace: str, key: str | None, fn, *, insert_only: bool = False):
        """Run *fn* with rollback + backoff between failed attempts.

        Integrity violations on insert-only writes become KeyExistsError and
        are never retried. On upserts they mean a concurrent insert of the
        same key won, so the next attempt updates that row instead.
        """
        max_attempts = self._attempts()
        last_exc = None
        for attempt in range(1, max_attempts + 1):
            try:
                return fn()
            except IntegrityError as exc:
                db.session.rollback()
                if insert_only:
                    raise KeyExistsError(namespace, key) from exc
                last_exc = exc
            except SQLAlchemyError as exc:
                db.session.rollback()
                last_exc = exc

            logger.warning(
                "Storage %s failed for %s/%s attempt=%d/%d: %s",
                operation, namespace, key, attempt, max_attempts, last_exc,
                extra={"event_type": "storage_retry"},
            )
            if attempt < max_attempts:
                delay = self._delay(attempt)
                if delay > 0:
                    self._sleep(delay)

        logger.error(
            "Storage %s gave up for %s/%s after %d attempt(s)",
            operation, namespace, key, max_attempts,
            extra={"event_type": "storage_error"},
        )
        raise StorageError(operation, namespace, key, attempts=max_attempts) from last_exc

    # ── Row helpers ──────────────────────────────────────────────────────

    @staticmethod
    def _row(namespace: str, key: str) -> StoredBlob | None:
        return db.session.execute(
            select(StoredBlob).filter_by(namespace=namespace, key=key)
        ).scalar_one_or_none()

    @staticmethod
    def _prefix_query(namespace: str, prefix: str):
        stmt = select(StoredBlob).where(StoredBlob.namespace == namespace)
        if prefix:
            stmt = stmt.where(StoredBlob.key.startswith(prefix, autoescape=True))
        return stmt.order_by(StoredBlob.key)

    # ── Public API ───────────────────────────────────────────────────────

    def get(self, namespace: str, key: str) -> dict | None:
        def _get():
            row = self._row(namespace, key)
            return json.loads(row.data) if row is not None else None

        return self._run("get", namespace, key, _get)

    def set(self, namespace: str, key: str, value: dict) -> None:
        payload = json.dumps(value, ensure_ascii=False)

        def _set():
            row = self._row(namespace, key)
            if row is None:
                db.session.add(StoredBlob(namespace=namespace, key=key, data=payload))
            else:
                row.data = payload
            db.session.commit()

        self._run("set", namespace, key, _set)

    def create(self, namespace: str, key: str, value: dict) -> None:
        payload = json.dumps(value, ensure_ascii=False)

        def _create():
            if self._row(namespace, key) is not None:
                raise KeyExistsError(namespace, key)
            db.session.add(StoredBlob(namespace=namespace, key=key, data=payload))
            db.session.commit()

        self._run("create", namespace, key, _create, insert_only=True)

    def list_keys(self, namespace: str, prefix: str = "") -> list[str]:
        def _list():
            rows = db.session.execute(self._prefix_query(namespace, prefix)).scalars().all()
            return [r.key for r in rows]

        return self._run("list", namespace, prefix or None, _list)

    def list_values(self, namespace: str, prefix: str = "") -> list[dict]:
        def _list():
            rows = db.session.execute(self._prefix_query(namespace, prefix)).scalars().all()
            return [json.loads(r.data) for r in rows]

        return self._run("list", namespace, prefix or None, _list)

    def delete(self, namespace: str, key: str) -> bool:
        def _delete():
            row = self._row(namespace, key)
            if row is None:
                return False
            db.session.delete(row)
            db.session.commit()
            return True

        return self._run("delete", namespace, key, _delete)
