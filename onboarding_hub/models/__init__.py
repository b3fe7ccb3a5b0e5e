"""
Partner Onboarding Hub
Database models and domain records.

All SQLAlchemy models share the single ``db`` instance created here.
Domain records (partners, templates, submissions) are plain dataclasses in
``records``; they are persisted as JSON blobs through ``StoredBlob``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
