"""create_blobs_table

Create the `blobs` key-value table backing partners, submissions and
questionnaire templates.

Revision ID: 9c1e4a7b2d30
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "9c1e4a7b2d30"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)

    if "blobs" not in set(inspector.get_table_names()):
        op.create_table(
            "blobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("namespace", sa.String(length=50), nullable=False),
            sa.Column("key", sa.String(length=255), nullable=False),
            sa.Column("data", sa.Text(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("namespace", "key", name="uq_blobs_namespace_key"),
        )
        op.create_index("ix_blobs_namespace", "blobs", ["namespace"], unique=False)


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)

    if "blobs" in set(inspector.get_table_names()):
        op.drop_index("ix_blobs_namespace", table_name="blobs")
        op.drop_table("blobs")
