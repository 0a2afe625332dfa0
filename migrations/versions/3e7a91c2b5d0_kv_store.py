"""Key-value store for the plan snapshot and custom events.

Revision ID: 3e7a91c2b5d0
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


def _table_exists(conn, name: str) -> bool:
    inspector = sa.inspect(conn)
    return name in inspector.get_table_names()


# revision identifiers, used by Alembic.
revision = "3e7a91c2b5d0"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    conn = op.get_bind()
    if not _table_exists(conn, "kv_store"):
        op.create_table(
            "kv_store",
            sa.Column("key", sa.Text(), primary_key=True),
            sa.Column("value", sa.LargeBinary(), nullable=False),
            sa.Column("updated_at", sa.Text(), nullable=False),
        )


def downgrade():
    conn = op.get_bind()
    if _table_exists(conn, "kv_store"):
        op.drop_table("kv_store")
