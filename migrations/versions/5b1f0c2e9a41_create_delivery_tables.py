"""create delivery tables

Revision ID: 5b1f0c2e9a41
Revises:
Create Date: 2026-10-19 09:12:40.511203

"""
from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5b1f0c2e9a41"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create nonce, access log and document tables."""
    op.create_table(
        "nonces",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("doc_id", sa.Text(), nullable=False),
        sa.Column("nonce", sa.CHAR(length=48), nullable=False),
        sa.Column("session_id", sa.Text(), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("nonce"),
    )
    op.create_index("idx_nonces_doc_id", "nonces", ["doc_id"])
    op.create_index("idx_nonces_session_id", "nonces", ["session_id"])
    op.create_index("idx_nonces_created_at", "nonces", ["created_at"])

    op.create_table(
        "access_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("doc_id", sa.Text(), nullable=False),
        sa.Column("session_id", sa.Text(), nullable=True),
        sa.Column("ip", sa.Text(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_access_logs_doc_id", "access_logs", ["doc_id"])
    op.create_index("idx_access_logs_action_created", "access_logs", ["action", "created_at"])

    op.create_table(
        "documents",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("doc_id", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("encrypted_path", sa.Text(), nullable=False),
        sa.Column("content_type", sa.Text(), nullable=False),
        sa.Column("page_count", sa.Integer(), nullable=True),
        sa.Column("is_encrypted", sa.Boolean(), nullable=False),
        sa.Column("watermark_policy", sa.JSON(), nullable=True),
        sa.Column("status", sa.VARCHAR(length=16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("doc_id"),
    )


def downgrade() -> None:
    """Drop delivery tables."""
    op.drop_table("documents")
    op.drop_index("idx_access_logs_action_created", table_name="access_logs")
    op.drop_index("idx_access_logs_doc_id", table_name="access_logs")
    op.drop_table("access_logs")
    op.drop_index("idx_nonces_created_at", table_name="nonces")
    op.drop_index("idx_nonces_session_id", table_name="nonces")
    op.drop_index("idx_nonces_doc_id", table_name="nonces")
    op.drop_table("nonces")
