"""create users, upload_sessions and xenbox_files tables

Revision ID: 20261019120000
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261019120000'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("space_allowed", sa.BigInteger(), server_default="0", nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "upload_sessions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("upload_id", sa.String(64), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("mime_type", sa.String(255), nullable=False),
        sa.Column("declared_file_size", sa.BigInteger(), nullable=False),
        sa.Column("chunk_size", sa.Integer(), nullable=False),
        sa.Column("total_chunks", sa.Integer(), nullable=False),
        sa.Column("received_chunk_indices", sa.JSON(), nullable=False),
        # Stored as plain strings (native_enum=False) so new states need no type migration
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("file_id", sa.String(20), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_upload_sessions_upload_id", "upload_sessions", ["upload_id"], unique=True)
    op.create_index("idx_upload_sessions_owner_status", "upload_sessions", ["owner_id", "status"])
    op.create_index("idx_upload_sessions_status_activity", "upload_sessions", ["status", "last_activity_at"])

    op.create_table(
        "xenbox_files",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("file_id", sa.String(20), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("mime_type", sa.String(255), nullable=False),
        sa.Column("size", sa.BigInteger(), nullable=False),
        sa.Column("share_token", sa.String(64), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("expiry", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_xenbox_files_file_id", "xenbox_files", ["file_id"], unique=True)
    op.create_index("ix_xenbox_files_owner_id", "xenbox_files", ["owner_id"])
    op.create_index("ix_xenbox_files_share_token", "xenbox_files", ["share_token"], unique=True)
    op.create_index("idx_xenbox_files_owner_created", "xenbox_files", ["owner_id", "created_at"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("idx_xenbox_files_owner_created", table_name="xenbox_files")
    op.drop_index("ix_xenbox_files_share_token", table_name="xenbox_files")
    op.drop_index("ix_xenbox_files_owner_id", table_name="xenbox_files")
    op.drop_index("ix_xenbox_files_file_id", table_name="xenbox_files")
    op.drop_table("xenbox_files")

    op.drop_index("idx_upload_sessions_status_activity", table_name="upload_sessions")
    op.drop_index("idx_upload_sessions_owner_status", table_name="upload_sessions")
    op.drop_index("ix_upload_sessions_upload_id", table_name="upload_sessions")
    op.drop_table("upload_sessions")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
