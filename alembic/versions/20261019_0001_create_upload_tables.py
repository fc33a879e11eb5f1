"""Create files, file_viewers and fileables tables."""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

from alembic import op  # type: ignore[attr-defined]
from upload_service.common.config import get_settings

# revision identifiers, used by Alembic.
revision = "202610190001"
down_revision = None
branch_labels = None
depends_on = None

PREFIX = get_settings().UPLOAD_TABLES_PREFIX
FILES = f"{PREFIX}files"
FILE_VIEWERS = f"{PREFIX}file_viewers"
FILEABLES = f"{PREFIX}fileables"


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        FILES,
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("name", sa.String(length=1024), nullable=False),
        sa.Column("original_name", sa.Text(), nullable=False),
        sa.Column("path", sa.String(length=1024), nullable=False),
        sa.Column("disk", sa.String(length=32), nullable=False, server_default="s3"),
        sa.Column("mime_type", sa.String(length=255), nullable=True),
        sa.Column("size", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column(
            "visibility", sa.String(length=16), nullable=False, server_default="private"
        ),
        sa.Column(
            "status", sa.String(length=16), nullable=False, server_default="initiated"
        ),
        sa.Column("upload_id", sa.String(length=1024), nullable=True),
        sa.Column(
            "metadata",
            sa.JSON().with_variant(JSONB(), "postgresql"),
            nullable=False,
            server_default=sa.text("'{}'"),
        ),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(f"ix_{FILES}_path", FILES, ["path"])
    op.create_index(f"ix_{FILES}_status", FILES, ["status"])
    op.create_index(f"ix_{FILES}_user_id", FILES, ["user_id"])
    op.create_index(
        f"uq_{FILES}_path_active",
        FILES,
        ["path"],
        unique=True,
        postgresql_where=sa.text("deleted_at IS NULL"),
        sqlite_where=sa.text("deleted_at IS NULL"),
    )

    op.create_table(
        FILE_VIEWERS,
        sa.Column("file_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("file_id", "user_id", name=f"pk_{FILE_VIEWERS}"),
        sa.ForeignKeyConstraint(
            ["file_id"],
            [f"{FILES}.id"],
            name=f"fk_{FILE_VIEWERS}_file_id",
            ondelete="CASCADE",
        ),
    )
    op.create_index(f"ix_{FILE_VIEWERS}_user_id", FILE_VIEWERS, ["user_id"])

    op.create_table(
        FILEABLES,
        sa.Column("file_id", sa.String(length=36), nullable=False),
        sa.Column("fileable_type", sa.String(length=255), nullable=False),
        sa.Column("fileable_id", sa.String(length=255), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint(
            "file_id", "fileable_type", "fileable_id", name=f"pk_{FILEABLES}"
        ),
        sa.ForeignKeyConstraint(
            ["file_id"],
            [f"{FILES}.id"],
            name=f"fk_{FILEABLES}_file_id",
            ondelete="CASCADE",
        ),
    )
    op.create_index(
        f"ix_{FILEABLES}_fileable", FILEABLES, ["fileable_type", "fileable_id"]
    )


def downgrade() -> None:
    op.drop_index(f"ix_{FILEABLES}_fileable", table_name=FILEABLES)
    op.drop_table(FILEABLES)
    op.drop_index(f"ix_{FILE_VIEWERS}_user_id", table_name=FILE_VIEWERS)
    op.drop_table(FILE_VIEWERS)
    op.drop_index(f"uq_{FILES}_path_active", table_name=FILES)
    op.drop_index(f"ix_{FILES}_user_id", table_name=FILES)
    op.drop_index(f"ix_{FILES}_status", table_name=FILES)
    op.drop_index(f"ix_{FILES}_path", table_name=FILES)
    op.drop_table(FILES)
