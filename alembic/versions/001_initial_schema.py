"""Initial crawl schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(JSONB(), "postgresql")


def upgrade() -> None:
    # Check if tables already exist and skip if so
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()

    if "tasks" in existing_tables:
        # Tables already exist, skip migration
        return

    # Create tasks table
    op.create_table(
        "tasks",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("type", sa.String(64), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="todo"),
        sa.Column("details", JSONType, nullable=False),
        sa.Column("error", sa.Text),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_tasks_type", "tasks", ["type"])
    op.create_index("idx_tasks_status", "tasks", ["status"])

    # Create urls table
    op.create_table(
        "urls",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("url", sa.Text, nullable=False, unique=True),
        sa.Column("domain", sa.String(255), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="new"),
        sa.Column("priority", sa.Float, nullable=False, server_default="0"),
        sa.Column("retries", sa.Integer, nullable=False, server_default="0"),
        sa.Column("worker_id", sa.Uuid),
        sa.Column("batch_id", sa.String(64)),
        sa.Column("worker_type", sa.String(64)),
        sa.Column("classification", sa.String(64), nullable=False, server_default="page"),
        sa.Column("lastmod", sa.String(64)),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_urls_status", "urls", ["status"])
    op.create_index("idx_urls_domain", "urls", ["domain"])
    op.create_index("idx_urls_batch_id", "urls", ["batch_id"])
    op.create_index("idx_urls_worker_id", "urls", ["worker_id"])
    op.create_index("idx_urls_worker_type", "urls", ["worker_type"])

    # Create metadata table
    op.create_table(
        "metadata",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("url_id", sa.Uuid, sa.ForeignKey("urls.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("title", sa.Text),
        sa.Column("description", sa.Text),
        sa.Column("author", sa.String(255)),
        sa.Column("date", sa.String(64)),
        sa.Column("additional_data", JSONType),
        sa.Column("parsed_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    # Create workers table
    op.create_table(
        "workers",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("type", sa.String(64), nullable=False),
        sa.Column("instance_number", sa.Integer, nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="idle"),
        sa.Column("current_batch_id", sa.String(64)),
        sa.Column("urls_processed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_heartbeat", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint("type", "instance_number", name="uq_workers_type_instance"),
    )
    op.create_index("idx_workers_status", "workers", ["status"])
    op.create_index("idx_workers_last_heartbeat", "workers", ["last_heartbeat"])


def downgrade() -> None:
    op.drop_table("workers")
    op.drop_table("metadata")
    op.drop_table("urls")
    op.drop_table("tasks")
