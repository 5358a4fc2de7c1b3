"""Create generation history tables.

Revision ID: 001_history_tables
Revises:
Create Date: 2026-10-17

- digital_trailmaps: report Doc and Slides workbook links per report job
- meeting_action_items: action-items Doc link and rendered HTML per job

Rows are keyed by the job id that produced them.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "001_history_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── digital_trailmaps table ──────────────────────────────────────────

    op.create_table(
        "digital_trailmaps",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("meeting_name", sa.String(500), nullable=False),
        sa.Column("meeting_link", sa.String(1000), nullable=True),
        sa.Column("trailmap_link", sa.String(1000), nullable=True),
        sa.Column("report_link", sa.String(1000), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "idx_digital_trailmaps_created_at",
        "digital_trailmaps",
        ["created_at"],
    )

    # ── meeting_action_items table ───────────────────────────────────────

    op.create_table(
        "meeting_action_items",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("meeting_name", sa.String(500), nullable=False),
        sa.Column("meetgeek_url", sa.String(1000), nullable=True),
        sa.Column("google_drive_link", sa.String(1000), nullable=True),
        sa.Column("html_content", sa.Text(), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "idx_meeting_action_items_created_at",
        "meeting_action_items",
        ["created_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_meeting_action_items_created_at", table_name="meeting_action_items")
    op.drop_table("meeting_action_items")
    op.drop_index("idx_digital_trailmaps_created_at", table_name="digital_trailmaps")
    op.drop_table("digital_trailmaps")
