"""initial projects, runs and tickets

Revision ID: 3f2a9c41b7d0
Revises:
Create Date: 2026-10-19 09:12:44.208113

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "3f2a9c41b7d0"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamp(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    op.create_table(
        "projects",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("problem", sa.Text, nullable=False),
        sa.Column("constraints", sa.Text, nullable=True),
        sa.Column("repo_url", sa.String(512), nullable=True),
        _timestamp("created_at"),
    )

    op.create_table(
        "runs",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "project_id", sa.String(64),
            sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
        ),
        sa.Column("status", sa.String(32), nullable=False, server_default="PENDING", index=True),
        sa.Column("clarifications", sa.JSON, nullable=True),
        sa.Column("repo_analysis", sa.JSON, nullable=True),
        sa.Column("hld", sa.JSON, nullable=True),
        sa.Column("tokens_used", sa.Integer, nullable=False, server_default="0"),
        sa.Column("duration_ms", sa.Integer, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "tickets",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "run_id", sa.String(64),
            sa.ForeignKey("runs.id", ondelete="CASCADE"), nullable=False, index=True,
        ),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("description", sa.Text, nullable=False, server_default=""),
        sa.Column("acceptance_criteria", sa.Text, nullable=False, server_default=""),
        sa.Column("estimate_hours", sa.Float, nullable=False, server_default="8.0"),
        sa.Column("tshirt_size", sa.String(4), nullable=False, server_default="M"),
        sa.Column("priority", sa.Integer, nullable=False, server_default="5"),
        sa.Column("sprint", sa.Integer, nullable=False, server_default="1"),
        sa.Column("dependencies", sa.JSON, nullable=True),
        sa.Column("tags", sa.JSON, nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="TODO"),
        _timestamp("created_at"),
    )


def downgrade() -> None:
    op.drop_table("tickets")
    op.drop_table("runs")
    op.drop_table("projects")
