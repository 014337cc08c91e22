"""Add build label and the cached seven-day window.

Revision ID: 0002_add_build_label_and_cached_window
Revises: 0001_initial
Create Date: 2026-09-21 16:05:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0002_add_build_label_and_cached_window"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("builds") as batch_op:
        batch_op.add_column(sa.Column("label", sa.String(), nullable=True))
        batch_op.add_column(
            sa.Column("cached_window_json", sa.String(), nullable=True)
        )


def downgrade() -> None:
    with op.batch_alter_table("builds") as batch_op:
        batch_op.drop_column("cached_window_json")
        batch_op.drop_column("label")
