"""Initial build statistics schema.

Revision ID: 0001_initial
Revises:
Create Date: 2026-09-02 10:40:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "builds",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("organization", sa.String(), nullable=False),
        sa.Column("repository", sa.String(), nullable=False),
        sa.Column("selectors_json", sa.String(), nullable=False),
        sa.Column("access_token_id", sa.String(), nullable=True),
        sa.Column("personal_access_token", sa.String(), nullable=True),
        sa.Column(
            "cache_expiration_minutes",
            sa.Integer(),
            nullable=False,
            server_default="60",
        ),
        sa.Column("last_analyzed_commit_sha", sa.String(), nullable=True),
        sa.Column("cached_metadata_json", sa.String(), nullable=True),
        sa.Column("created_at", sa.String(), nullable=False),
        sa.Column("updated_at", sa.String(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_builds_tenant", "builds", ["tenant_id"])

    op.create_table(
        "workflow_runs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("run_id", sa.Integer(), nullable=False),
        sa.Column("build_id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("conclusion", sa.String(), nullable=True),
        sa.Column("html_url", sa.String(), nullable=True),
        sa.Column("head_branch", sa.String(), nullable=True),
        sa.Column("event", sa.String(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("commit_sha", sa.String(), nullable=True),
        sa.Column("commit_author", sa.String(), nullable=True),
        sa.Column("commit_message", sa.String(), nullable=True),
        sa.Column("commit_date", sa.String(), nullable=True),
        sa.Column("workflow_created_at", sa.String(), nullable=False),
        sa.Column("workflow_updated_at", sa.String(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("build_id", "run_id"),
    )
    op.create_index(
        "idx_workflow_runs_build_created",
        "workflow_runs",
        ["build_id", "tenant_id", "workflow_created_at"],
    )

    op.create_table(
        "test_results",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("workflow_run_id", sa.String(), nullable=False),
        sa.Column("build_id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("total_tests", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("passed_tests", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_tests", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped_tests", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("parsed_at", sa.String(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workflow_run_id"),
    )
    op.create_index(
        "idx_test_results_build_parsed",
        "test_results",
        ["build_id", "tenant_id", "parsed_at"],
    )

    op.create_table(
        "access_tokens",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("encrypted_token", sa.String(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.String(), nullable=False),
        sa.Column("last_used", sa.String(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_access_tokens_tenant", "access_tokens", ["tenant_id"])


def downgrade() -> None:
    op.drop_index("idx_access_tokens_tenant", table_name="access_tokens")
    op.drop_table("access_tokens")
    op.drop_index("idx_test_results_build_parsed", table_name="test_results")
    op.drop_table("test_results")
    op.drop_index("idx_workflow_runs_build_created", table_name="workflow_runs")
    op.drop_table("workflow_runs")
    op.drop_index("idx_builds_tenant", table_name="builds")
    op.drop_table("builds")
