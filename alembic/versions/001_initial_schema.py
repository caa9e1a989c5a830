"""Initial schema for Deploybot.

Creates the repositories and deployments tables together with the provider
and deployment status enums.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    git_provider = sa.Enum("GITHUB", "GITLAB", name="gitprovider")
    git_provider.create(op.get_bind(), checkfirst=True)

    deployment_status = sa.Enum(
        "PENDING", "BUILDING", "DEPLOYING", "SUCCESS", "FAILED",
        name="deploymentstatus",
    )
    deployment_status.create(op.get_bind(), checkfirst=True)

    # Repositories table
    op.create_table(
        "repositories",
        sa.Column("id", sa.Uuid(), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("git_url", sa.Text(), nullable=False),
        sa.Column(
            "provider",
            sa.Enum("GITHUB", "GITLAB", name="gitprovider", create_type=False),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("webhook_secret", sa.Text(), nullable=True),
        sa.Column("branches", JSONB(), server_default=sa.text("'[]'::jsonb"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    # Names only need to be unique among active repositories
    op.create_index(
        "uq_repositories_active_name",
        "repositories",
        ["name"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )

    # Deployments table
    op.create_table(
        "deployments",
        sa.Column("id", sa.Uuid(), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column(
            "repository_id",
            sa.Uuid(),
            sa.ForeignKey("repositories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("branch", sa.Text(), nullable=False),
        sa.Column("commit_sha", sa.Text(), nullable=False),
        sa.Column("commit_message", sa.Text(), server_default="", nullable=False),
        sa.Column("author", sa.Text(), server_default="", nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "PENDING", "BUILDING", "DEPLOYING", "SUCCESS", "FAILED",
                name="deploymentstatus",
                create_type=False,
            ),
            server_default="PENDING",
            nullable=False,
        ),
        sa.Column("build_log", sa.Text(), nullable=True),
        sa.Column("deploy_log", sa.Text(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_deployments_repository_id", "deployments", ["repository_id"])
    op.create_index(
        "ix_deployments_repository_branch_created",
        "deployments",
        ["repository_id", "branch", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_deployments_repository_branch_created", table_name="deployments")
    op.drop_index("ix_deployments_repository_id", table_name="deployments")
    op.drop_table("deployments")
    op.drop_index("uq_repositories_active_name", table_name="repositories")
    op.drop_table("repositories")

    sa.Enum(name="deploymentstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="gitprovider").drop(op.get_bind(), checkfirst=True)
