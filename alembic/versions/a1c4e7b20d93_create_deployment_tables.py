"""create applications, deployments and deployment steps

Revision ID: a1c4e7b20d93
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ENUM, UUID

from alembic import op

revision = "a1c4e7b20d93"
down_revision = None
branch_labels = None
depends_on = None

deployment_status_enum = ENUM(
    "pending",
    "in_progress",
    "succeeded",
    "failed",
    "failed_rolled_back",
    "rolled_back",
    name="deploymentstatus",
    create_type=False,
)
step_status_enum = ENUM(
    "pending",
    "in_progress",
    "succeeded",
    "failed",
    "skipped",
    name="stepstatus",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    if bind.dialect.name == "postgresql":
        bind.execute(
            sa.text(
                "DO $$ BEGIN CREATE TYPE deploymentstatus AS ENUM "
                "('pending','in_progress','succeeded','failed','failed_rolled_back','rolled_back'); "
                "EXCEPTION WHEN duplicate_object THEN NULL; END $$"
            )
        )
        bind.execute(
            sa.text(
                "DO $$ BEGIN CREATE TYPE stepstatus AS ENUM "
                "('pending','in_progress','succeeded','failed','skipped'); "
                "EXCEPTION WHEN duplicate_object THEN NULL; END $$"
            )
        )

    tables = set(inspector.get_table_names())

    if "applications" not in tables:
        op.create_table(
            "applications",
            sa.Column("application_id", UUID(as_uuid=True), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("site_name", sa.String(length=200), nullable=False),
            sa.Column("app_pool_name", sa.String(length=200), nullable=False),
            sa.Column("physical_path", sa.String(length=512), nullable=False, server_default=""),
            sa.Column("application_path", sa.String(length=200), nullable=True, server_default="/"),
            sa.Column("environment", sa.String(length=40), nullable=True),
            sa.Column("health_check_url", sa.String(length=512), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
            sa.Column("stop_site_before_deployment", sa.Boolean(), nullable=False, server_default="false"),
            sa.Column("stop_app_pool_before_deployment", sa.Boolean(), nullable=False, server_default="false"),
            sa.Column("start_app_pool_after_deployment", sa.Boolean(), nullable=False, server_default="false"),
            sa.Column("start_site_after_deployment", sa.Boolean(), nullable=False, server_default="false"),
            sa.Column("create_backup", sa.Boolean(), nullable=False, server_default="true"),
            sa.Column("run_health_check", sa.Boolean(), nullable=False, server_default="false"),
            sa.Column("deployment_delay_seconds", sa.Integer(), nullable=False, server_default="2"),
            sa.Column("excluded_paths", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("application_id"),
            sa.UniqueConstraint("name"),
        )

    if "deployments" not in tables:
        op.create_table(
            "deployments",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("application_id", UUID(as_uuid=True), nullable=False),
            sa.Column("deployed_by", sa.String(length=120), nullable=False),
            sa.Column("version", sa.String(length=200), nullable=False),
            sa.Column("archive_file_name", sa.String(length=255), nullable=True),
            sa.Column("archive_file_size", sa.BigInteger(), nullable=True),
            sa.Column("status", deployment_status_enum, nullable=True),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("backup_path", sa.String(length=1024), nullable=True),
            sa.Column("can_rollback", sa.Boolean(), nullable=False, server_default="false"),
            sa.ForeignKeyConstraint(["application_id"], ["applications.application_id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_deployments_application_id", "deployments", ["application_id"])

    if "deployment_steps" not in tables:
        op.create_table(
            "deployment_steps",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("deployment_id", sa.Integer(), nullable=False),
            sa.Column("step_number", sa.Integer(), nullable=False),
            sa.Column("step_name", sa.String(length=500), nullable=False),
            sa.Column("status", step_status_enum, nullable=True),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("error_details", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["deployment_id"], ["deployments.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_deployment_steps_deployment_id", "deployment_steps", ["deployment_id"])


def downgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"

    op.drop_index("ix_deployment_steps_deployment_id", table_name="deployment_steps")
    op.drop_table("deployment_steps")
    op.drop_index("ix_deployments_application_id", table_name="deployments")
    op.drop_table("deployments")
    op.drop_table("applications")

    if is_postgres:
        step_status_enum.drop(bind, checkfirst=True)
        deployment_status_enum.drop(bind, checkfirst=True)
