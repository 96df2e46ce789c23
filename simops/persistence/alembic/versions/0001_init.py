"""init

Revision ID: 0001_init
Revises: 
Create Date: 2026-10-17 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False, unique=True),
        sa.Column("role", sa.String(), nullable=False, server_default="agent"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "accounts",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("label", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("client_secret_encrypted", sa.Text(), nullable=False),
        sa.Column("oauth_scope", sa.String(), nullable=True),
        sa.Column("oauth_audience", sa.String(), nullable=True),
        sa.Column("is_parent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_accounts_client_id", "accounts", ["client_id"], unique=True)

    op.create_table(
        "fleets",
        sa.Column("id", sa.String(), primary_key=True),
        # Avoid index=True here because we create explicit indexes below.
        sa.Column("account_id", sa.String(), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("external_ref", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("account_id", "external_ref", name="uq_fleets_account_external_ref"),
    )
    op.create_index("ix_fleets_account_id", "fleets", ["account_id"])

    op.create_table(
        "sims",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("account_id", sa.String(), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("fleet_id", sa.String(), sa.ForeignKey("fleets.id"), nullable=False),
        sa.Column("sim_sid", sa.String(), nullable=False),
        sa.Column("iccid", sa.String(), nullable=False),
        sa.Column("unique_name", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="unknown"),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_sims_sim_sid", "sims", ["sim_sid"], unique=True)
    op.create_index("ix_sims_account_id", "sims", ["account_id"])
    op.create_index("ix_sims_fleet_id", "sims", ["fleet_id"])
    # Target resolution looks devices up by iccid or unique name within one account.
    op.create_index("ix_sims_account_iccid", "sims", ["account_id", "iccid"])
    op.create_index("ix_sims_account_unique_name", "sims", ["account_id", "unique_name"])

    op.create_table(
        "user_scopes",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("account_id", sa.String(), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("fleet_id", sa.String(), sa.ForeignKey("fleets.id"), nullable=True),
        sa.Column("can_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_write", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_invite", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "account_id", "fleet_id", name="uq_user_scopes_user_account_fleet"),
    )
    op.create_index("ix_user_scopes_user_id", "user_scopes", ["user_id"])
    op.create_index("ix_user_scopes_account_id", "user_scopes", ["account_id"])

    op.create_table(
        "command_logs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("account_id", sa.String(), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("sim_id", sa.String(), sa.ForeignKey("sims.id"), nullable=False),
        sa.Column("command", sa.String(), nullable=False),
        sa.Column("direction", sa.String(), nullable=False),
        sa.Column("payload", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(), nullable=True),
        sa.Column("provider_sid", sa.String(), nullable=True, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_command_logs_account_id", "command_logs", ["account_id"])
    op.create_index("ix_command_logs_sim_created", "command_logs", ["sim_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_command_logs_sim_created", table_name="command_logs")
    op.drop_index("ix_command_logs_account_id", table_name="command_logs")
    op.drop_table("command_logs")
    op.drop_index("ix_user_scopes_account_id", table_name="user_scopes")
    op.drop_index("ix_user_scopes_user_id", table_name="user_scopes")
    op.drop_table("user_scopes")
    op.drop_index("ix_sims_account_unique_name", table_name="sims")
    op.drop_index("ix_sims_account_iccid", table_name="sims")
    op.drop_index("ix_sims_fleet_id", table_name="sims")
    op.drop_index("ix_sims_account_id", table_name="sims")
    op.drop_index("ix_sims_sim_sid", table_name="sims")
    op.drop_table("sims")
    op.drop_index("ix_fleets_account_id", table_name="fleets")
    op.drop_table("fleets")
    op.drop_index("ix_accounts_client_id", table_name="accounts")
    op.drop_table("accounts")
    op.drop_table("users")
