"""Initial schema: users, reports, votes, ledger, rewards

Revision ID: c1a7e0d2b9f4
Revises:
Create Date: 2026-10-17 00:00:00.000000

Creates the 7 tables of the ledger core: users, reports, report_votes,
vote_events, ledger_entries, rewards, reward_redemptions.

NOTE: Written manually so constraint names match the naming convention in
citypulse.models.base exactly (IntegrityError handling relies on them).
"""
from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "c1a7e0d2b9f4"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # --- users table ---
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("api_key_hash", sa.String(255), nullable=True),
        sa.Column("display_name", sa.String(100), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.UniqueConstraint("api_key_hash", name="uq_users_api_key_hash"),
    )

    # --- reports table ---
    op.create_table(
        "reports",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("priority", sa.String(20), nullable=False, server_default="medium"),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("photos", sa.JSON(), nullable=False),
        # Denormalized vote counters (atomic increments only)
        sa.Column("upvotes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("downvotes", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_reports"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_reports_user_id_users"),
        sa.CheckConstraint("upvotes >= 0", name="ck_reports_upvotes_non_negative"),
        sa.CheckConstraint("downvotes >= 0", name="ck_reports_downvotes_non_negative"),
    )
    op.create_index("ix_reports_user_id", "reports", ["user_id"])

    # --- report_votes table: one active vote per (user, report) ---
    op.create_table(
        "report_votes",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("report_id", sa.Uuid(), nullable=False),
        sa.Column("vote_type", sa.String(10), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_report_votes"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_report_votes_user_id_users"),
        sa.ForeignKeyConstraint(["report_id"], ["reports.id"], name="fk_report_votes_report_id_reports"),
        sa.UniqueConstraint("user_id", "report_id", name="uq_report_votes_user_id_report_id"),
    )
    op.create_index("ix_report_votes_report_id_vote_type", "report_votes", ["report_id", "vote_type"])

    # --- vote_events table: append-only transition history ---
    op.create_table(
        "vote_events",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("report_id", sa.Uuid(), nullable=False),
        sa.Column("transition", sa.String(10), nullable=False),
        sa.Column("vote_type", sa.String(10), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_vote_events"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_vote_events_user_id_users"),
        sa.ForeignKeyConstraint(["report_id"], ["reports.id"], name="fk_vote_events_report_id_reports"),
    )
    op.create_index("ix_vote_events_user_id", "vote_events", ["user_id"])

    # --- ledger_entries table: append-only ---
    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("related_report_id", sa.Uuid(), nullable=True),
        sa.Column("idempotency_key", sa.String(120), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_ledger_entries"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_ledger_entries_user_id_users"),
        sa.ForeignKeyConstraint(
            ["related_report_id"], ["reports.id"], name="fk_ledger_entries_related_report_id_reports"
        ),
        sa.UniqueConstraint("idempotency_key", name="uq_ledger_entries_idempotency_key"),
        sa.CheckConstraint("amount <> 0", name="ck_ledger_entries_amount_nonzero"),
    )
    op.create_index("ix_ledger_entries_user_id_created_at", "ledger_entries", ["user_id", "created_at"])

    # --- rewards table ---
    op.create_table(
        "rewards",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("category", sa.String(20), nullable=False, server_default="digital"),
        sa.Column("image_url", sa.String(500), nullable=True),
        sa.Column("cost", sa.Integer(), nullable=False),
        sa.Column("stock_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_rewards"),
        sa.CheckConstraint("cost > 0", name="ck_rewards_cost_positive"),
        sa.CheckConstraint("stock_quantity >= 0", name="ck_rewards_stock_non_negative"),
    )

    # --- reward_redemptions table ---
    op.create_table(
        "reward_redemptions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("reward_id", sa.Uuid(), nullable=False),
        sa.Column("credits_spent", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("redemption_code", sa.String(32), nullable=False),
        sa.Column("idempotency_key", sa.String(120), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_reward_redemptions"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_reward_redemptions_user_id_users"),
        sa.ForeignKeyConstraint(["reward_id"], ["rewards.id"], name="fk_reward_redemptions_reward_id_rewards"),
        sa.UniqueConstraint("redemption_code", name="uq_reward_redemptions_redemption_code"),
        sa.UniqueConstraint(
            "user_id", "idempotency_key", name="uq_reward_redemptions_user_id_idempotency_key"
        ),
    )
    op.create_index("ix_reward_redemptions_user_id", "reward_redemptions", ["user_id"])
    op.create_index("ix_reward_redemptions_reward_id", "reward_redemptions", ["reward_id"])


def downgrade() -> None:
    op.drop_table("reward_redemptions")
    op.drop_table("rewards")
    op.drop_table("ledger_entries")
    op.drop_table("vote_events")
    op.drop_table("report_votes")
    op.drop_table("reports")
    op.drop_table("users")
