"""Initial ledger schema.

Revision ID: 20261018_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261018_initial"
down_revision = None
branch_labels = None
depends_on = None

_COMPLETED_PAYOUT = "type = 'PAYOUT' AND status = 'COMPLETED'"


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    user_role = sa.Enum("CampaignCreator", "Donor", "Admin", name="userrole")
    campaign_status = sa.Enum("PENDING", "APPROVED", "REJECTED", "COMPLETED", name="campaignstatus")
    milestone_status = sa.Enum("PENDING", "SUBMITTED", "APPROVED", "REJECTED", "PAID", name="milestonestatus")
    transaction_type = sa.Enum("DONATION", "PAYOUT", name="transactiontype")
    transaction_status = sa.Enum("PENDING", "COMPLETED", "FAILED", name="transactionstatus")

    op.create_table(
        "users",
        *_base_columns(),
        sa.Column("username", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("firstname", sa.String(length=100), nullable=False),
        sa.Column("lastname", sa.String(length=100), nullable=False),
        sa.Column("contact", sa.String(length=32), nullable=True),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("purpose", sa.String(length=255), nullable=True),
        sa.Column("role", user_role, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "campaigns",
        *_base_columns(),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("status", campaign_status, nullable=False),
        sa.Column("goal_amount", sa.BigInteger(), nullable=False),
        sa.Column("amount_raised", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.CheckConstraint("goal_amount > 0", name="ck_campaign_positive_goal"),
        sa.CheckConstraint("amount_raised >= 0", name="ck_campaign_amount_raised_non_negative"),
    )
    op.create_index("ix_campaigns_status", "campaigns", ["status"], unique=False)
    op.create_index("ix_campaigns_user_id", "campaigns", ["user_id"], unique=False)

    op.create_table(
        "donations",
        *_base_columns(),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column(
            "campaign_id", sa.Integer(), sa.ForeignKey("campaigns.id", ondelete="RESTRICT"), nullable=False
        ),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_donation_positive_amount"),
        sa.UniqueConstraint("idempotency_key", name="uq_donations_idempotency_key"),
    )
    op.create_index("ix_donations_user_id", "donations", ["user_id"], unique=False)
    op.create_index("ix_donations_campaign_id", "donations", ["campaign_id"], unique=False)

    op.create_table(
        "milestones",
        *_base_columns(),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("proof_url", sa.String(length=1024), nullable=True),
        sa.Column("status", milestone_status, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column(
            "campaign_id", sa.Integer(), sa.ForeignKey("campaigns.id", ondelete="RESTRICT"), nullable=False
        ),
        sa.CheckConstraint("amount > 0", name="ck_milestone_positive_amount"),
    )
    op.create_index("ix_milestones_campaign_id", "milestones", ["campaign_id"], unique=False)

    op.create_table(
        "milestone_votes",
        *_base_columns(),
        sa.Column("approved", sa.Boolean(), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column(
            "milestone_id", sa.Integer(), sa.ForeignKey("milestones.id", ondelete="RESTRICT"), nullable=False
        ),
        sa.UniqueConstraint("user_id", "milestone_id", name="uq_milestone_vote_user_milestone"),
    )
    op.create_index("ix_milestone_votes_user_id", "milestone_votes", ["user_id"], unique=False)
    op.create_index("ix_milestone_votes_milestone_id", "milestone_votes", ["milestone_id"], unique=False)

    op.create_table(
        "transactions",
        *_base_columns(),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("status", transaction_status, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column(
            "campaign_id", sa.Integer(), sa.ForeignKey("campaigns.id", ondelete="RESTRICT"), nullable=False
        ),
        sa.Column(
            "milestone_id", sa.Integer(), sa.ForeignKey("milestones.id", ondelete="RESTRICT"), nullable=True
        ),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_transaction_positive_amount"),
        sa.CheckConstraint(
            "(type = 'PAYOUT' AND milestone_id IS NOT NULL) OR (type = 'DONATION' AND milestone_id IS NULL)",
            name="ck_transaction_milestone_matches_type",
        ),
        sa.UniqueConstraint("idempotency_key", name="uq_transactions_idempotency_key"),
    )
    op.create_index("ix_transactions_user_id", "transactions", ["user_id"], unique=False)
    op.create_index("ix_transactions_campaign_id", "transactions", ["campaign_id"], unique=False)
    op.create_index("ix_transactions_milestone_id", "transactions", ["milestone_id"], unique=False)
    op.create_index("ix_transactions_created_at", "transactions", ["created_at"], unique=False)
    op.create_index(
        "ix_transactions_campaign_type_status",
        "transactions",
        ["campaign_id", "type", "status"],
        unique=False,
    )
    op.create_index(
        "uq_transactions_completed_payout_milestone",
        "transactions",
        ["milestone_id"],
        unique=True,
        sqlite_where=sa.text(_COMPLETED_PAYOUT),
        postgresql_where=sa.text(_COMPLETED_PAYOUT),
    )

    op.create_table(
        "audit_logs",
        *_base_columns(),
        sa.Column("actor", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("data_json", sa.JSON(), nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"], unique=False)
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity", "entity_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("uq_transactions_completed_payout_milestone", table_name="transactions")
    op.drop_index("ix_transactions_campaign_type_status", table_name="transactions")
    op.drop_index("ix_transactions_created_at", table_name="transactions")
    op.drop_index("ix_transactions_milestone_id", table_name="transactions")
    op.drop_index("ix_transactions_campaign_id", table_name="transactions")
    op.drop_index("ix_transactions_user_id", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_milestone_votes_milestone_id", table_name="milestone_votes")
    op.drop_index("ix_milestone_votes_user_id", table_name="milestone_votes")
    op.drop_table("milestone_votes")
    op.drop_index("ix_milestones_campaign_id", table_name="milestones")
    op.drop_table("milestones")
    op.drop_index("ix_donations_campaign_id", table_name="donations")
    op.drop_index("ix_donations_user_id", table_name="donations")
    op.drop_table("donations")
    op.drop_index("ix_campaigns_user_id", table_name="campaigns")
    op.drop_index("ix_campaigns_status", table_name="campaigns")
    op.drop_table("campaigns")
    op.drop_table("users")

    bind = op.get_bind()
    for name in ("transactionstatus", "transactiontype", "milestonestatus", "campaignstatus", "userrole"):
        sa.Enum(name=name).drop(bind, checkfirst=True)
