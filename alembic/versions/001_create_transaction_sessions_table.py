"""create transaction_sessions table

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    sessionstatus = sa.Enum(
        "pending", "payment_initiated", "completed", "failed", "expired",
        name="sessionstatus",
    )
    sessionstatus.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "transaction_sessions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("status", sessionstatus, server_default="pending", nullable=False),
        sa.Column("amount_ngn", sa.Numeric(18, 2), nullable=False),
        sa.Column("gross_inr", sa.Numeric(18, 2), nullable=False),
        sa.Column("net_inr", sa.Numeric(18, 2), nullable=False),
        sa.Column("locked_rate", sa.Numeric(12, 4), nullable=False),
        sa.Column("fee_percent", sa.Numeric(5, 2), nullable=False),
        sa.Column("fee_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("profit_margin", sa.Numeric(8, 4), nullable=False),
        sa.Column("rate_source", sa.String(32), nullable=False),
        sa.Column("encrypted_details", sa.Text, nullable=False),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("payment_reference", sa.String(100), unique=True, nullable=True),
        sa.Column("payment_channel", sa.String(50), nullable=True),
        sa.Column("paid_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_reason", sa.String(255), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.CheckConstraint("amount_ngn > 0", name="ck_transaction_sessions_amount_positive"),
    )
    op.create_index("ix_transaction_sessions_status", "transaction_sessions", ["status"])
    op.create_index("ix_transaction_sessions_ip_address", "transaction_sessions", ["ip_address"])
    op.create_index("ix_transaction_sessions_created_at", "transaction_sessions", ["created_at"])


def downgrade() -> None:
    op.drop_table("transaction_sessions")
    sa.Enum(name="sessionstatus").drop(op.get_bind(), checkfirst=True)
