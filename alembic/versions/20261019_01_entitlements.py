"""
Entitlement subsystem tables.

- users / contents: reference data read by the reconciler and the signer.
- entitlements: one row per user × content × payment session.
- security_logs: append-only audit of abuse reports and admin overrides.
- access_tokens: opaque tokens for the e-mail / anonymous playback flow.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic.
revision = "20261019_01_entitlements"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    json_type = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "contents",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("storage_path", sa.String(length=1024), nullable=False),
        sa.Column("access_duration_seconds", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("kind IN ('collection', 'video')", name="ck_contents_kind_valid"),
        sa.CheckConstraint("price_cents >= 0", name="ck_contents_price_nonneg"),
        sa.CheckConstraint(
            "(access_duration_seconds IS NULL) OR (access_duration_seconds > 0)",
            name="ck_contents_duration_positive",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_contents"),
    )

    op.create_table(
        "entitlements",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("content_id", sa.String(length=64), nullable=False),
        sa.Column("payment_session_id", sa.String(length=255), nullable=False),
        sa.Column("amount_paid", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("strike_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("bound_ip", sa.String(length=45), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("status IN ('pending', 'completed')", name="ck_entitlements_status_valid"),
        sa.CheckConstraint("strike_count >= 0", name="ck_entitlements_strike_count_nonneg"),
        sa.CheckConstraint("amount_paid >= 0", name="ck_entitlements_amount_nonneg"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name="fk_entitlements_user_id_users", ondelete="RESTRICT"
        ),
        sa.ForeignKeyConstraint(
            ["content_id"], ["contents.id"], name="fk_entitlements_content_id_contents", ondelete="RESTRICT"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_entitlements"),
        sa.UniqueConstraint(
            "user_id", "content_id", "payment_session_id", name="uq_entitlements_user_content_session"
        ),
    )
    op.create_index("ix_entitlements_payment_session_id", "entitlements", ["payment_session_id"])
    op.create_index(
        "ix_entitlements_user_content_created",
        "entitlements",
        ["user_id", "content_id", sa.text("created_at DESC")],
    )
    op.create_index("ix_entitlements_user_created", "entitlements", ["user_id", sa.text("created_at DESC")])

    op.create_table(
        "security_logs",
        sa.Column("seq", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), autoincrement=True, nullable=False),
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("entitlement_id", sa.String(length=64), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("details", json_type, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(
            ["entitlement_id"],
            ["entitlements.id"],
            name="fk_security_logs_entitlement_id_entitlements",
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("seq", name="pk_security_logs"),
        sa.UniqueConstraint("id", name="uq_security_logs_id"),
    )
    op.create_index("ix_security_logs_entitlement_id", "security_logs", ["entitlement_id"])
    op.create_index("ix_security_logs_event_type", "security_logs", ["event_type"])
    op.create_index("ix_security_logs_created_at", "security_logs", ["created_at"])
    op.create_index(
        "ix_security_logs_type_created_desc", "security_logs", ["event_type", sa.text("created_at DESC")]
    )
    op.create_index(
        "ix_security_logs_entitlement_created_desc",
        "security_logs",
        ["entitlement_id", sa.text("created_at DESC")],
    )

    op.create_table(
        "access_tokens",
        sa.Column("token", sa.String(length=128), nullable=False),
        sa.Column("content_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(
            ["content_id"], ["contents.id"], name="fk_access_tokens_content_id_contents", ondelete="RESTRICT"
        ),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name="fk_access_tokens_user_id_users", ondelete="RESTRICT"
        ),
        sa.PrimaryKeyConstraint("token", name="pk_access_tokens"),
    )
    op.create_index("ix_access_tokens_content_id", "access_tokens", ["content_id"])
    op.create_index("ix_access_tokens_user_id", "access_tokens", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_access_tokens_user_id", table_name="access_tokens")
    op.drop_index("ix_access_tokens_content_id", table_name="access_tokens")
    op.drop_table("access_tokens")

    for name in (
        "ix_security_logs_entitlement_created_desc",
        "ix_security_logs_type_created_desc",
        "ix_security_logs_created_at",
        "ix_security_logs_event_type",
        "ix_security_logs_entitlement_id",
    ):
        op.drop_index(name, table_name="security_logs")
    op.drop_table("security_logs")

    op.drop_index("ix_entitlements_user_created", table_name="entitlements")
    op.drop_index("ix_entitlements_user_content_created", table_name="entitlements")
    op.drop_index("ix_entitlements_payment_session_id", table_name="entitlements")
    op.drop_table("entitlements")

    op.drop_table("contents")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
