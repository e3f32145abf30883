"""initial schema

Revision ID: 202610170001
Revises:
Create Date: 2026-10-17 00:00:01
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "202610170001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "principals",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("epoch", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("epoch >= 1", name="chk_principals_epoch"),
    )
    op.create_index("ix_principals_email", "principals", ["email"], unique=True)

    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("principal_id", sa.String(length=36), nullable=False),
        sa.Column("token", sa.Text(), nullable=False),
        sa.Column("token_jti", sa.String(length=128), nullable=False),
        sa.Column("epoch_at_issue", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("family_id", sa.String(length=64), nullable=False),
        sa.Column("device_fingerprint", sa.String(length=64), nullable=True),
        sa.Column("device_info", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("replaced_by_token", sa.Text(), nullable=True),
        sa.Column("replaced_by_jti", sa.String(length=128), nullable=True),
        sa.Column("rotated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_used_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["principal_id"], ["principals.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_refresh_tokens_token_jti", "refresh_tokens", ["token_jti"], unique=True)
    op.create_index("ix_refresh_tokens_family_id", "refresh_tokens", ["family_id"])
    op.create_index("idx_refresh_tokens_principal_family", "refresh_tokens", ["principal_id", "family_id"])

    op.create_table(
        "trusted_devices",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("principal_id", sa.String(length=36), nullable=False),
        sa.Column("device_fingerprint", sa.String(length=64), nullable=False),
        sa.Column("device_name", sa.String(length=255), nullable=True),
        sa.Column("browser", sa.String(length=64), nullable=True),
        sa.Column("os", sa.String(length=64), nullable=True),
        sa.Column("last_ip_address", sa.String(length=64), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["principal_id"], ["principals.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("principal_id", "device_fingerprint", name="uq_trusted_devices_principal_fingerprint"),
    )
    op.create_index("ix_trusted_devices_principal_id", "trusted_devices", ["principal_id"])

    op.create_table(
        "security_alerts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("principal_id", sa.String(length=36), nullable=False),
        sa.Column("alert_type", sa.String(length=32), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_dismissed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["principal_id"], ["principals.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "alert_type IN ('new_device', 'new_location', 'possible_reuse', 'device_mismatch')",
            name="chk_security_alerts_type",
        ),
    )
    op.create_index("idx_security_alerts_principal_read", "security_alerts", ["principal_id", "is_read"])
    op.create_index("idx_security_alerts_principal_created", "security_alerts", ["principal_id", "created_at"])

    op.create_table(
        "login_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("principal_id", sa.String(length=36), nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=False),
        sa.Column("device_info", sa.Text(), nullable=True),
        sa.Column("device_fingerprint", sa.String(length=64), nullable=True),
        sa.Column("browser", sa.String(length=64), nullable=True),
        sa.Column("os", sa.String(length=64), nullable=True),
        sa.Column("is_trusted_device", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("event_type", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["principal_id"], ["principals.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_login_events_principal_created", "login_events", ["principal_id", "created_at"])
    op.create_index("idx_login_events_principal_fingerprint", "login_events", ["principal_id", "device_fingerprint"])
    op.create_index("idx_login_events_principal_ip", "login_events", ["principal_id", "ip_address"])


def downgrade() -> None:
    op.drop_index("idx_login_events_principal_ip", table_name="login_events")
    op.drop_index("idx_login_events_principal_fingerprint", table_name="login_events")
    op.drop_index("idx_login_events_principal_created", table_name="login_events")
    op.drop_table("login_events")

    op.drop_index("idx_security_alerts_principal_created", table_name="security_alerts")
    op.drop_index("idx_security_alerts_principal_read", table_name="security_alerts")
    op.drop_table("security_alerts")

    op.drop_index("ix_trusted_devices_principal_id", table_name="trusted_devices")
    op.drop_table("trusted_devices")

    op.drop_index("idx_refresh_tokens_principal_family", table_name="refresh_tokens")
    op.drop_index("ix_refresh_tokens_family_id", table_name="refresh_tokens")
    op.drop_index("ix_refresh_tokens_token_jti", table_name="refresh_tokens")
    op.drop_table("refresh_tokens")

    op.drop_index("ix_principals_email", table_name="principals")
    op.drop_table("principals")
