"""Initial schema.

Revision ID: 001
Revises: None
Create Date: 2026-10-18 00:00:00.000000+00:00

Creates all tables for trustgate:
- users (phone-identified accounts)
- devices (fingerprinted client devices)
- sessions, session_archives (session lifecycle and retention)
- rate_limit_counters, otp_challenges (login throttling and codes)
- security_events (audit trail)
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamp(name: str, *, nullable: bool = False, server_default: bool = True) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.text("now()") if server_default else None,
        nullable=nullable,
    )


def _uuid_pk(name: str) -> sa.Column:
    return sa.Column(
        name,
        postgresql.UUID(as_uuid=True),
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
    )


def upgrade() -> None:
    """Apply migration: Initial schema."""
    # Create enum types first
    device_confidence = postgresql.ENUM(
        "high", "medium", "low", name="device_confidence", create_type=False
    )
    device_confidence.create(op.get_bind(), checkfirst=True)

    termination_reason = postgresql.ENUM(
        "logout",
        "timeout",
        "revoked",
        "device_removed",
        "session_limit_enforced",
        "archived",
        name="termination_reason",
        create_type=False,
    )
    termination_reason.create(op.get_bind(), checkfirst=True)

    rate_limit_type = postgresql.ENUM("otp", "login", name="rate_limit_type", create_type=False)
    rate_limit_type.create(op.get_bind(), checkfirst=True)

    otp_purpose = postgresql.ENUM("login", name="otp_purpose", create_type=False)
    otp_purpose.create(op.get_bind(), checkfirst=True)

    event_severity = postgresql.ENUM(
        "info", "warning", "critical", name="event_severity", create_type=False
    )
    event_severity.create(op.get_bind(), checkfirst=True)

    # =========================================================================
    # Users
    # =========================================================================
    op.create_table(
        "users",
        _uuid_pk("user_id"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("country_code", sa.String(8), nullable=False),
        sa.Column("phone_number", sa.String(20), nullable=False),
        _timestamp("phone_verified_at", nullable=True, server_default=False),
        _timestamp("last_login_at", nullable=True, server_default=False),
        sa.PrimaryKeyConstraint("user_id", name=op.f("pk_users")),
        sa.UniqueConstraint("country_code", "phone_number", name="uq_users_phone"),
    )

    # =========================================================================
    # Devices
    # =========================================================================
    op.create_table(
        "devices",
        _uuid_pk("device_id"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("primary_fingerprint", sa.String(64), nullable=False),
        sa.Column("secondary_fingerprint", sa.String(64), nullable=True),
        sa.Column("confidence", device_confidence, nullable=False),
        sa.Column("is_trusted", sa.Boolean(), nullable=False),
        _timestamp("blocked_at", nullable=True, server_default=False),
        sa.Column("block_reason", sa.String(64), nullable=True),
        _timestamp("last_seen_at", nullable=True, server_default=False),
        sa.Column("last_ip_address", postgresql.INET(), nullable=True),
        sa.Column("device_type", sa.String(20), nullable=True),
        sa.Column("device_name", sa.String(255), nullable=True),
        sa.Column("os_name", sa.String(50), nullable=True),
        sa.Column("os_version", sa.String(50), nullable=True),
        sa.Column("browser_name", sa.String(50), nullable=True),
        sa.Column("browser_version", sa.String(50), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("device_metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.user_id"],
            name=op.f("fk_devices_user_id_users"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("device_id", name=op.f("pk_devices")),
        sa.UniqueConstraint("primary_fingerprint", name=op.f("uq_devices_primary_fingerprint")),
    )
    op.create_index("ix_devices_user_id", "devices", ["user_id"], unique=False)
    op.create_index(
        "ix_devices_secondary_fingerprint", "devices", ["secondary_fingerprint"], unique=False
    )

    # =========================================================================
    # Sessions
    # =========================================================================
    op.create_table(
        "sessions",
        _uuid_pk("session_id"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("session_token", sa.String(128), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("device_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("access_token_hash", sa.String(64), nullable=True),
        sa.Column("refresh_token_hash", sa.String(64), nullable=True),
        _timestamp("last_activity_at"),
        _timestamp("expires_at", server_default=False),
        _timestamp("max_expires_at", server_default=False),
        _timestamp("terminated_at", nullable=True, server_default=False),
        sa.Column("termination_reason", termination_reason, nullable=True),
        sa.Column("remember_me", sa.Boolean(), nullable=False),
        sa.Column("ip_address", postgresql.INET(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.user_id"],
            name=op.f("fk_sessions_user_id_users"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["device_id"],
            ["devices.device_id"],
            name=op.f("fk_sessions_device_id_devices"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("session_id", name=op.f("pk_sessions")),
        sa.UniqueConstraint("session_token", name=op.f("uq_sessions_session_token")),
        sa.UniqueConstraint("refresh_token_hash", name=op.f("uq_sessions_refresh_token_hash")),
    )
    op.create_index("ix_sessions_user_id", "sessions", ["user_id"], unique=False)
    op.create_index("ix_sessions_device_id", "sessions", ["device_id"], unique=False)
    op.create_index("ix_sessions_expires_at", "sessions", ["expires_at"], unique=False)
    op.create_index("ix_sessions_terminated_at", "sessions", ["terminated_at"], unique=False)
    op.create_index(
        "ix_sessions_user_active",
        "sessions",
        ["user_id", "last_activity_at"],
        unique=False,
        postgresql_where=sa.text("terminated_at IS NULL"),
    )

    op.create_table(
        "session_archives",
        _uuid_pk("archive_id"),
        sa.Column("original_session_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("session_token", sa.String(128), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("device_id", postgresql.UUID(as_uuid=True), nullable=True),
        _timestamp("session_created_at", server_default=False),
        _timestamp("last_activity_at", server_default=False),
        _timestamp("expires_at", server_default=False),
        _timestamp("max_expires_at", server_default=False),
        _timestamp("terminated_at", nullable=True, server_default=False),
        sa.Column("termination_reason", termination_reason, nullable=True),
        sa.Column("remember_me", sa.Boolean(), nullable=False),
        sa.Column("ip_address", postgresql.INET(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        _timestamp("archived_at", server_default=False),
        sa.Column("retention_days", sa.Integer(), nullable=False),
        _timestamp("retention_expires_at", server_default=False),
        sa.PrimaryKeyConstraint("archive_id", name=op.f("pk_session_archives")),
        sa.UniqueConstraint(
            "original_session_id", name=op.f("uq_session_archives_original_session_id")
        ),
    )
    op.create_index(
        "ix_session_archives_user_id", "session_archives", ["user_id"], unique=False
    )
    op.create_index(
        "ix_session_archives_device_id", "session_archives", ["device_id"], unique=False
    )
    op.create_index(
        "ix_session_archives_termination_reason",
        "session_archives",
        ["termination_reason"],
        unique=False,
    )
    op.create_index(
        "ix_session_archives_archived_at", "session_archives", ["archived_at"], unique=False
    )
    op.create_index(
        "ix_session_archives_retention_expires_at",
        "session_archives",
        ["retention_expires_at"],
        unique=False,
    )

    # =========================================================================
    # Throttling and one-time codes
    # =========================================================================
    op.create_table(
        "rate_limit_counters",
        _uuid_pk("counter_id"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("identifier", sa.String(255), nullable=False),
        sa.Column("limit_type", rate_limit_type, nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("window_seconds", sa.Integer(), nullable=False),
        _timestamp("window_start", server_default=False),
        _timestamp("window_end", server_default=False),
        sa.PrimaryKeyConstraint("counter_id", name=op.f("pk_rate_limit_counters")),
        sa.UniqueConstraint("identifier", "limit_type", name="uq_rate_limit_counters_key"),
    )

    op.create_table(
        "otp_challenges",
        _uuid_pk("challenge_id"),
        _timestamp("created_at"),
        sa.Column("destination", sa.String(32), nullable=False),
        sa.Column("purpose", otp_purpose, nullable=False),
        sa.Column("code_hash", sa.String(64), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        _timestamp("expires_at", server_default=False),
        sa.Column("is_used", sa.Boolean(), nullable=False),
        _timestamp("verified_at", nullable=True, server_default=False),
        sa.PrimaryKeyConstraint("challenge_id", name=op.f("pk_otp_challenges")),
    )
    op.create_index(
        "ix_otp_challenges_destination_purpose",
        "otp_challenges",
        ["destination", "purpose"],
        unique=False,
    )

    # =========================================================================
    # Security events
    # =========================================================================
    op.create_table(
        "security_events",
        _uuid_pk("event_id"),
        _timestamp("created_at"),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("severity", event_severity, nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("session_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("device_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("ip_address", postgresql.INET(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.PrimaryKeyConstraint("event_id", name=op.f("pk_security_events")),
    )
    op.create_index("ix_security_events_user_id", "security_events", ["user_id"], unique=False)
    op.create_index(
        "ix_security_events_event_type", "security_events", ["event_type"], unique=False
    )
    op.create_index(
        "ix_security_events_created_at", "security_events", ["created_at"], unique=False
    )


def downgrade() -> None:
    """Revert migration: Initial schema."""
    # Drop tables in reverse order (respecting foreign key dependencies)
    op.drop_table("security_events")
    op.drop_table("otp_challenges")
    op.drop_table("rate_limit_counters")
    op.drop_table("session_archives")
    op.drop_table("sessions")
    op.drop_table("devices")
    op.drop_table("users")

    # Drop enum types
    op.execute("DROP TYPE IF EXISTS event_severity")
    op.execute("DROP TYPE IF EXISTS otp_purpose")
    op.execute("DROP TYPE IF EXISTS rate_limit_type")
    op.execute("DROP TYPE IF EXISTS termination_reason")
    op.execute("DROP TYPE IF EXISTS device_confidence")
