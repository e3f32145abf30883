"""Security-related persistence models."""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from sessionguard.core.database import Base
from sessionguard.core.security import utcnow


class RefreshToken(Base):
    """Refresh token record for rotation/revocation."""

    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, index=True)
    principal_id = Column(String(36), ForeignKey("principals.id", ondelete="CASCADE"), nullable=False)
    token = Column(Text, nullable=False)
    token_jti = Column(String(128), unique=True, nullable=False, index=True)
    epoch_at_issue = Column(Integer, nullable=False, default=1)
    family_id = Column(String(64), nullable=False, index=True)
    device_fingerprint = Column(String(64), nullable=True)
    device_info = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)
    replaced_by_token = Column(Text, nullable=True)
    replaced_by_jti = Column(String(128), nullable=True)
    rotated_at = Column(DateTime(timezone=True), nullable=True)
    revoked = Column(Boolean, default=False, nullable=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    last_used_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    principal = relationship("Principal", back_populates="refresh_tokens")

    __table_args__ = (
        Index("idx_refresh_tokens_principal_family", "principal_id", "family_id"),
    )


class TrustedDevice(Base):
    """Device fingerprint a principal has explicitly trusted."""

    __tablename__ = "trusted_devices"

    id = Column(Integer, primary_key=True, index=True)
    principal_id = Column(String(36), ForeignKey("principals.id", ondelete="CASCADE"), nullable=False, index=True)
    device_fingerprint = Column(String(64), nullable=False)
    device_name = Column(String(255), nullable=True)
    browser = Column(String(64), nullable=True)
    os = Column(String(64), nullable=True)
    last_ip_address = Column(String(64), nullable=True)
    last_used_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("principal_id", "device_fingerprint", name="uq_trusted_devices_principal_fingerprint"),
    )


class SecurityAlert(Base):
    """Alert surfaced to the principal; only read/dismissed flags ever change."""

    __tablename__ = "security_alerts"

    id = Column(Integer, primary_key=True, index=True)
    principal_id = Column(String(36), ForeignKey("principals.id", ondelete="CASCADE"), nullable=False)
    alert_type = Column(String(32), nullable=False)
    message = Column(Text, nullable=False)
    metadata_json = Column(Text, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    is_dismissed = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_security_alerts_principal_read", "principal_id", "is_read"),
        Index("idx_security_alerts_principal_created", "principal_id", "created_at"),
    )
