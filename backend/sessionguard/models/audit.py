"""Login event model - append-only authentication audit trail."""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, Index

from sessionguard.core.database import Base
from sessionguard.core.security import utcnow


class LoginEvent(Base):
    """Immutable login/refresh events."""

    __tablename__ = "login_events"

    id = Column(Integer, primary_key=True, index=True)
    principal_id = Column(String(36), ForeignKey("principals.id", ondelete="CASCADE"), nullable=False)
    ip_address = Column(String(64), nullable=False)
    device_info = Column(Text, nullable=True)
    device_fingerprint = Column(String(64), nullable=True)
    browser = Column(String(64), nullable=True)
    os = Column(String(64), nullable=True)
    is_trusted_device = Column(Boolean, default=False, nullable=False)
    event_type = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_login_events_principal_created", "principal_id", "created_at"),
        Index("idx_login_events_principal_fingerprint", "principal_id", "device_fingerprint"),
        Index("idx_login_events_principal_ip", "principal_id", "ip_address"),
    )
