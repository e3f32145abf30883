"""Principal model"""

import uuid

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from sessionguard.core.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class Principal(Base):
    """Authenticated identity owning credentials, trusted devices and alerts"""

    __tablename__ = "principals"

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False, default="")
    # Bumping the epoch invalidates every refresh token issued before it.
    epoch = Column(Integer, nullable=False, default=1, server_default="1")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    refresh_tokens = relationship("RefreshToken", back_populates="principal", cascade="all, delete-orphan")
    trusted_devices = relationship("TrustedDevice", cascade="all, delete-orphan")
    security_alerts = relationship("SecurityAlert", cascade="all, delete-orphan")
    login_events = relationship("LoginEvent", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Principal(id={self.id}, email='{self.email}', epoch={self.epoch})>"
