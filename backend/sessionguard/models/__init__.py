"""Database models"""

from sessionguard.models.principal import Principal
from sessionguard.models.security import RefreshToken, TrustedDevice, SecurityAlert
from sessionguard.models.audit import LoginEvent

__all__ = ["Principal", "RefreshToken", "TrustedDevice", "SecurityAlert", "LoginEvent"]
