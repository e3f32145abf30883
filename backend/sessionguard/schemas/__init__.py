"""Pydantic schemas for API validation"""

from sessionguard.schemas.auth import (
    IdentityProofClaims,
    AccessTokenClaims,
    PrincipalClaims,
    TokenPairResponse,
    LogoutResponse,
    RevokeAllResponse,
    normalize_identity,
    parse_identity,
)
from sessionguard.schemas.security import (
    ActiveDeviceResponse,
    TrustedDeviceResponse,
    TrustByFingerprintRequest,
    SecurityAlertResponse,
    MarkAlertsReadRequest,
    LoginEventResponse,
    LoginHistoryResponse,
    SecurityOverviewResponse,
)
from sessionguard.schemas.response import APIResponse, ErrorResponse, HealthResponse

__all__ = [
    "IdentityProofClaims", "AccessTokenClaims", "PrincipalClaims", "TokenPairResponse",
    "LogoutResponse", "RevokeAllResponse", "normalize_identity", "parse_identity",
    "ActiveDeviceResponse", "TrustedDeviceResponse", "TrustByFingerprintRequest",
    "SecurityAlertResponse", "MarkAlertsReadRequest", "LoginEventResponse",
    "LoginHistoryResponse", "SecurityOverviewResponse",
    "APIResponse", "ErrorResponse", "HealthResponse",
]
