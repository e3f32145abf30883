"""Identity and credential schemas"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator


class IdentityProofClaims(BaseModel):
    """Verified identity handed over by an external identity-proof step"""
    source: Literal["identity_proof"] = "identity_proof"
    principal_id: Optional[str] = None
    email: str = Field(..., min_length=3, max_length=255)
    name: Optional[str] = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v):
        """Emails compare case-insensitively"""
        return v.strip().lower()


class AccessTokenClaims(BaseModel):
    """Claims recovered from a verified access token"""
    source: Literal["access_token"] = "access_token"
    sub: str
    email: str
    name: Optional[str] = None
    typ: Literal["access"] = "access"
    jti: Optional[str] = None
    exp: Optional[int] = None


IdentityPayload = Annotated[
    Union[IdentityProofClaims, AccessTokenClaims],
    Field(discriminator="source"),
]

_identity_adapter = TypeAdapter(IdentityPayload)


class PrincipalClaims(BaseModel):
    """Canonical principal identity used past the boundary"""
    principal_id: str
    email: str
    name: str = ""


def parse_identity(raw: dict) -> Union[IdentityProofClaims, AccessTokenClaims]:
    """Validate a raw mapping tagged with ``source`` into its identity variant."""
    return _identity_adapter.validate_python(raw)


def normalize_identity(
    payload: Union[IdentityProofClaims, AccessTokenClaims],
    principal_id: Optional[str] = None,
) -> PrincipalClaims:
    """
    Collapse either identity variant into PrincipalClaims

    Args:
        payload: Identity-proof claims or access token claims
        principal_id: Resolved principal id, required when the identity proof did not carry one

    Returns:
        PrincipalClaims
    """
    if isinstance(payload, AccessTokenClaims):
        return PrincipalClaims(principal_id=payload.sub, email=payload.email, name=payload.name or "")

    resolved = principal_id or payload.principal_id
    if not resolved:
        raise ValueError("Identity proof does not identify a principal")
    return PrincipalClaims(principal_id=resolved, email=payload.email, name=payload.name or "")


class TokenPairResponse(BaseModel):
    """Access + refresh token response"""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class LogoutResponse(BaseModel):
    success: bool = True
    message: str
    refresh_token_revoked: bool = False
    access_token_revoked: bool = False


class RevokeAllResponse(BaseModel):
    success: bool = True
    message: str
    epoch: int
