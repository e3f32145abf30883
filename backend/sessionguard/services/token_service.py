"""Credential issuing: access tokens and persisted refresh tokens."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from sessionguard.core.deny_list import AccessDenyList, access_deny_list
from sessionguard.core.device import generate_device_fingerprint, normalize_ip
from sessionguard.core.exceptions import (
    ExpiredCredentialError,
    InvalidCredentialError,
    SessionInvalidatedError,
)
from sessionguard.core.metrics import TOKENS_ISSUED
from sessionguard.core.security import (
    REFRESH_TOKEN_TYPE,
    access_token_expired,
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_token,
    from_timestamp,
    generate_family_id,
    naive_utc,
    utcnow,
)
from sessionguard.models.principal import Principal
from sessionguard.models.security import RefreshToken
from sessionguard.schemas.auth import AccessTokenClaims, PrincipalClaims, normalize_identity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


class TokenService:
    """Mint access/refresh pairs bound to a device fingerprint and rotation family."""

    def __init__(self, deny_list: Optional[AccessDenyList] = None) -> None:
        self._deny_list = deny_list if deny_list is not None else access_deny_list

    @property
    def deny_list(self) -> AccessDenyList:
        return self._deny_list

    @staticmethod
    def issue_access_token(claims: PrincipalClaims) -> str:
        TOKENS_ISSUED.labels("access").inc()
        return create_access_token({"sub": claims.principal_id, "email": claims.email, "name": claims.name})

    @staticmethod
    def issue_refresh_token(
        db: Session,
        principal_id: str,
        *,
        family_id: str,
        epoch: int,
        fingerprint: Optional[str],
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None,
        commit: bool = True,
    ) -> Tuple[str, RefreshToken]:
        """
        Sign a refresh token and persist its record

        Passing an existing family id continues that rotation chain; only the
        rotation path does that.

        Args:
            db: Database session
            principal_id: Owner
            family_id: Rotation chain root
            epoch: Principal epoch at issue
            fingerprint: Device fingerprint the token is bound to
            device_info: Descriptor
            ip_address: Network origin
            commit: When False the record is only flushed into the current transaction

        Returns:
            (token string, record)
        """
        token = create_refresh_token({"sub": principal_id}, family_id=family_id, epoch=epoch)
        payload = decode_token(token) or {}
        token_jti = payload.get("jti")
        exp = payload.get("exp")
        if not token_jti or not exp:
            raise RuntimeError("Failed to generate refresh token")

        now = utcnow()
        record = RefreshToken(
            principal_id=principal_id,
            token=token,
            token_jti=token_jti,
            epoch_at_issue=epoch,
            family_id=family_id,
            device_fingerprint=fingerprint,
            device_info=device_info,
            ip_address=normalize_ip(ip_address) if ip_address else None,
            expires_at=from_timestamp(exp),
            last_used_at=now,
            created_at=now,
            revoked=False,
        )
        db.add(record)
        if commit:
            db.commit()
        else:
            db.flush()
        TOKENS_ISSUED.labels("refresh").inc()
        return token, record

    def issue_pair(
        self,
        db: Session,
        principal_id: str,
        email: str,
        name: str,
        device_descriptor: Optional[str] = None,
        network_origin: Optional[str] = None,
        fingerprint: Optional[str] = None,
    ) -> TokenPair:
        """
        Issue a fresh login: new access token plus the first link of a new rotation family

        Args:
            db: Database session
            principal_id: Principal id
            email: Principal email
            name: Principal display name
            device_descriptor: User-Agent or similar
            network_origin: Client IP
            fingerprint: Precomputed fingerprint, derived from the descriptor when omitted

        Returns:
            TokenPair
        """
        principal = db.get(Principal, principal_id)
        epoch = principal.epoch if principal and principal.epoch else 1
        family_id = generate_family_id()
        refresh_token, _ = self.issue_refresh_token(
            db,
            principal_id,
            family_id=family_id,
            epoch=epoch,
            fingerprint=fingerprint or generate_device_fingerprint(device_descriptor),
            device_info=device_descriptor,
            ip_address=network_origin,
        )
        access_token = self.issue_access_token(
            PrincipalClaims(principal_id=principal_id, email=email, name=name or "")
        )
        logger.info("Issued new session for principal %s", principal_id)
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    def verify_access_token(self, token: str) -> PrincipalClaims:
        """
        Verify an access token cryptographically and against the deny-list

        Raises:
            ExpiredCredentialError: Signature valid but lifetime elapsed
            InvalidCredentialError: Anything else
        """
        payload = decode_access_token(token)
        if not payload:
            if access_token_expired(token):
                raise ExpiredCredentialError("Access token has expired")
            raise InvalidCredentialError("Invalid access token")

        jti = payload.get("jti")
        if jti and self._deny_list.contains(jti):
            raise InvalidCredentialError("Access token has been revoked")

        try:
            claims = AccessTokenClaims(**payload)
        except ValueError:
            raise InvalidCredentialError("Malformed access token")
        return normalize_identity(claims)

    @staticmethod
    def verify_refresh_token(db: Session, token: str) -> PrincipalClaims:
        """
        Validate a refresh token without rotating it

        Updates last_used_at on success.

        Raises:
            InvalidCredentialError, ExpiredCredentialError, SessionInvalidatedError
        """
        payload = decode_token(token, verify_exp=False)
        if not payload or payload.get("typ") != REFRESH_TOKEN_TYPE or not payload.get("jti"):
            raise InvalidCredentialError("Invalid refresh token")

        record = (
            db.query(RefreshToken)
            .filter(RefreshToken.token_jti == payload["jti"], RefreshToken.revoked == False)  # noqa: E712
            .first()
        )
        if not record or record.token != token:
            raise InvalidCredentialError("Refresh token not found or has been revoked")
        if record.replaced_by_token:
            raise InvalidCredentialError("Refresh token has already been rotated")

        now = utcnow()
        exp = payload.get("exp")
        if (exp and from_timestamp(exp) <= now) or naive_utc(record.expires_at) <= now:
            raise ExpiredCredentialError("Refresh token has expired")
        if payload.get("ver") != record.epoch_at_issue:
            raise InvalidCredentialError("Invalid token version")

        principal = db.get(Principal, record.principal_id)
        if not principal:
            raise InvalidCredentialError("Refresh token owner not found")
        if record.epoch_at_issue < principal.epoch:
            raise SessionInvalidatedError()

        record.last_used_at = now
        db.commit()
        return PrincipalClaims(principal_id=principal.id, email=principal.email, name=principal.name or "")


token_service = TokenService()
