"""Refresh token rotation with reuse (theft) detection and device binding.

``rotate()`` never raises for protocol outcomes. It returns a
``RotationResult`` carrying either the new ``TokenPair`` or a
``RotationFailure`` kind; ``unwrap()`` turns a failure into the matching
``AuthenticationError`` subclass for callers that want to raise.

Rotation states a stored record can be in:

* head: not revoked, no successor. Presenting it performs a rotation.
* rotated: successor set, not revoked. Presenting it again within the grace
  window resolves to the existing successor; afterwards it is reuse.
* revoked: presenting it is reuse.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Dict, Iterator, Optional, Type

from sqlalchemy.orm import Session

from sessionguard.config import settings
from sessionguard.core.device import mask_fingerprint
from sessionguard.core.exceptions import (
    AuthenticationError,
    DeviceMismatchError,
    ExpiredCredentialError,
    InvalidCredentialError,
    SessionInvalidatedError,
    TokenReuseDetectedError,
)
from sessionguard.core.metrics import ROTATION_OUTCOMES
from sessionguard.core.security import REFRESH_TOKEN_TYPE, decode_token, from_timestamp, naive_utc, utcnow
from sessionguard.models.principal import Principal
from sessionguard.models.security import RefreshToken
from sessionguard.schemas.auth import PrincipalClaims
from sessionguard.services.revocation_service import RevocationService, revocation_service
from sessionguard.services.security_event_service import AlertType
from sessionguard.services.security_event_worker import SecurityEventWorker, security_event_worker
from sessionguard.services.token_service import TokenPair, TokenService, token_service

logger = logging.getLogger(__name__)


class RotationFailure(str, Enum):
    INVALID_CREDENTIAL = "invalid_credential"
    EXPIRED_CREDENTIAL = "expired_credential"
    SESSION_INVALIDATED = "session_invalidated"
    TOKEN_REUSE_DETECTED = "token_reuse_detected"
    DEVICE_MISMATCH = "device_mismatch"


_FAILURE_ERRORS: Dict[RotationFailure, Type[AuthenticationError]] = {
    RotationFailure.INVALID_CREDENTIAL: InvalidCredentialError,
    RotationFailure.EXPIRED_CREDENTIAL: ExpiredCredentialError,
    RotationFailure.SESSION_INVALIDATED: SessionInvalidatedError,
    RotationFailure.TOKEN_REUSE_DETECTED: TokenReuseDetectedError,
    RotationFailure.DEVICE_MISMATCH: DeviceMismatchError,
}


@dataclass(frozen=True)
class RotationResult:
    pair: Optional[TokenPair] = None
    principal: Optional[PrincipalClaims] = None
    failure: Optional[RotationFailure] = None
    reason: str = ""
    # True when a duplicate presentation resolved to the existing successor.
    via_grace: bool = False

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, pair: TokenPair, principal: PrincipalClaims, via_grace: bool = False) -> "RotationResult":
        return cls(pair=pair, principal=principal, via_grace=via_grace)

    @classmethod
    def failed(cls, failure: RotationFailure, reason: str) -> "RotationResult":
        return cls(failure=failure, reason=reason)

    def to_exception(self) -> AuthenticationError:
        error_cls = _FAILURE_ERRORS[self.failure]
        if error_cls in (InvalidCredentialError, ExpiredCredentialError):
            return error_cls(self.reason)
        return error_cls()

    def unwrap(self) -> TokenPair:
        if self.failure is not None:
            raise self.to_exception()
        return self.pair


class _StripedLocks:
    """Fixed pool of locks; a key always maps to the same lock."""

    def __init__(self, stripes: int = 64) -> None:
        self._locks = [threading.Lock() for _ in range(stripes)]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        index = int(hashlib.sha1(key.encode("utf-8")).hexdigest(), 16) % len(self._locks)
        with self._locks[index]:
            yield


class RotationService:
    """Validate a presented refresh token and advance its rotation chain."""

    def __init__(
        self,
        tokens: Optional[TokenService] = None,
        revocation: Optional[RevocationService] = None,
        events: Optional[SecurityEventWorker] = None,
    ) -> None:
        self._tokens = tokens or token_service
        self._revocation = revocation or revocation_service
        self._events = events or security_event_worker
        self._locks = _StripedLocks()

    @staticmethod
    def _grace_window() -> timedelta:
        return timedelta(seconds=settings.ROTATION_GRACE_SECONDS)

    def rotate(
        self,
        db: Session,
        old_refresh_token: str,
        device_descriptor: Optional[str] = None,
        network_origin: Optional[str] = None,
        request_fingerprint: Optional[str] = None,
    ) -> RotationResult:
        """
        Exchange a refresh token for a new access/refresh pair

        Args:
            db: Database session
            old_refresh_token: Presented refresh token
            device_descriptor: Request User-Agent
            network_origin: Request IP
            request_fingerprint: Fingerprint computed from the request

        Returns:
            RotationResult
        """
        result = self._rotate(db, old_refresh_token, device_descriptor, network_origin, request_fingerprint)
        outcome = "grace" if result.via_grace else (result.failure.value if result.failure else "rotated")
        ROTATION_OUTCOMES.labels(outcome).inc()
        return result

    def _rotate(
        self,
        db: Session,
        old_refresh_token: str,
        device_descriptor: Optional[str],
        network_origin: Optional[str],
        request_fingerprint: Optional[str],
    ) -> RotationResult:
        # 1. Signature and type. Expiry is judged in step 3.
        payload = decode_token(old_refresh_token, verify_exp=False) if old_refresh_token else None
        if not payload or payload.get("typ") != REFRESH_TOKEN_TYPE:
            return RotationResult.failed(RotationFailure.INVALID_CREDENTIAL, "Invalid refresh token")
        token_jti = payload.get("jti")
        if not token_jti or not payload.get("sub") or not payload.get("fam"):
            return RotationResult.failed(RotationFailure.INVALID_CREDENTIAL, "Malformed refresh token")

        with self._locks.hold(token_jti):
            # 2. Stored record. populate_existing discards anything this session
            # cached before another caller committed a rotation.
            record = (
                db.query(RefreshToken)
                .filter(RefreshToken.token_jti == token_jti)
                .populate_existing()
                .first()
            )
            if not record or record.token != old_refresh_token:
                return RotationResult.failed(RotationFailure.INVALID_CREDENTIAL, "Refresh token not found")

            # 3. Expiry.
            now = utcnow()
            exp = payload.get("exp")
            if (exp and from_timestamp(exp) <= now) or naive_utc(record.expires_at) <= now:
                return RotationResult.failed(RotationFailure.EXPIRED_CREDENTIAL, "Refresh token has expired")

            principal = db.query(Principal).filter(Principal.id == record.principal_id).populate_existing().first()
            if not principal:
                return RotationResult.failed(RotationFailure.INVALID_CREDENTIAL, "Refresh token owner not found")

            # 4. Global revocation outranks everything below.
            if record.epoch_at_issue < principal.epoch:
                logger.warning(
                    "SECURITY: Refresh token epoch is outdated (global revocation) principal=%s token_epoch=%s epoch=%s",
                    principal.id,
                    record.epoch_at_issue,
                    principal.epoch,
                )
                if not record.revoked:
                    record.revoked = True
                    record.revoked_at = now
                    db.commit()
                return RotationResult.failed(RotationFailure.SESSION_INVALIDATED, "Session has been invalidated")

            # 5. Reuse: already rotated or revoked.
            if record.revoked or record.replaced_by_token:
                return self._handle_reuse(db, record, principal, device_descriptor, network_origin)

            # 6. Device binding.
            if (
                record.device_fingerprint
                and request_fingerprint
                and record.device_fingerprint != request_fingerprint
            ):
                logger.warning(
                    "SECURITY: Device fingerprint mismatch on refresh token principal=%s expected=%s received=%s",
                    principal.id,
                    mask_fingerprint(record.device_fingerprint),
                    mask_fingerprint(request_fingerprint),
                )
                self._revocation.revoke_family(db, record.family_id)
                self._events.submit_alert(
                    principal.id,
                    AlertType.DEVICE_MISMATCH.value,
                    "A refresh token was used from a different device than it was issued to. "
                    "The session has been revoked for your safety.",
                    {"ip": network_origin or "unknown", "device": device_descriptor or "unknown"},
                )
                return RotationResult.failed(RotationFailure.DEVICE_MISMATCH, "Device mismatch")

            # 7. Rotate within the same family, same fingerprint, same epoch.
            return self._advance_chain(
                db, record, principal, device_descriptor, network_origin, request_fingerprint
            )

    def _advance_chain(
        self,
        db: Session,
        record: RefreshToken,
        principal: Principal,
        device_descriptor: Optional[str],
        network_origin: Optional[str],
        request_fingerprint: Optional[str],
    ) -> RotationResult:
        new_token, new_record = self._tokens.issue_refresh_token(
            db,
            principal.id,
            family_id=record.family_id,
            epoch=record.epoch_at_issue,
            fingerprint=record.device_fingerprint or request_fingerprint,
            device_info=device_descriptor or record.device_info,
            ip_address=network_origin or record.ip_address,
            commit=False,
        )
        now = utcnow()
        # Conditional write: only a caller that still sees the record as the
        # chain head may attach a successor. Guards against other processes.
        claimed = (
            db.query(RefreshToken)
            .filter(
                RefreshToken.id == record.id,
                RefreshToken.replaced_by_token.is_(None),
                RefreshToken.revoked == False,  # noqa: E712
            )
            .update(
                {
                    RefreshToken.replaced_by_token: new_token,
                    RefreshToken.replaced_by_jti: new_record.token_jti,
                    RefreshToken.rotated_at: now,
                    RefreshToken.last_used_at: now,
                },
                synchronize_session=False,
            )
        )
        if claimed != 1:
            db.rollback()
            logger.info("Concurrent rotation lost for principal %s; re-evaluating as duplicate", principal.id)
            db.refresh(record)
            db.refresh(principal)
            return self._handle_reuse(db, record, principal, device_descriptor, network_origin)

        db.commit()
        claims = self._claims_for(principal)
        access_token = self._tokens.issue_access_token(claims)
        return RotationResult.success(TokenPair(access_token=access_token, refresh_token=new_token), claims)

    def _handle_reuse(
        self,
        db: Session,
        record: RefreshToken,
        principal: Principal,
        device_descriptor: Optional[str],
        network_origin: Optional[str],
    ) -> RotationResult:
        grace = self._grace_pair(db, record, principal)
        if grace is not None:
            return grace

        logger.warning(
            "SECURITY: Refresh token reuse detected, possible session hijacking principal=%s token_id=%s ip=%s",
            principal.id,
            record.id,
            network_origin or "unknown",
        )
        self._revocation.revoke_family(db, record.family_id)
        self._events.submit_alert(
            principal.id,
            AlertType.POSSIBLE_REUSE.value,
            "Possible session hijacking detected. A previously used refresh token was presented again. "
            "All sessions in this login chain have been revoked for your safety.",
            {"ip": network_origin or "unknown", "device": device_descriptor or "unknown"},
        )
        return RotationResult.failed(RotationFailure.TOKEN_REUSE_DETECTED, "Token reuse detected")

    def _grace_pair(self, db: Session, record: RefreshToken, principal: Principal) -> Optional[RotationResult]:
        """Existing successor pair for a duplicate presentation inside the grace window, if any."""
        if not record.replaced_by_jti or not record.rotated_at:
            return None
        now = utcnow()
        if now - naive_utc(record.rotated_at) >= self._grace_window():
            return None

        successor = (
            db.query(RefreshToken)
            .filter(
                RefreshToken.token_jti == record.replaced_by_jti,
                RefreshToken.revoked == False,  # noqa: E712
            )
            .first()
        )
        if not successor or naive_utc(successor.expires_at) <= now:
            return None

        claims = self._claims_for(principal)
        access_token = self._tokens.issue_access_token(claims)
        logger.info("Duplicate refresh within grace window for principal %s", principal.id)
        return RotationResult.success(
            TokenPair(access_token=access_token, refresh_token=successor.token),
            claims,
            via_grace=True,
        )

    @staticmethod
    def _claims_for(principal: Principal) -> PrincipalClaims:
        return PrincipalClaims(principal_id=principal.id, email=principal.email, name=principal.name or "")


rotation_service = RotationService()
