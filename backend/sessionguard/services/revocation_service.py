"""Refresh token revocation: single token, rotation family, or every session of a principal."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from sessionguard.core.deny_list import AccessDenyList, access_deny_list
from sessionguard.core.device import generate_device_fingerprint, normalize_ip, parse_user_agent
from sessionguard.core.exceptions import ResourceNotFoundError
from sessionguard.core.security import (
    REFRESH_TOKEN_TYPE,
    decode_access_token,
    decode_token,
    from_timestamp,
    utcnow,
)
from sessionguard.models.principal import Principal
from sessionguard.models.security import RefreshToken, TrustedDevice

logger = logging.getLogger(__name__)


class RevocationService:
    """Revoke refresh tokens and deny-list access tokens."""

    def __init__(self, deny_list: Optional[AccessDenyList] = None) -> None:
        self._deny_list = deny_list if deny_list is not None else access_deny_list

    @staticmethod
    def revoke_single(db: Session, token: str) -> bool:
        """Flag exactly one refresh token record. Expired tokens can still be revoked."""
        payload = decode_token(token, verify_exp=False)
        if not payload or payload.get("typ") != REFRESH_TOKEN_TYPE:
            return False
        token_jti = payload.get("jti")
        if not token_jti:
            return False
        record = db.query(RefreshToken).filter(RefreshToken.token_jti == token_jti).first()
        if not record or record.token != token:
            return False
        if not record.revoked:
            record.revoked = True
            record.revoked_at = utcnow()
            db.commit()
        return True

    @staticmethod
    def revoke_family(db: Session, family_id: str) -> int:
        """Flag every non-revoked record of one rotation chain."""
        revoked = (
            db.query(RefreshToken)
            .filter(RefreshToken.family_id == family_id, RefreshToken.revoked == False)  # noqa: E712
            .update(
                {RefreshToken.revoked: True, RefreshToken.revoked_at: utcnow()},
                synchronize_session=False,
            )
        )
        db.commit()
        return revoked

    @staticmethod
    def revoke_all_for_principal(db: Session, principal_id: str) -> int:
        """
        Bump the principal's epoch and bulk-revoke every outstanding refresh token

        Both writes share one transaction. The epoch bump alone already
        invalidates older tokens; the bulk revoke makes that visible to anything
        reading only the revoked flag.

        Returns:
            The new epoch
        """
        bumped = (
            db.query(Principal)
            .filter(Principal.id == principal_id)
            .update({Principal.epoch: Principal.epoch + 1}, synchronize_session=False)
        )
        if not bumped:
            db.rollback()
            raise ResourceNotFoundError("Principal")

        db.query(RefreshToken).filter(
            RefreshToken.principal_id == principal_id,
            RefreshToken.revoked == False,  # noqa: E712
        ).update(
            {RefreshToken.revoked: True, RefreshToken.revoked_at: utcnow()},
            synchronize_session=False,
        )
        db.commit()

        epoch = db.query(Principal.epoch).filter(Principal.id == principal_id).scalar()
        logger.warning("SECURITY: All sessions revoked for principal %s (epoch=%s)", principal_id, epoch)
        return epoch

    def blacklist_access(self, token: str) -> bool:
        """
        Refuse an access token for the rest of its lifetime

        Returns:
            False when the token is already invalid or expired and needs no entry
        """
        payload = decode_access_token(token)
        if not payload or not payload.get("jti") or not payload.get("exp"):
            return False
        ttl = int((from_timestamp(payload["exp"]) - utcnow()).total_seconds()) + 1
        if ttl <= 0:
            return False
        return self._deny_list.add(payload["jti"], ttl)

    @staticmethod
    def list_devices(db: Session, principal_id: str) -> List[Dict[str, Any]]:
        """Current head of every live rotation chain, one per signed-in device, most recent first."""
        records = (
            db.query(RefreshToken)
            .filter(
                RefreshToken.principal_id == principal_id,
                RefreshToken.revoked == False,  # noqa: E712
                RefreshToken.replaced_by_token.is_(None),
                RefreshToken.expires_at > utcnow(),
            )
            .order_by(RefreshToken.last_used_at.desc(), RefreshToken.id.desc())
            .all()
        )
        trusted = {
            fingerprint
            for (fingerprint,) in db.query(TrustedDevice.device_fingerprint)
            .filter(TrustedDevice.principal_id == principal_id)
            .all()
        }

        devices = []
        for record in records:
            labels = parse_user_agent(record.device_info)
            fingerprint = record.device_fingerprint or generate_device_fingerprint(record.device_info)
            devices.append({
                "id": record.id,
                "device_info": record.device_info,
                "ip_address": normalize_ip(record.ip_address),
                "browser": labels.browser,
                "os": labels.os,
                "device_name": labels.device_name,
                "is_trusted_device": fingerprint in trusted,
                "last_used_at": record.last_used_at,
                "created_at": record.created_at,
            })
        return devices

    @staticmethod
    def revoke_device(db: Session, principal_id: str, token_id: int) -> bool:
        """Sign one device out by revoking the whole chain its token belongs to."""
        record = (
            db.query(RefreshToken)
            .filter(RefreshToken.id == token_id, RefreshToken.principal_id == principal_id)
            .first()
        )
        if not record:
            return False
        RevocationService.revoke_family(db, record.family_id)
        return True

    @staticmethod
    def cleanup_expired_tokens(db: Session) -> int:
        deleted = (
            db.query(RefreshToken)
            .filter(RefreshToken.expires_at < utcnow())
            .delete(synchronize_session=False)
        )
        db.commit()
        return deleted


revocation_service = RevocationService()
