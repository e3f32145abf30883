"""Trusted device registry, keyed by (principal, fingerprint)."""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sessionguard.core.device import generate_device_fingerprint, mask_fingerprint, normalize_ip, parse_user_agent
from sessionguard.core.security import utcnow
from sessionguard.models.security import TrustedDevice

logger = logging.getLogger(__name__)


class DeviceTrustService:
    """Owner-scoped trust entries. Presence of an entry means the device is trusted."""

    @staticmethod
    def get(db: Session, principal_id: str, fingerprint: str) -> Optional[TrustedDevice]:
        return (
            db.query(TrustedDevice)
            .filter(
                TrustedDevice.principal_id == principal_id,
                TrustedDevice.device_fingerprint == fingerprint,
            )
            .first()
        )

    @staticmethod
    def upsert_trust(
        db: Session,
        principal_id: str,
        fingerprint: str,
        *,
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> TrustedDevice:
        """
        Create or refresh the trust entry for one fingerprint

        Args:
            db: Database session
            principal_id: Owner
            fingerprint: Device fingerprint
            device_info: Descriptor used for display labels on creation
            ip_address: Last seen origin

        Returns:
            The trust entry
        """
        ip = normalize_ip(ip_address)
        now = utcnow()
        entry = DeviceTrustService.get(db, principal_id, fingerprint)
        if entry:
            entry.last_ip_address = ip
            entry.last_used_at = now
            db.commit()
            return entry

        labels = parse_user_agent(device_info)
        entry = TrustedDevice(
            principal_id=principal_id,
            device_fingerprint=fingerprint,
            device_name=labels.device_name,
            browser=labels.browser,
            os=labels.os,
            last_ip_address=ip,
            last_used_at=now,
            created_at=now,
        )
        db.add(entry)
        try:
            db.commit()
        except IntegrityError:
            # A concurrent request created the same (principal, fingerprint) entry.
            db.rollback()
            entry = DeviceTrustService.get(db, principal_id, fingerprint)
            entry.last_ip_address = ip
            entry.last_used_at = now
            db.commit()
            return entry

        db.refresh(entry)
        logger.info("Trusted device %s for principal %s", mask_fingerprint(fingerprint), principal_id)
        return entry

    @staticmethod
    def trust_current_device(
        db: Session,
        principal_id: str,
        device_info: Optional[str],
        ip_address: Optional[str],
    ) -> TrustedDevice:
        fingerprint = generate_device_fingerprint(device_info)
        return DeviceTrustService.upsert_trust(
            db, principal_id, fingerprint, device_info=device_info, ip_address=ip_address
        )

    @staticmethod
    def is_trusted(db: Session, principal_id: str, fingerprint: str) -> bool:
        return DeviceTrustService.get(db, principal_id, fingerprint) is not None

    @staticmethod
    def touch(db: Session, principal_id: str, fingerprint: str, ip_address: Optional[str]) -> bool:
        entry = DeviceTrustService.get(db, principal_id, fingerprint)
        if not entry:
            return False
        entry.last_used_at = utcnow()
        entry.last_ip_address = normalize_ip(ip_address)
        db.commit()
        return True

    @staticmethod
    def remove(db: Session, principal_id: str, fingerprint: str) -> bool:
        deleted = (
            db.query(TrustedDevice)
            .filter(
                TrustedDevice.principal_id == principal_id,
                TrustedDevice.device_fingerprint == fingerprint,
            )
            .delete(synchronize_session=False)
        )
        db.commit()
        return deleted > 0

    @staticmethod
    def remove_by_id(db: Session, principal_id: str, device_id: int) -> bool:
        deleted = (
            db.query(TrustedDevice)
            .filter(TrustedDevice.id == device_id, TrustedDevice.principal_id == principal_id)
            .delete(synchronize_session=False)
        )
        db.commit()
        return deleted > 0

    @staticmethod
    def list_devices(db: Session, principal_id: str) -> List[TrustedDevice]:
        return (
            db.query(TrustedDevice)
            .filter(TrustedDevice.principal_id == principal_id)
            .order_by(TrustedDevice.last_used_at.desc(), TrustedDevice.id.desc())
            .all()
        )


device_trust_service = DeviceTrustService()
