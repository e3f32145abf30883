"""Security event classification, alerts and login history."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from sessionguard.config import settings
from sessionguard.core.device import generate_device_fingerprint, normalize_ip, parse_user_agent
from sessionguard.core.metrics import SECURITY_ALERTS
from sessionguard.core.security import utcnow
from sessionguard.models.audit import LoginEvent
from sessionguard.models.security import SecurityAlert
from sessionguard.services.device_trust_service import device_trust_service

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    LOGIN = "login"
    TOKEN_REFRESH = "token_refresh"
    NEW_DEVICE = "new_device"
    NEW_ORIGIN = "new_origin"


class AlertType(str, Enum):
    NEW_DEVICE = "new_device"
    NEW_LOCATION = "new_location"
    POSSIBLE_REUSE = "possible_reuse"
    DEVICE_MISMATCH = "device_mismatch"


@dataclass(frozen=True)
class AuthEventOutcome:
    is_new_device: bool
    is_trusted: bool
    is_new_origin: bool = False
    event_type: Optional[str] = None
    alert_type: Optional[str] = None


class SecurityEventService:
    """Classify auth events, raise alerts and keep the login audit trail."""

    @staticmethod
    def record_login_event(
        db: Session,
        *,
        principal_id: str,
        ip_address: Optional[str],
        device_info: Optional[str],
        event_type: str,
        is_trusted: Optional[bool] = None,
    ) -> LoginEvent:
        fingerprint = generate_device_fingerprint(device_info)
        labels = parse_user_agent(device_info)
        if is_trusted is None:
            is_trusted = device_trust_service.is_trusted(db, principal_id, fingerprint)

        event = LoginEvent(
            principal_id=principal_id,
            ip_address=normalize_ip(ip_address),
            device_info=device_info,
            device_fingerprint=fingerprint,
            browser=labels.browser,
            os=labels.os,
            is_trusted_device=is_trusted,
            event_type=event_type,
            created_at=utcnow(),
        )
        db.add(event)
        db.commit()
        db.refresh(event)
        return event

    @staticmethod
    def create_alert(
        db: Session,
        *,
        principal_id: str,
        alert_type: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SecurityAlert:
        alert_type = AlertType(alert_type).value
        alert = SecurityAlert(
            principal_id=principal_id,
            alert_type=alert_type,
            message=message,
            metadata_json=json.dumps(metadata or {}, ensure_ascii=False),
            created_at=utcnow(),
        )
        db.add(alert)
        db.commit()
        db.refresh(alert)
        SECURITY_ALERTS.labels(alert_type).inc()
        logger.info("Security alert %s raised for principal %s", alert_type, principal_id)
        return alert

    @staticmethod
    def observe(
        db: Session,
        principal_id: str,
        origin: Optional[str],
        descriptor: Optional[str],
        event_kind: str = EventKind.LOGIN.value,
    ) -> AuthEventOutcome:
        """
        Classify one login or silent rotation and raise at most one alert

        Trusted devices only get their entry touched; explicit logins on them are
        still logged, routine refreshes are not. Untrusted devices are logged
        with a classified event type and raise either a new-device or a
        new-location alert, never both.

        Args:
            db: Database session
            principal_id: Principal the event belongs to
            origin: Network origin (IP)
            descriptor: Device descriptor (User-Agent)
            event_kind: login | token_refresh

        Returns:
            AuthEventOutcome
        """
        event_kind = EventKind(event_kind).value
        ip = normalize_ip(origin)
        fingerprint = generate_device_fingerprint(descriptor)
        labels = parse_user_agent(descriptor)

        if device_trust_service.touch(db, principal_id, fingerprint, ip):
            event_type = None
            if event_kind == EventKind.LOGIN.value:
                SecurityEventService.record_login_event(
                    db,
                    principal_id=principal_id,
                    ip_address=ip,
                    device_info=descriptor,
                    event_type=event_kind,
                    is_trusted=True,
                )
                event_type = event_kind
            return AuthEventOutcome(is_new_device=False, is_trusted=True, event_type=event_type)

        seen_device = (
            db.query(LoginEvent.id)
            .filter(LoginEvent.principal_id == principal_id, LoginEvent.device_fingerprint == fingerprint)
            .first()
        )
        seen_origin = (
            db.query(LoginEvent.id)
            .filter(LoginEvent.principal_id == principal_id, LoginEvent.ip_address == ip)
            .first()
        )
        is_new_device = seen_device is None
        is_new_origin = seen_origin is None

        if is_new_device:
            event_type = EventKind.NEW_DEVICE.value
        elif is_new_origin:
            event_type = EventKind.NEW_ORIGIN.value
        else:
            event_type = event_kind

        SecurityEventService.record_login_event(
            db,
            principal_id=principal_id,
            ip_address=ip,
            device_info=descriptor,
            event_type=event_type,
            is_trusted=False,
        )

        metadata = {"ip": ip, "browser": labels.browser, "os": labels.os, "device_name": labels.device_name}
        alert_type = None
        if is_new_device:
            alert_type = AlertType.NEW_DEVICE.value
            SecurityEventService.create_alert(
                db,
                principal_id=principal_id,
                alert_type=alert_type,
                message=f"New device detected: {labels.device_name}",
                metadata=metadata,
            )
        elif is_new_origin:
            alert_type = AlertType.NEW_LOCATION.value
            SecurityEventService.create_alert(
                db,
                principal_id=principal_id,
                alert_type=alert_type,
                message=f"Sign-in from a new network location: {ip}",
                metadata=metadata,
            )

        return AuthEventOutcome(
            is_new_device=is_new_device,
            is_trusted=False,
            is_new_origin=is_new_origin,
            event_type=event_type,
            alert_type=alert_type,
        )

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    @staticmethod
    def list_alerts(
        db: Session,
        principal_id: str,
        include_read: bool = False,
        limit: Optional[int] = None,
    ) -> List[SecurityAlert]:
        query = db.query(SecurityAlert).filter(
            SecurityAlert.principal_id == principal_id,
            SecurityAlert.is_dismissed == False,  # noqa: E712
        )
        if not include_read:
            query = query.filter(SecurityAlert.is_read == False)  # noqa: E712
        return (
            query.order_by(SecurityAlert.created_at.desc(), SecurityAlert.id.desc())
            .limit(limit or settings.ALERT_LIST_LIMIT)
            .all()
        )

    @staticmethod
    def unread_count(db: Session, principal_id: str) -> int:
        return (
            db.query(SecurityAlert)
            .filter(
                SecurityAlert.principal_id == principal_id,
                SecurityAlert.is_read == False,  # noqa: E712
                SecurityAlert.is_dismissed == False,  # noqa: E712
            )
            .count()
        )

    @staticmethod
    def mark_read(db: Session, principal_id: str, alert_ids: Sequence[int]) -> int:
        if not alert_ids:
            return 0
        updated = (
            db.query(SecurityAlert)
            .filter(SecurityAlert.principal_id == principal_id, SecurityAlert.id.in_(list(alert_ids)))
            .update({SecurityAlert.is_read: True}, synchronize_session=False)
        )
        db.commit()
        return updated

    @staticmethod
    def dismiss(db: Session, principal_id: str, alert_id: int) -> bool:
        updated = (
            db.query(SecurityAlert)
            .filter(SecurityAlert.principal_id == principal_id, SecurityAlert.id == alert_id)
            .update({SecurityAlert.is_dismissed: True}, synchronize_session=False)
        )
        db.commit()
        return updated > 0

    @staticmethod
    def alert_to_dict(alert: SecurityAlert) -> Dict[str, Any]:
        try:
            metadata = json.loads(alert.metadata_json) if alert.metadata_json else {}
        except json.JSONDecodeError:
            metadata = {}
        return {
            "id": alert.id,
            "alert_type": alert.alert_type,
            "message": alert.message,
            "metadata": metadata,
            "is_read": alert.is_read,
            "is_dismissed": alert.is_dismissed,
            "created_at": alert.created_at,
        }

    # ------------------------------------------------------------------
    # Login history
    # ------------------------------------------------------------------

    @staticmethod
    def login_history(db: Session, principal_id: str, limit: int = 50, offset: int = 0) -> List[LoginEvent]:
        return (
            db.query(LoginEvent)
            .filter(LoginEvent.principal_id == principal_id)
            .order_by(LoginEvent.created_at.desc(), LoginEvent.id.desc())
            .offset(max(0, offset))
            .limit(max(1, limit))
            .all()
        )

    @staticmethod
    def login_history_count(db: Session, principal_id: str) -> int:
        return db.query(LoginEvent).filter(LoginEvent.principal_id == principal_id).count()

    @staticmethod
    def latest_event_for_fingerprint(db: Session, principal_id: str, fingerprint: str) -> Optional[LoginEvent]:
        return (
            db.query(LoginEvent)
            .filter(LoginEvent.principal_id == principal_id, LoginEvent.device_fingerprint == fingerprint)
            .order_by(LoginEvent.created_at.desc(), LoginEvent.id.desc())
            .first()
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    @staticmethod
    def cleanup_old_history(db: Session, days: Optional[int] = None) -> int:
        cutoff = utcnow() - timedelta(days=days or settings.LOGIN_HISTORY_RETENTION_DAYS)
        deleted = db.query(LoginEvent).filter(LoginEvent.created_at < cutoff).delete(synchronize_session=False)
        db.commit()
        return deleted

    @staticmethod
    def cleanup_old_alerts(db: Session, days: Optional[int] = None) -> int:
        cutoff = utcnow() - timedelta(days=days or settings.DISMISSED_ALERT_RETENTION_DAYS)
        deleted = (
            db.query(SecurityAlert)
            .filter(SecurityAlert.is_dismissed == True, SecurityAlert.created_at < cutoff)  # noqa: E712
            .delete(synchronize_session=False)
        )
        db.commit()
        return deleted


security_event_service = SecurityEventService()
