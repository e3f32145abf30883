"""Session entry point for verified identities, plus the per-principal security overview."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from sessionguard.core.device import generate_device_fingerprint
from sessionguard.schemas.auth import IdentityProofClaims, PrincipalClaims, normalize_identity
from sessionguard.services.device_trust_service import device_trust_service
from sessionguard.services.principal_service import principal_service
from sessionguard.services.revocation_service import revocation_service
from sessionguard.services.security_event_service import EventKind, security_event_service
from sessionguard.services.security_event_worker import SecurityEventWorker, security_event_worker
from sessionguard.services.token_service import TokenPair, TokenService, token_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginResult:
    pair: TokenPair
    principal: PrincipalClaims


class SessionService:
    """Turns a verified identity into a fresh session."""

    def __init__(
        self,
        tokens: Optional[TokenService] = None,
        events: Optional[SecurityEventWorker] = None,
    ) -> None:
        self._tokens = tokens or token_service
        self._events = events or security_event_worker

    def login(
        self,
        db: Session,
        identity: IdentityProofClaims,
        device_descriptor: Optional[str] = None,
        network_origin: Optional[str] = None,
    ) -> LoginResult:
        """
        Issue a new session for an identity proven by an external step (OAuth, one-time code)

        Args:
            db: Database session
            identity: Verified identity
            device_descriptor: Request User-Agent
            network_origin: Request IP

        Returns:
            LoginResult
        """
        principal = principal_service.resolve(db, identity)
        claims = normalize_identity(identity, principal_id=principal.id)
        pair = self._tokens.issue_pair(
            db,
            claims.principal_id,
            claims.email,
            claims.name,
            device_descriptor=device_descriptor,
            network_origin=network_origin,
            fingerprint=generate_device_fingerprint(device_descriptor),
        )
        self._events.submit_observe(claims.principal_id, network_origin, device_descriptor, EventKind.LOGIN.value)
        return LoginResult(pair=pair, principal=claims)

    @staticmethod
    def security_overview(db: Session, principal_id: str, recent_logins: int = 20) -> Dict[str, Any]:
        """Active sessions, trusted devices, alerts and recent logins in one call."""
        return {
            "active_sessions": revocation_service.list_devices(db, principal_id),
            "trusted_devices": device_trust_service.list_devices(db, principal_id),
            "alerts": [
                security_event_service.alert_to_dict(alert)
                for alert in security_event_service.list_alerts(db, principal_id, include_read=True)
            ],
            "recent_logins": security_event_service.login_history(db, principal_id, limit=recent_logins),
            "unread_alert_count": security_event_service.unread_count(db, principal_id),
        }


session_service = SessionService()
