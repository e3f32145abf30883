"""API dependencies - per-request authentication with transparent token rotation"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional
import logging

from fastapi import Depends, Request, Response
from sqlalchemy.orm import Session

from sessionguard.config import settings
from sessionguard.core.database import get_db
from sessionguard.core.device import generate_device_fingerprint, normalize_ip
from sessionguard.core.exceptions import AuthenticationError, AuthRequiredError
from sessionguard.schemas.auth import PrincipalClaims
from sessionguard.services.rotation_service import RotationService, rotation_service
from sessionguard.services.security_event_service import EventKind
from sessionguard.services.security_event_worker import SecurityEventWorker, security_event_worker
from sessionguard.services.token_service import TokenPair, TokenService, token_service

logger = logging.getLogger(__name__)

REFRESH_TOKEN_HEADER = "X-Refresh-Token"
NEW_ACCESS_TOKEN_HEADER = "X-New-Access-Token"
NEW_REFRESH_TOKEN_HEADER = "X-New-Refresh-Token"


class AuthState(str, Enum):
    ACCESS_OK = "access_ok"
    ACCESS_EXPIRED_NO_REFRESH = "access_expired_no_refresh"
    ACCESS_EXPIRED_WITH_REFRESH = "access_expired_with_refresh"


@dataclass(frozen=True)
class AuthOutcome:
    state: AuthState
    principal: PrincipalClaims
    # Set only when the request was authenticated through a rotation.
    new_tokens: Optional[TokenPair] = None


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1]:
        return None
    return parts[1]


def request_origin(request: Request) -> str:
    """Client address, taken from X-Forwarded-For only when the peer is an allowed proxy."""
    client = getattr(request, "client", None)
    peer = normalize_ip(client.host if client else None)
    forwarded = request.headers.get("X-Forwarded-For")
    allowed = settings.FORWARDED_ALLOW_IPS
    if forwarded and ("*" in allowed or peer in allowed):
        return normalize_ip(forwarded.split(",")[0])
    return peer


class RequestAuthenticator:
    """Verify the access token, or rotate the refresh token when the access token is unusable."""

    def __init__(
        self,
        tokens: Optional[TokenService] = None,
        rotation: Optional[RotationService] = None,
        events: Optional[SecurityEventWorker] = None,
    ) -> None:
        self._tokens = tokens or token_service
        self._rotation = rotation or rotation_service
        self._events = events or security_event_worker

    def authenticate(
        self,
        db: Session,
        *,
        authorization: Optional[str],
        refresh_token: Optional[str],
        device_descriptor: Optional[str] = None,
        network_origin: Optional[str] = None,
    ) -> AuthOutcome:
        """
        Resolve the request's principal

        Raises:
            AuthRequiredError: No usable access token and no refresh token
            AuthenticationError: The rotation failure kind, when rotation was attempted
        """
        access_token = bearer_token(authorization)
        if access_token:
            try:
                principal = self._tokens.verify_access_token(access_token)
                return AuthOutcome(state=AuthState.ACCESS_OK, principal=principal)
            except AuthenticationError as exc:
                logger.debug("Access token rejected: %s", exc.message)

        if not refresh_token:
            raise AuthRequiredError("Access token missing or expired. Provide a refresh token or re-authenticate.")

        result = self._rotation.rotate(
            db,
            refresh_token,
            device_descriptor=device_descriptor,
            network_origin=network_origin,
            request_fingerprint=generate_device_fingerprint(device_descriptor),
        )
        if not result.ok:
            logger.info("Refresh token rotation failed: %s", result.failure.value)
            raise result.to_exception()

        principal = self._tokens.verify_access_token(result.pair.access_token)
        self._events.submit_observe(
            principal.principal_id, network_origin, device_descriptor, EventKind.TOKEN_REFRESH.value
        )
        return AuthOutcome(
            state=AuthState.ACCESS_EXPIRED_WITH_REFRESH,
            principal=principal,
            new_tokens=result.pair,
        )

    def authenticate_optional(self, db: Session, **kwargs) -> Optional[AuthOutcome]:
        """Same as authenticate(), but an anonymous caller yields None instead of an error."""
        try:
            return self.authenticate(db, **kwargs)
        except AuthenticationError as exc:
            logger.debug("Optional authentication left request anonymous: %s", exc.message)
            return None


request_authenticator = RequestAuthenticator()


def _authenticate_request(
    request: Request,
    response: Response,
    db: Session,
    optional: bool,
) -> Optional[AuthOutcome]:
    kwargs = dict(
        authorization=request.headers.get("Authorization"),
        refresh_token=request.headers.get(REFRESH_TOKEN_HEADER),
        device_descriptor=request.headers.get("User-Agent"),
        network_origin=request_origin(request),
    )
    if optional:
        outcome = request_authenticator.authenticate_optional(db, **kwargs)
    else:
        outcome = request_authenticator.authenticate(db, **kwargs)

    if outcome is not None and outcome.new_tokens is not None:
        # The presented refresh token is dead from here on.
        response.headers[NEW_ACCESS_TOKEN_HEADER] = outcome.new_tokens.access_token
        response.headers[NEW_REFRESH_TOKEN_HEADER] = outcome.new_tokens.refresh_token
    request.state.principal = outcome.principal if outcome else None
    return outcome


async def get_current_principal(
    request: Request,
    response: Response,
    db: Session = Depends(get_db)
) -> PrincipalClaims:
    """
    Get the authenticated principal, rotating tokens when the access token has expired

    Args:
        request: Incoming request (Authorization, X-Refresh-Token, User-Agent)
        response: Outgoing response; receives X-New-* headers on rotation
        db: Database session

    Returns:
        PrincipalClaims

    Raises:
        AuthenticationError: One of the authentication failure kinds
    """
    outcome = _authenticate_request(request, response, db, optional=False)
    return outcome.principal


async def get_optional_principal(
    request: Request,
    response: Response,
    db: Session = Depends(get_db)
) -> Optional[PrincipalClaims]:
    """
    Get the principal if the request carries usable credentials, None otherwise
    """
    outcome = _authenticate_request(request, response, db, optional=True)
    return outcome.principal if outcome else None
