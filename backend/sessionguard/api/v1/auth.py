"""Session routes: explicit refresh, logout, device sessions"""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session
from typing import List

from sessionguard.core.database import get_db
from sessionguard.config import settings
from sessionguard.core.device import generate_device_fingerprint
from sessionguard.core.exceptions import AuthRequiredError, RateLimitExceededError, ResourceNotFoundError
from sessionguard.schemas.auth import (
    LogoutResponse,
    PrincipalClaims,
    RevokeAllResponse,
    TokenPairResponse,
)
from sessionguard.schemas.response import APIResponse
from sessionguard.schemas.security import ActiveDeviceResponse
from sessionguard.services.rate_limiter import refresh_rate_limiter
from sessionguard.services.revocation_service import revocation_service
from sessionguard.services.rotation_service import rotation_service
from sessionguard.api.deps import REFRESH_TOKEN_HEADER, bearer_token, get_current_principal, request_origin

router = APIRouter()


@router.post("/refresh", response_model=TokenPairResponse)
def refresh_tokens(
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Rotate the refresh token carried in X-Refresh-Token

    The presented refresh token is dead once this returns.
    """
    refresh_token = request.headers.get(REFRESH_TOKEN_HEADER)
    if not refresh_token:
        raise AuthRequiredError("Refresh token required")

    origin = request_origin(request)
    retry_after = refresh_rate_limiter.hit(
        origin,
        [
            (settings.REFRESH_RATE_LIMIT_PER_MINUTE, 60),
            (settings.REFRESH_RATE_LIMIT_PER_HOUR, 3600),
        ],
    )
    if retry_after is not None:
        raise RateLimitExceededError("Too many refresh attempts. Please slow down.", retry_after=retry_after)

    user_agent = request.headers.get("User-Agent")
    pair = rotation_service.rotate(
        db,
        refresh_token,
        device_descriptor=user_agent,
        network_origin=origin,
        request_fingerprint=generate_device_fingerprint(user_agent),
    ).unwrap()

    return TokenPairResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type="bearer",
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.post("/logout", response_model=LogoutResponse, status_code=status.HTTP_200_OK)
def logout(
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Revoke the presented refresh token and deny-list the presented access token
    """
    refresh_token = request.headers.get(REFRESH_TOKEN_HEADER)
    access_token = bearer_token(request.headers.get("Authorization"))

    refresh_revoked = revocation_service.revoke_single(db, refresh_token) if refresh_token else False
    access_revoked = revocation_service.blacklist_access(access_token) if access_token else False

    return LogoutResponse(
        message="Logged out successfully",
        refresh_token_revoked=refresh_revoked,
        access_token_revoked=access_revoked,
    )


@router.post("/logout-all", response_model=RevokeAllResponse)
def logout_all(
    request: Request,
    current_principal: PrincipalClaims = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """
    Sign out everywhere: bump the epoch so every refresh token dies
    """
    epoch = revocation_service.revoke_all_for_principal(db, current_principal.principal_id)
    access_token = bearer_token(request.headers.get("Authorization"))
    if access_token:
        revocation_service.blacklist_access(access_token)
    return RevokeAllResponse(
        message="All sessions have been revoked. You will need to sign in again on all devices.",
        epoch=epoch,
    )


@router.get("/devices", response_model=List[ActiveDeviceResponse])
def list_my_devices(
    current_principal: PrincipalClaims = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """
    Signed-in devices, most recently used first
    """
    return revocation_service.list_devices(db, current_principal.principal_id)


@router.delete("/devices/{token_id}", response_model=APIResponse)
def revoke_device(
    token_id: int,
    current_principal: PrincipalClaims = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """
    Sign one device out (revokes its whole rotation chain)
    """
    if not revocation_service.revoke_device(db, current_principal.principal_id, token_id):
        raise ResourceNotFoundError("Device session")
    return APIResponse(message="Device logged out successfully")
