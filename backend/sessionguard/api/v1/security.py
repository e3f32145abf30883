"""Security dashboard routes: alerts, trusted devices, login history"""

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session
from typing import List

from sessionguard.core.database import get_db
from sessionguard.config import settings
from sessionguard.core.exceptions import ResourceNotFoundError
from sessionguard.schemas.auth import PrincipalClaims
from sessionguard.schemas.response import APIResponse
from sessionguard.schemas.security import (
    LoginEventResponse,
    LoginHistoryResponse,
    MarkAlertsReadRequest,
    SecurityAlertResponse,
    SecurityOverviewResponse,
    TrustByFingerprintRequest,
    TrustedDeviceResponse,
)
from sessionguard.services.device_trust_service import device_trust_service
from sessionguard.services.security_event_service import security_event_service
from sessionguard.services.session_service import session_service
from sessionguard.api.deps import get_current_principal, request_origin

router = APIRouter()


@router.get("/overview", response_model=SecurityOverviewResponse)
def get_security_overview(
    current_principal: PrincipalClaims = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """
    Sessions, trusted devices, alerts and recent logins in a single call
    """
    return session_service.security_overview(db, current_principal.principal_id)


@router.get("/alerts", response_model=List[SecurityAlertResponse])
def list_alerts(
    include_read: bool = False,
    current_principal: PrincipalClaims = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """
    Non-dismissed alerts, newest first
    """
    alerts = security_event_service.list_alerts(db, current_principal.principal_id, include_read=include_read)
    return [security_event_service.alert_to_dict(alert) for alert in alerts]


@router.get("/alerts/count")
def get_unread_alert_count(
    current_principal: PrincipalClaims = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return {"unread": security_event_service.unread_count(db, current_principal.principal_id)}


@router.post("/alerts/read", response_model=APIResponse)
def mark_alerts_read(
    body: MarkAlertsReadRequest,
    current_principal: PrincipalClaims = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    updated = security_event_service.mark_read(db, current_principal.principal_id, body.alert_ids)
    return APIResponse(message="Alerts marked as read", data={"updated": updated})


@router.post("/alerts/{alert_id}/dismiss", response_model=APIResponse)
def dismiss_alert(
    alert_id: int,
    current_principal: PrincipalClaims = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    if not security_event_service.dismiss(db, current_principal.principal_id, alert_id):
        raise ResourceNotFoundError("Alert")
    return APIResponse(message="Alert dismissed")


@router.get("/trusted-devices", response_model=List[TrustedDeviceResponse])
def list_trusted_devices(
    current_principal: PrincipalClaims = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return device_trust_service.list_devices(db, current_principal.principal_id)


@router.post("/trusted-devices/current", response_model=TrustedDeviceResponse, status_code=status.HTTP_201_CREATED)
def trust_current_device(
    request: Request,
    current_principal: PrincipalClaims = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """
    Trust the device making this request
    """
    return device_trust_service.trust_current_device(
        db,
        current_principal.principal_id,
        request.headers.get("User-Agent"),
        request_origin(request),
    )


@router.post("/trusted-devices/by-fingerprint", response_model=TrustedDeviceResponse, status_code=status.HTTP_201_CREATED)
def trust_device_by_fingerprint(
    body: TrustByFingerprintRequest,
    current_principal: PrincipalClaims = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """
    Trust a device seen in login history or an alert

    Display labels come from the request body, or from the latest login event
    with that fingerprint.
    """
    device_info = body.device_info
    ip_address = body.ip_address
    if device_info is None:
        event = security_event_service.latest_event_for_fingerprint(
            db, current_principal.principal_id, body.fingerprint
        )
        if event is None:
            raise ResourceNotFoundError("Device")
        device_info = event.device_info
        ip_address = ip_address or event.ip_address

    return device_trust_service.upsert_trust(
        db,
        current_principal.principal_id,
        body.fingerprint,
        device_info=device_info,
        ip_address=ip_address,
    )


@router.delete("/trusted-devices/{device_id}", response_model=APIResponse)
def remove_trusted_device(
    device_id: int,
    current_principal: PrincipalClaims = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    if not device_trust_service.remove_by_id(db, current_principal.principal_id, device_id):
        raise ResourceNotFoundError("Trusted device")
    return APIResponse(message="Trusted device removed")


@router.get("/login-history", response_model=LoginHistoryResponse)
def get_login_history(
    limit: int = Query(settings.LOGIN_HISTORY_PAGE_SIZE, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_principal: PrincipalClaims = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    items = security_event_service.login_history(db, current_principal.principal_id, limit=limit, offset=offset)
    total = security_event_service.login_history_count(db, current_principal.principal_id)
    return LoginHistoryResponse(
        items=[LoginEventResponse.model_validate(event) for event in items],
        total=total,
        limit=limit,
        offset=offset,
    )
