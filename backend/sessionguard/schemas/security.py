"""Device, alert and login history schemas"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ActiveDeviceResponse(BaseModel):
    """Head of an active rotation chain, one per signed-in device"""
    id: int
    device_info: Optional[str]
    ip_address: Optional[str]
    browser: str
    os: str
    device_name: str
    is_trusted_device: bool = False
    last_used_at: Optional[datetime]
    created_at: Optional[datetime]


class TrustedDeviceResponse(BaseModel):
    id: int
    device_fingerprint: str
    device_name: Optional[str]
    browser: Optional[str]
    os: Optional[str]
    last_ip_address: Optional[str]
    last_used_at: Optional[datetime]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class TrustByFingerprintRequest(BaseModel):
    """Trust a device seen in login history or an alert"""
    fingerprint: str = Field(..., min_length=8, max_length=64)
    device_info: Optional[str] = None
    ip_address: Optional[str] = None


class SecurityAlertResponse(BaseModel):
    id: int
    alert_type: str
    message: str
    metadata: Dict[str, Any] = {}
    is_read: bool
    is_dismissed: bool
    created_at: Optional[datetime]


class MarkAlertsReadRequest(BaseModel):
    alert_ids: List[int] = Field(..., min_length=1, max_length=100)


class LoginEventResponse(BaseModel):
    id: int
    ip_address: str
    device_info: Optional[str]
    device_fingerprint: Optional[str]
    browser: Optional[str]
    os: Optional[str]
    is_trusted_device: bool
    event_type: str
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class LoginHistoryResponse(BaseModel):
    items: List[LoginEventResponse]
    total: int
    limit: int
    offset: int


class SecurityOverviewResponse(BaseModel):
    active_sessions: List[ActiveDeviceResponse]
    trusted_devices: List[TrustedDeviceResponse]
    alerts: List[SecurityAlertResponse]
    recent_logins: List[LoginEventResponse]
    unread_alert_count: int
