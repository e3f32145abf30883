"""Security utilities - JWT signing/verification and UTC time helpers"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import ExpiredSignatureError, JWTError, jwt
from sessionguard.config import settings
import secrets

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


def utcnow() -> datetime:
    """Naive UTC now; all persisted timestamps are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize a possibly tz-aware datetime (PostgreSQL) to naive UTC (SQLite)."""
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def from_timestamp(ts: float) -> datetime:
    """Naive UTC datetime from a JWT numeric date."""
    return datetime.fromtimestamp(ts, timezone.utc).replace(tzinfo=None)


def generate_token_id() -> str:
    return secrets.token_urlsafe(32)


def generate_family_id() -> str:
    return secrets.token_hex(16)


def _encode(data: Dict[str, Any], secret: str, expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    to_encode = data.copy()
    to_encode.update({
        "exp": now + expires_delta,
        "iat": now,
        "jti": generate_token_id()  # Unique token ID
    })
    return jwt.encode(to_encode, secret, algorithm=settings.ALGORITHM)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create JWT access token

    Args:
        data: Claims to encode (sub, email, name)
        expires_delta: Token lifetime, defaults to ACCESS_TOKEN_EXPIRE_MINUTES

    Returns:
        str: Encoded JWT token
    """
    claims = dict(data, typ=ACCESS_TOKEN_TYPE)
    return _encode(
        claims,
        settings.access_secret,
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )


def create_refresh_token(
    data: Dict[str, Any],
    *,
    family_id: str,
    epoch: int = 1,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create JWT refresh token bound to a rotation family and principal epoch

    Args:
        data: Claims to encode (sub)
        family_id: Rotation chain root
        epoch: Principal epoch at issue
        expires_delta: Token lifetime, defaults to REFRESH_TOKEN_EXPIRE_DAYS

    Returns:
        str: Encoded JWT token
    """
    claims = dict(data, typ=REFRESH_TOKEN_TYPE, fam=family_id, ver=epoch)
    return _encode(
        claims,
        settings.refresh_secret,
        expires_delta or timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
    )


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and verify an access JWT

    Returns:
        Optional[Dict]: Decoded claims, or None if invalid, expired or not an access token
    """
    try:
        payload = jwt.decode(token, settings.access_secret, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    if payload.get("typ") != ACCESS_TOKEN_TYPE:
        return None
    return payload


def decode_token(token: str, *, verify_exp: bool = True) -> Optional[Dict[str, Any]]:
    """
    Decode a refresh JWT, verifying its signature

    Args:
        token: JWT token string
        verify_exp: When False, an expired but otherwise valid token still decodes

    Returns:
        Optional[Dict]: Decoded claims or None if the signature is invalid
    """
    try:
        return jwt.decode(
            token,
            settings.refresh_secret,
            algorithms=[settings.ALGORITHM],
            options={"verify_exp": verify_exp},
        )
    except JWTError:
        return None


def access_token_expired(token: str) -> bool:
    """True when the token has a valid access signature but its lifetime elapsed."""
    try:
        jwt.decode(token, settings.access_secret, algorithms=[settings.ALGORITHM])
    except ExpiredSignatureError:
        return True
    except JWTError:
        return False
    return False
