"""Custom exception classes for the application"""

from typing import Optional, Dict, Any


class BaseAPIException(Exception):
    """Base exception for all API errors"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


# Authentication Errors
class AuthenticationError(BaseAPIException):
    """Base authentication error"""

    code = "authentication_failed"

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message, status_code=401, details={"code": self.code})


class InvalidCredentialError(AuthenticationError):
    """Malformed, unknown or wrong-type credential; re-authenticate"""

    code = "invalid_credential"

    def __init__(self, message: str = "Invalid credential"):
        super().__init__(message)


class ExpiredCredentialError(AuthenticationError):
    """Credential lifetime elapsed"""

    code = "expired_credential"

    def __init__(self, message: str = "Credential has expired"):
        super().__init__(message)


class SessionInvalidatedError(AuthenticationError):
    """Credential predates the principal's current epoch"""

    code = "session_invalidated"

    def __init__(self):
        super().__init__("Session has been invalidated. Please re-authenticate.")


class TokenReuseDetectedError(AuthenticationError):
    """An already-rotated refresh token was presented again"""

    code = "token_reuse_detected"

    def __init__(self):
        super().__init__("Token reuse detected. Session revoked for security.")


class DeviceMismatchError(AuthenticationError):
    """Refresh token presented from a device other than the one it was issued to"""

    code = "device_mismatch"

    def __init__(self):
        super().__init__("Device mismatch detected. Please re-authenticate.")


class AuthRequiredError(AuthenticationError):
    """No usable credential at all"""

    code = "auth_required"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


# Resource Errors
class ResourceNotFoundError(BaseAPIException):
    """Resource not found"""
    def __init__(self, resource: str):
        super().__init__(f"{resource} not found", status_code=404)


# Throttling
class RateLimitExceededError(BaseAPIException):
    """Rate limit exceeded"""
    def __init__(self, message: str = "Rate limit exceeded. Please try again later.", retry_after: int = 60):
        super().__init__(message, status_code=429, details={"retry_after": retry_after})
