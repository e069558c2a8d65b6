"""
Application error taxonomy

Services raise these exceptions; entry points (channel event handling,
Celery tasks) convert them into Result failures using the error code.
"""

from typing import Any, Dict, Optional


class AppError(Exception):
    """Base class for all domain errors raised by services."""

    default_code = 'APP_ERROR'

    def __init__(self, message: str, code: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error': self.message,
            'code': self.code,
            'details': self.details
        }


class ValidationError(AppError):
    """Malformed caller input, rejected before any mutation."""
    default_code = 'VALIDATION_ERROR'


class PermissionDenied(AppError):
    """Cross-tenant access or an invalid cross-entity reference."""
    default_code = 'PERMISSION_DENIED'


class NotFound(AppError):
    """Referenced entity does not exist in scope."""
    default_code = 'NOT_FOUND'


class ConflictError(AppError):
    """Open-ticket or uniqueness conflict that must be resolved explicitly."""
    default_code = 'CONFLICT'


class TenantContextRequired(AppError):
    """A write was attempted with no resolvable tenant."""
    default_code = 'ERR_TENANT_CONTEXT_REQUIRED'

    def __init__(self, message: str = 'Tenant context is required for this operation',
                 code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)


class TransportError(AppError):
    """Outbound channel or webhook call failed or timed out."""
    default_code = 'TRANSPORT_ERROR'


class SendFailed(TransportError):
    """A channel send request could not be completed."""
    default_code = 'ERR_SENDING_MSG'
