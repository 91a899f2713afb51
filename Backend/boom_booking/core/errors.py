"""
Domain error taxonomy.

Every error a handler can surface to a caller derives from BookingAppError and
carries its own HTTP status and error code. main.py registers a single handler
that renders them with error_response().

    ValidationError      400  malformed input, start >= end
    TenantRequired       400  no tenant could be resolved
    AuthenticationError  401  bearer session token failed verification
    TenantInactive       403  tenant exists but is not active
    NotFoundError        404  absent, or owned by another tenant
    ConflictError        409  overlapping booking / state conflict
"""

from typing import Any, Optional

from fastapi import status

from .responses import ErrorCodes


class BookingAppError(Exception):
    """Base class for errors rendered as structured API responses."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = ErrorCodes.INTERNAL_ERROR

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationError(BookingAppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = ErrorCodes.VALIDATION_ERROR


class TenantRequired(BookingAppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = ErrorCodes.TENANT_REQUIRED

    def __init__(
        self,
        message: str = "Tenant context required. Use a tenant subdomain, X-Tenant-Id header or API key.",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details)


class AuthenticationError(BookingAppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = ErrorCodes.AUTHENTICATION_REQUIRED


class TenantInactive(BookingAppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = ErrorCodes.TENANT_INACTIVE

    def __init__(self, tenant_status: str):
        super().__init__(
            "This tenant account is not active",
            details={"tenant_status": tenant_status},
        )


class NotFoundError(BookingAppError):
    """
    Raised for rows that are absent in the caller's tenant scope.

    A row that exists but belongs to another tenant MUST raise this exact error
    with the same message, so responses never reveal cross-tenant existence.
    """

    status_code = status.HTTP_404_NOT_FOUND
    code = ErrorCodes.NOT_FOUND

    def __init__(self, resource: str):
        self.resource = resource
        super().__init__(f"{resource} not found")


class ConflictError(BookingAppError):
    status_code = status.HTTP_409_CONFLICT
    code = ErrorCodes.CONFLICT
