"""
Core module - configuration, database, errors, and response formatting.
"""
from .config import get_settings
from .db import get_session, Base, engine, AsyncSessionLocal
from .errors import (
    BookingAppError,
    ValidationError,
    TenantRequired,
    AuthenticationError,
    TenantInactive,
    NotFoundError,
    ConflictError,
)
from .responses import (
    ErrorCodes,
    success_response,
    error_response,
)

__all__ = [
    # Config
    "get_settings",
    # Database
    "get_session",
    "Base",
    "engine",
    "AsyncSessionLocal",
    # Errors
    "BookingAppError",
    "ValidationError",
    "TenantRequired",
    "AuthenticationError",
    "TenantInactive",
    "NotFoundError",
    "ConflictError",
    # Responses
    "ErrorCodes",
    "success_response",
    "error_response",
]
