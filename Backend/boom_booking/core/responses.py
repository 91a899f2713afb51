"""
Standardized API Response Module

RESPONSE FORMAT:
    Success:
        {
            "data": <response data>,
            "status": "success"
        }

    Error:
        {
            "error": {
                "code": "ERROR_CODE",
                "message": "Human-readable message",
                "details": {...}  # Optional extra context
            },
            "status": "error"
        }
"""

from typing import Any, Optional


class ErrorCodes:
    """Standard error codes for API responses."""

    # 400
    VALIDATION_ERROR = "VALIDATION_ERROR"
    TENANT_REQUIRED = "TENANT_REQUIRED"

    # 401
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"

    # 403
    TENANT_INACTIVE = "TENANT_INACTIVE"

    # 404
    NOT_FOUND = "NOT_FOUND"

    # 409
    CONFLICT = "CONFLICT"

    # 500
    DATABASE_ERROR = "DATABASE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


def success_response(data: Any, message: Optional[str] = None) -> dict:
    """
    Create a standardized success response dict.
    """
    response = {"data": data, "status": "success"}
    if message:
        response["message"] = message
    return response


def error_response(
    code: str,
    message: str,
    details: Optional[dict] = None,
) -> dict:
    """
    Create a standardized error response dict.
    """
    response = {
        "error": {
            "code": code,
            "message": message,
        },
        "status": "error",
    }
    if details:
        response["error"]["details"] = details
    return response
