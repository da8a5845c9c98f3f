"""Custom exception hierarchy for ReadHub.

Every error the subscription and payment flows raise derives from
``ReadHubError`` so the API layer can translate them in one place.

Error codes follow pattern: [CATEGORY][NUMBER]
- SUB: Subscription errors (100-199)
- PAY: Payment gateway errors (200-299)
"""

from __future__ import annotations

from typing import Any


class ReadHubError(Exception):
    """Base exception for all ReadHub application errors."""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response format."""
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "details": self.details,
            }
        }


# ============================================================================
# SUBSCRIPTION ERRORS (SUB100-199)
# ============================================================================

class ValidationError(ReadHubError):
    """Request data is missing, malformed or out of range."""

    def __init__(self, message: str, field: str | None = None, details: dict[str, Any] | None = None):
        payload = dict(details or {})
        if field:
            payload.setdefault("field", field)
        super().__init__(message=message, code="SUB100", status_code=400, details=payload)


class UnauthorizedError(ReadHubError):
    """Caller could not be authenticated (bad token, bad webhook signature)."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message=message, code="SUB101", status_code=401)


class ForbiddenError(ReadHubError):
    """Caller is authenticated but does not own the resource."""

    def __init__(self, message: str = "You are not allowed to access this subscription"):
        super().__init__(message=message, code="SUB102", status_code=403)


class NotFoundError(ReadHubError):
    def __init__(self, resource: str = "Subscription", identifier: str | None = None):
        message = f"{resource} not found" if not identifier else f"{resource} {identifier} not found"
        super().__init__(
            message=message,
            code="SUB103",
            status_code=404,
            details={"id": identifier} if identifier else {},
        )


class InvalidStateError(ReadHubError):
    """Operation is not valid for the subscription's current status."""

    def __init__(self, message: str, current_status: str | None = None, code: str = "SUB104"):
        super().__init__(
            message=message,
            code=code,
            status_code=409,
            details={"current_status": current_status} if current_status else {},
        )


class InvalidTransitionError(InvalidStateError):
    """Requested status change is not in the allowed transition table."""

    def __init__(self, current_status: str, new_status: str):
        super().__init__(
            message=f"Cannot change subscription status from '{current_status}' to '{new_status}'",
            current_status=current_status,
            code="SUB105",
        )
        self.details["new_status"] = new_status


# ============================================================================
# PAYMENT ERRORS (PAY200-299)
# ============================================================================

class GatewayError(ReadHubError):
    """The payment provider failed, timed out or answered with an error."""

    def __init__(self, message: str, upstream_status: int | None = None, reference: str | None = None):
        details: dict[str, Any] = {}
        if upstream_status is not None:
            details["upstream_status"] = upstream_status
        if reference:
            details["reference"] = reference
        super().__init__(message=message, code="PAY200", status_code=502, details=details)
