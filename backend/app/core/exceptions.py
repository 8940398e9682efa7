"""
Custom Exceptions for the Thesis Supervision Tracker
====================================================

Use these instead of generic Exception to:
1. Make errors more specific and debuggable
2. Let the API layer map them to a status code and a JSON envelope
3. Give the user a message that can be shown verbatim

Usage:
    from app.core.exceptions import GuidanceNotFoundError, InvalidTransitionError

    if not session:
        raise GuidanceNotFoundError(guidance_id)

    try:
        await service.approve(guidance_id, supervisor)
    except InvalidTransitionError as e:
        logger.warning(f"Rejected transition: {e}")
        raise
"""

from typing import Optional, Any, Dict


class SupervisionError(Exception):
    """Base exception for all tracker errors"""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# ============================================
# Authentication & Authorization Errors
# ============================================

class AuthenticationError(SupervisionError):
    """Bearer identity missing or invalid"""

    status_code = 401

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message, code="AUTH_FAILED")


class AuthorizationError(SupervisionError):
    """Caller is not allowed to perform this action"""

    status_code = 403

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message, code="NOT_AUTHORIZED")


# ============================================
# Resource Errors (404-type)
# ============================================

class ResourceNotFoundError(SupervisionError):
    """Base class for not found errors"""

    status_code = 404

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} with ID '{resource_id}' not found",
            code=f"{resource_type.upper().replace(' ', '_')}_NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id}
        )


class GuidanceNotFoundError(ResourceNotFoundError):
    def __init__(self, guidance_id: str):
        super().__init__("Guidance", guidance_id)


class MilestoneNotFoundError(ResourceNotFoundError):
    def __init__(self, milestone_id: str):
        super().__init__("Milestone", milestone_id)


class ThesisNotFoundError(ResourceNotFoundError):
    def __init__(self, thesis_id: str):
        super().__init__("Thesis", thesis_id)


class UserNotFoundError(ResourceNotFoundError):
    def __init__(self, user_id: str):
        super().__init__("User", user_id)


class Supervisor2RequestNotFoundError(ResourceNotFoundError):
    def __init__(self, request_id: str):
        super().__init__("Supervisor2 request", request_id)


# ============================================
# Validation Errors (400-type)
# ============================================

class ValidationError(SupervisionError):
    """Input validation failed"""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message, code="VALIDATION_ERROR", details=details)


# ============================================
# Guidance lifecycle Errors (409-type)
# ============================================

class ConflictError(SupervisionError):
    """Candidate time overlaps one of the supervisor's busy slots"""

    status_code = 409

    def __init__(self, message: str, slot: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="SCHEDULE_CONFLICT")
        if slot:
            self.details["slot"] = slot


class InvalidTransitionError(SupervisionError):
    """Transition not present in the lifecycle graph for the current status"""

    status_code = 409

    def __init__(self, entity: str, current: str, target: str, action: Optional[str] = None):
        verb = action or f"move to '{target}'"
        super().__init__(
            f"Cannot {verb}: {entity} is '{current}'",
            code="INVALID_TRANSITION",
            details={"entity": entity, "current": current, "target": target}
        )
        if action:
            self.details["action"] = action


class PendingRequestExistsError(SupervisionError):
    """Student already has an outstanding request of this kind"""

    status_code = 409

    def __init__(self, message: str, pending: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="PENDING_REQUEST_EXISTS")
        if pending:
            self.details["pending"] = pending


# ============================================
# Availability / transport Errors
# ============================================

class AvailabilityUnknownError(SupervisionError):
    """Busy slots could not be fetched; submission must stay blocked"""

    status_code = 503

    def __init__(self, message: str = "Supervisor availability could not be verified. Try again later."):
        super().__init__(message, code="AVAILABILITY_UNKNOWN")


class OperationInFlightError(SupervisionError):
    """The same operation is already running; the second trigger is refused"""

    status_code = 409

    def __init__(self, operation: str):
        super().__init__(
            "This action is already in progress",
            code="OPERATION_IN_FLIGHT",
            details={"operation": operation}
        )


class NetworkError(SupervisionError):
    """Calling the REST API failed (transport error or non-2xx response)"""

    FALLBACK_MESSAGE = "Request failed. Please try again."

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message or self.FALLBACK_MESSAGE, code="NETWORK_ERROR")
        self.http_status = status_code
        if status_code is not None:
            self.details["http_status"] = status_code


# ============================================
# Helper function for API responses
# ============================================

def error_response(error: SupervisionError) -> Dict[str, Any]:
    """Convert exception to API error response format"""
    return {
        "success": False,
        "message": error.message,
        "error": error.to_dict()
    }
