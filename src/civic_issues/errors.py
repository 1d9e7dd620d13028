"""Error taxonomy raised by the issue core and rendered by the API."""

from typing import Any, Dict, List, Optional


class ServiceError(Exception):
    """Base class for errors surfaced to API callers."""

    code = "SERVICE_ERROR"
    status_code = 400

    def __init__(self, message: str, details: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(ServiceError):
    code = "VALIDATION_ERROR"
    status_code = 400


class InvalidEnumValue(ValidationError):
    code = "INVALID_ENUM_VALUE"


class InvalidStatus(InvalidEnumValue):
    code = "INVALID_STATUS"


class InvalidCoordinate(ValidationError):
    code = "INVALID_COORDINATE"


class InvalidRadius(ValidationError):
    code = "INVALID_RADIUS"


class Unauthorized(ServiceError):
    code = "UNAUTHORIZED"
    status_code = 401


class Forbidden(ServiceError):
    code = "FORBIDDEN"
    status_code = 403


class NotFound(ServiceError):
    code = "NOT_FOUND"
    status_code = 404


class Conflict(ServiceError):
    code = "CONFLICT"
    status_code = 409


class InvalidTransition(Conflict):
    code = "INVALID_TRANSITION"


class InternalError(ServiceError):
    code = "INTERNAL_ERROR"
    status_code = 500


def field_error(field: str, message: str, value: Any = None) -> Dict[str, Any]:
    """Build a single field-level detail entry."""
    return {"field": field, "message": message, "value": value}
