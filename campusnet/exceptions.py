from typing import Any, Optional


class CampusNetError(Exception):
    """
    Base exception for domain errors raised by the service layer.
    """
    def __init__(self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500, details: Optional[Any] = None):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class NotFound(CampusNetError):
    def __init__(self, message: str = "Resource not found", code: str = "NOT_FOUND"):
        super().__init__(message, code=code, status_code=404)


class InvalidRequest(CampusNetError):
    def __init__(self, message: str = "Invalid request", code: str = "INVALID_REQUEST"):
        super().__init__(message, code=code, status_code=400)


class AuthenticationFailed(CampusNetError):
    def __init__(self, message: str = "Authentication failed", code: str = "AUTHENTICATION_FAILED"):
        super().__init__(message, code=code, status_code=401)


class PermissionDenied(CampusNetError):
    """
    Raised when the caller is authenticated but does not own the resource.
    """
    def __init__(self, message: str = "Not authorized", code: str = "FORBIDDEN"):
        super().__init__(message, code=code, status_code=403)


class Conflict(CampusNetError):
    def __init__(self, message: str = "Resource already exists", code: str = "CONFLICT"):
        super().__init__(message, code=code, status_code=409)


class ServiceUnavailable(CampusNetError):
    """
    Raised when a required external dependency (mail relay, LLM) cannot serve the request.
    """
    def __init__(self, message: str = "Service unavailable", code: str = "SERVICE_UNAVAILABLE", details: Optional[Any] = None):
        super().__init__(message, code=code, status_code=503, details=details)
