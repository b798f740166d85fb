"""
Domain error taxonomy.

Services raise these; main.py maps each class to a JSON response.
"""
from typing import Optional


class ServiceError(Exception):
    """Base class for every error with a user-facing message"""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    """Input rejected before any backend call was made"""
    status_code = 400


class BackendError(ServiceError):
    """A table operation failed; message is the backend's own text"""
    status_code = 502


class FunctionGatewayError(ServiceError):
    """The privileged function endpoint refused the call or was unreachable"""
    status_code = 502

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    """A conditional write matched no row"""
    status_code = 409


class UnresolvedCompanyError(ServiceError):
    """A profile id has no companies row behind it"""
    status_code = 404

    def __init__(self, profile_id: str, message: Optional[str] = None):
        super().__init__(message or f"No company found for profile {profile_id}")
        self.profile_id = profile_id


class LimitExceededError(ServiceError):
    status_code = 409

    def __init__(self, resource: str, limit: int, current: int, requested: int, message: Optional[str] = None):
        if message is None:
            message = (
                f"{resource} limit exceeded: {current} in use, {requested} requested, "
                f"limit is {limit}"
            )
        super().__init__(message)
        self.resource = resource
        self.limit = limit
        self.current = current
        self.requested = requested

    @property
    def remaining(self) -> int:
        return max(self.limit - self.current, 0)
