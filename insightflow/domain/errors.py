from typing import List, Optional


class InsightFlowError(Exception):
    """Base class for every error the store and its services raise on purpose."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(InsightFlowError):
    status_code = 404


class ValidationFailure(InsightFlowError):
    """
    Raised before any mutation happens, so a rejected operation never leaves
    a partial write behind.
    """
    status_code = 400

    def __init__(self, message: str, details: Optional[List[str]] = None):
        super().__init__(message)
        self.details = details or []


class AIServiceError(InsightFlowError):
    """The external AI collaborator failed or answered with an unusable shape."""
    status_code = 502


class AccessDenied(InsightFlowError):
    status_code = 403


class NotAuthenticated(AccessDenied):
    status_code = 401
