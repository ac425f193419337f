"""
Request-level error taxonomy.

Each error carries a short human readable message; main.py renders them as
{"error": message}. Processor and database details are logged, never put here.
"""
from fastapi import HTTPException, status


class ApiError(HTTPException):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, status_code: int = None):
        super().__init__(status_code=status_code or self.status_code, detail=message)

    @property
    def message(self) -> str:
        return self.detail


class ValidationError(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationError(ApiError):
    status_code = status.HTTP_401_UNAUTHORIZED


class AuthorizationError(ApiError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(ApiError):
    status_code = status.HTTP_404_NOT_FOUND


class DependencyUnavailable(ApiError):
    """Stripe or the database is misconfigured or unreachable (500/502/503)."""
    status_code = status.HTTP_502_BAD_GATEWAY
