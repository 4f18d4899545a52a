from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status


class DomainError(HTTPException):
    code = "domain_error"
    status_code_default = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(status_code=self.status_code_default, detail=message)
        self.message = message
        self.details = details


class ValidationError(DomainError):
    code = "validation_error"

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message, details={"field": field} if field else None)
        self.field = field


class InvalidStateError(DomainError):
    code = "invalid_state"


class HoldExpiredError(DomainError):
    code = "hold_expired"
    status_code_default = status.HTTP_410_GONE

    def __init__(self, message: str = "hold expired, please request a new quote", *, details: Any = None) -> None:
        super().__init__(message, details=details)


class InvalidTokenError(DomainError):
    code = "invalid_token"
    status_code_default = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "invalid or expired link", *, details: Any = None) -> None:
        super().__init__(message, details=details)


class NotFoundError(DomainError):
    code = "not_found"
    status_code_default = status.HTTP_404_NOT_FOUND
