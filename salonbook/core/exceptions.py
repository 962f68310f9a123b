# salonbook/core/exceptions.py
"""
Domain errors for the SalonBook core.

A single tagged exception carries the error kind, the HTTP status that kind
maps to, a machine-readable code and an optional details payload. Handlers
dispatch on ``exc.kind`` instead of on the exception class.
"""

from enum import Enum
from typing import Any, Dict, Optional

from fastapi import HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

GENERIC_INTERNAL_MESSAGE = "An error occurred processing your request"


class ErrorKind(str, Enum):
    """Error kinds with their HTTP status and default code."""

    VALIDATION = "validation"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    PAYMENT_FAILED = "payment_failed"
    EXTERNAL_SERVICE = "external_service"
    INTERNAL = "internal"

    @property
    def status_code(self) -> int:
        return _KIND_STATUS[self]

    @property
    def default_code(self) -> str:
        return _KIND_CODE[self]


_KIND_STATUS: Dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.PAYMENT_FAILED: 402,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INTERNAL: 500,
    ErrorKind.EXTERNAL_SERVICE: 503,
}

_KIND_CODE: Dict[ErrorKind, str] = {
    ErrorKind.VALIDATION: "VALIDATION_ERROR",
    ErrorKind.UNAUTHORIZED: "UNAUTHORIZED",
    ErrorKind.FORBIDDEN: "FORBIDDEN",
    ErrorKind.NOT_FOUND: "NOT_FOUND",
    ErrorKind.CONFLICT: "CONFLICT",
    ErrorKind.PAYMENT_FAILED: "PAYMENT_FAILED",
    ErrorKind.EXTERNAL_SERVICE: "EXTERNAL_SERVICE_ERROR",
    ErrorKind.INTERNAL: "INTERNAL_ERROR",
}


class DomainException(Exception):
    """Base exception for all domain errors, tagged by ``kind``."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.kind = kind
        self.message = message
        self.code = code or kind.default_code
        self.details = details or {}
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    @property
    def is_internal(self) -> bool:
        return self.kind is ErrorKind.INTERNAL

    def public_payload(self) -> Dict[str, Any]:
        """Error body safe to return to callers; internal errors are masked."""
        if self.is_internal:
            return {"code": self.code, "message": GENERIC_INTERNAL_MESSAGE, "details": {}}
        return {"code": self.code, "message": self.message, "details": self.details}

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.public_payload())

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status_code,
            content=jsonable_encoder({"success": False, "error": self.public_payload()}),
        )

    def __repr__(self) -> str:
        return f"DomainException(kind={self.kind.value!r}, code={self.code!r}, message={self.message!r})"


def validation_error(
    message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None
) -> DomainException:
    return DomainException(ErrorKind.VALIDATION, message, code, details)


def unauthorized_error(
    message: str = "Authentication required",
    code: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> DomainException:
    return DomainException(ErrorKind.UNAUTHORIZED, message, code, details)


def forbidden_error(
    message: str = "You do not have permission to perform this action",
    code: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> DomainException:
    return DomainException(ErrorKind.FORBIDDEN, message, code, details)


def not_found_error(
    message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None
) -> DomainException:
    return DomainException(ErrorKind.NOT_FOUND, message, code, details)


def conflict_error(
    message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None
) -> DomainException:
    return DomainException(ErrorKind.CONFLICT, message, code, details)


def payment_failed_error(
    message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None
) -> DomainException:
    return DomainException(ErrorKind.PAYMENT_FAILED, message, code, details)


def external_service_error(
    message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None
) -> DomainException:
    return DomainException(ErrorKind.EXTERNAL_SERVICE, message, code, details)


def internal_error(
    message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None
) -> DomainException:
    return DomainException(ErrorKind.INTERNAL, message, code, details)


def appointment_unavailable(details: Optional[Dict[str, Any]] = None) -> DomainException:
    """Slot already taken by another live appointment."""
    return conflict_error(
        "The selected time slot is not available",
        code="APPOINTMENT_UNAVAILABLE",
        details=details,
    )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    Raised when data access fails (connection issues, query failures,
    constraint violations). Surfaces to callers as an internal error.
    """
