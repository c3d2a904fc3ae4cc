from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from ledgerlink.errors import (
    ConfigurationError,
    DeploymentError,
    LinkError,
    NotEnrolledError,
    NotReadyError,
    TransactionError,
    UnknownIdentityError,
)


@dataclass(frozen=True, slots=True)
class ApiError(Exception):
    status_code: int
    code: str
    message: str
    details: Dict[str, Any]

    @staticmethod
    def bad_request(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(400, code, message, details or {})

    @staticmethod
    def forbidden(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(403, code, message, details or {})

    @staticmethod
    def not_found(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(404, code, message, details or {})

    @staticmethod
    def bad_gateway(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(502, code, message, details or {})

    @staticmethod
    def unavailable(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(503, code, message, details or {})

    @staticmethod
    def timeout(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(504, code, message, details or {})

    @staticmethod
    def internal(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(500, code, message, details or {})


def _details(e: LinkError) -> Dict[str, Any]:
    return e.details if isinstance(e.details, dict) else {}


def from_link_error(e: LinkError) -> ApiError:
    """Map lifecycle errors onto HTTP statuses."""
    if isinstance(e, UnknownIdentityError):
        return ApiError.not_found(e.code, e.reason, _details(e))
    if isinstance(e, NotEnrolledError):
        return ApiError.forbidden(e.code, e.reason, _details(e))
    if isinstance(e, NotReadyError):
        return ApiError.unavailable(e.code, e.reason, _details(e))
    if isinstance(e, (TransactionError, DeploymentError)):
        return ApiError.bad_gateway(e.code, e.reason, _details(e))
    if isinstance(e, ConfigurationError):
        return ApiError.internal(e.code, e.reason, _details(e))
    return ApiError.internal(e.code, e.reason, _details(e))


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": {"code": exc.code, "message": exc.message, "details": exc.details}},
    )
