import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.exceptions import (
    GENERIC_INTERNAL_MESSAGE,
    DomainException,
    ErrorKind,
    RepositoryException,
)

logger = logging.getLogger(__name__)


def _error_body(code: str, message: str, details: Optional[Any] = None) -> Dict[str, Any]:
    return {
        "success": False,
        "error": {"code": code, "message": message, "details": details or {}},
    }


def _status_code_name(status_code: int) -> str:
    mapping = {
        400: ErrorKind.VALIDATION.default_code,
        401: ErrorKind.UNAUTHORIZED.default_code,
        403: ErrorKind.FORBIDDEN.default_code,
        404: ErrorKind.NOT_FOUND.default_code,
        405: "METHOD_NOT_ALLOWED",
        409: ErrorKind.CONFLICT.default_code,
    }
    return mapping.get(status_code, ErrorKind.INTERNAL.default_code)


def _validation_details(exc: RequestValidationError) -> List[Dict[str, Any]]:
    details = []
    for error in exc.errors():
        details.append(
            {
                "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
                "message": error.get("msg", ""),
                "type": error.get("type", ""),
            }
        )
    return details


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
        if exc.is_internal:
            logger.error(
                f"Internal error on {request.method} {request.url.path}: {exc.message}",
                extra={"code": exc.code, "details": exc.details},
            )
        elif exc.status_code >= 500:
            logger.warning(f"{exc.code} on {request.url.path}: {exc.message}")
        return exc.to_response()

    @app.exception_handler(RepositoryException)
    async def repository_exception_handler(
        request: Request, exc: RepositoryException
    ) -> JSONResponse:
        logger.error(f"Repository error on {request.method} {request.url.path}: {str(exc)}")
        return JSONResponse(
            status_code=ErrorKind.INTERNAL.status_code,
            content=_error_body(ErrorKind.INTERNAL.default_code, GENERIC_INTERNAL_MESSAGE),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=ErrorKind.VALIDATION.status_code,
            content=jsonable_encoder(
                _error_body(
                    ErrorKind.VALIDATION.default_code,
                    "Request validation failed",
                    {"errors": _validation_details(exc)},
                )
            ),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        if isinstance(exc.detail, dict) and "code" in exc.detail:
            content = {"success": False, "error": exc.detail}
        else:
            content = _error_body(_status_code_name(exc.status_code), str(exc.detail))
        return JSONResponse(
            status_code=exc.status_code,
            content=jsonable_encoder(content),
            headers=getattr(exc, "headers", None),
        )
