from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from autotag.catalog.shopify_admin import CatalogError, CatalogUserError
from autotag.rules.authoring import ActiveRuleLimitError, RuleValidationError


logger = logging.getLogger(__name__)


@dataclass
class APIError(Exception):
    status_code: int
    code: str
    message: str
    details: dict[str, Any] | None = None


def not_found(what: str) -> APIError:
    return APIError(status_code=404, code="not_found", message=f"{what} not found.")


def from_domain_error(exc: Exception) -> APIError:
    """Map rule-authoring and catalog exceptions onto the error envelope."""
    if isinstance(exc, ActiveRuleLimitError):
        return APIError(status_code=409, code="conflict", message=str(exc), details={"limit": exc.limit})
    if isinstance(exc, RuleValidationError):
        return APIError(status_code=400, code="invalid_argument", message=str(exc))
    if isinstance(exc, CatalogUserError):
        return APIError(status_code=502, code="upstream_error", message=str(exc), details={"user_errors": exc.messages})
    if isinstance(exc, CatalogError):
        return APIError(status_code=502, code="upstream_error", message=str(exc))
    return APIError(status_code=500, code="internal", message="Internal server error.")


def error_response(*, status_code: int, code: str, message: str, details: dict[str, Any] | None = None) -> JSONResponse:
    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return JSONResponse(status_code=int(status_code), content=payload)


async def api_error_handler(_req: Request, exc: APIError) -> JSONResponse:
    return error_response(
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


async def validation_error_handler(_req: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        status_code=400,
        code="invalid_argument",
        message="Request validation failed.",
        details={"errors": exc.errors()},
    )


async def unhandled_error_handler(req: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", req.method, req.url.path, exc_info=exc)
    return error_response(
        status_code=500,
        code="internal",
        message="Internal server error.",
        details={"type": type(exc).__name__},
    )
