from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


def invalid_reference(kind: str, ref_id: int) -> ApiError:
    return ApiError(
        status_code=400,
        code="INVALID_REFERENCE",
        message=f"{kind} not found or inactive with id: {ref_id}",
        details={"kind": kind, "id": ref_id},
    )


def not_found(code: str, kind: str, ref_id: int) -> ApiError:
    return ApiError(
        status_code=404,
        code=code,
        message=f"{kind} not found with id: {ref_id}",
        details={"id": ref_id},
    )


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "request_id": get_request_id(request),
    }
    if details:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"error": error})
