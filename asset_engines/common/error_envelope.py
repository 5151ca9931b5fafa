"""JSON error body shared by every asset route.

Every failure, whether raised by an engine or detected in a route, is returned as::

    {"error": {"code": ..., "message": ..., "http_status": ..., "resource_kind": ..., "details": {...}}}
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from asset_engines.common.errors import AssetEngineError


class ErrorDetail(BaseModel):
    code: str
    message: str
    http_status: int
    resource_kind: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class ErrorEnvelope(BaseModel):
    error: ErrorDetail


def build_error_envelope(
    code: str,
    message: str,
    status_code: int = 400,
    resource_kind: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> ErrorEnvelope:
    """Envelope without raising; http_status mirrors status_code."""
    return ErrorEnvelope(
        error=ErrorDetail(
            code=code,
            message=message,
            http_status=status_code,
            resource_kind=resource_kind,
            details=details or {},
        )
    )


def error_response(
    code: str,
    message: str,
    status_code: int = 400,
    resource_kind: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> HTTPException:
    """Raise an HTTPException whose detail is the canonical envelope.

    Used for request-shape failures detected in a route before any engine runs.
    """
    envelope = build_error_envelope(code, message, status_code, resource_kind, details)
    raise HTTPException(status_code=status_code, detail=envelope.model_dump())


def envelope_for(exc: AssetEngineError) -> ErrorEnvelope:
    """Map a typed engine error onto the canonical envelope."""
    details = dict(exc.details)
    if exc.retryable:
        details["retryable"] = True
    return build_error_envelope(exc.code, exc.message, exc.http_status, exc.resource_kind, details)


def asset_error_response(exc: AssetEngineError) -> JSONResponse:
    return JSONResponse(status_code=exc.http_status, content=envelope_for(exc).model_dump())
