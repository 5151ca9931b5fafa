from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Body, Header, Request
from fastapi.responses import Response

from asset_engines.asset_service.service import AssetRequest, get_asset_service
from asset_engines.common.error_envelope import asset_error_response, error_response
from asset_engines.common.errors import AssetEngineError

router = APIRouter(prefix="/asset", tags=["asset"])


async def _serve(asset_request: AssetRequest) -> Response:
    try:
        result = await get_asset_service().serve_async(asset_request)
    except AssetEngineError as exc:
        return asset_error_response(exc)
    return Response(content=result.data, media_type=result.mime_type)


@router.get("/{entity_name}/{reference_id}/{column_name}/{filename}")
async def get_asset(
    entity_name: str,
    reference_id: str,
    column_name: str,
    filename: str,
    request: Request,
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    x_request_id: Optional[str] = Header(default=None, alias="X-Request-Id"),
):
    return await _serve(
        AssetRequest(
            entity_name=entity_name,
            reference_id=reference_id,
            column_name=column_name,
            filename=filename,
            raw_query=request.url.query,
            caller_id=x_user_id,
            request_id=x_request_id,
        )
    )


@router.get("/{entity_name}/{reference_id}/{column_file}")
async def get_column_asset(
    entity_name: str,
    reference_id: str,
    column_file: str,
    request: Request,
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    x_request_id: Optional[str] = Header(default=None, alias="X-Request-Id"),
):
    """Short form ``/<column>.<ext>``: first file of that type in the column."""
    column_name, sep, extension = column_file.rpartition(".")
    if not sep:
        column_name, extension = column_file, ""
    return await _serve(
        AssetRequest(
            entity_name=entity_name,
            reference_id=reference_id,
            column_name=column_name,
            extension=extension or None,
            raw_query=request.url.query,
            caller_id=x_user_id,
            request_id=x_request_id,
        )
    )


@router.post("/{entity_name}/{reference_id}/{column_name}")
def ingest_assets(
    entity_name: str,
    reference_id: str,
    column_name: str,
    payload: Any = Body(...),
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    x_request_id: Optional[str] = Header(default=None, alias="X-Request-Id"),
):
    if not isinstance(payload, list):
        error_response(
            code="asset_descriptor.invalid_payload",
            message="request body must be a JSON array of descriptors or uploads",
            status_code=400,
            resource_kind="upload",
        )
    try:
        descriptors = get_asset_service().ingest(
            entity_name, reference_id, column_name, payload, caller_id=x_user_id, request_id=x_request_id
        )
    except AssetEngineError as exc:
        return asset_error_response(exc)
    return [descriptor.to_column() for descriptor in descriptors]
