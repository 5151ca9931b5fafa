from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from asset_engines.common.error_envelope import asset_error_response, build_error_envelope
from asset_engines.common.errors import AssetEngineError
from asset_engines.config import runtime_config

logger = logging.getLogger(__name__)


def _envelope(code: str, message: str, status_code: int, details: Optional[Dict[str, Any]] = None) -> JSONResponse:
    envelope = build_error_envelope(code, message, status_code, details=details)
    return JSONResponse(status_code=status_code, content=envelope.model_dump())


# --- Error Handling ---

async def _on_http_exception(request: Request, exc: HTTPException):
    # Routes raise HTTPException with a ready-made envelope as detail.
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        return JSONResponse(status_code=exc.status_code, content=exc.detail)
    return _envelope("http.error", str(exc.detail or "request failed"), exc.status_code)


async def _on_request_validation(request: Request, exc: RequestValidationError):
    return _envelope("request.invalid", "request did not match the route schema", 400, {"errors": exc.errors()})


async def _on_asset_error(request: Request, exc: AssetEngineError):
    if exc.http_status >= 500:
        logger.warning("%s on %s: %s", exc.code, request.url.path, exc.message)
    return asset_error_response(exc)


async def _on_unhandled(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s", request.url.path)
    return _envelope("internal.error", "internal server error", 500)


def register_error_handlers(target_app: FastAPI) -> None:
    target_app.add_exception_handler(HTTPException, _on_http_exception)
    target_app.add_exception_handler(RequestValidationError, _on_request_validation)
    target_app.add_exception_handler(AssetEngineError, _on_asset_error)
    target_app.add_exception_handler(Exception, _on_unhandled)


# --- App Factory ---

@asynccontextmanager
async def _lifespan(app: FastAPI):
    from asset_engines.asset_service.service import get_asset_service

    get_asset_service().validate_bindings()
    logger.info("Asset engines started (env=%s)", runtime_config.get_env() or "dev")
    yield


def create_app() -> FastAPI:
    app = FastAPI(title="Asset Engines", lifespan=_lifespan)
    register_error_handlers(app)

    from asset_engines.asset_service.routes import router as asset_router

    app.include_router(asset_router)

    @app.get("/health")
    async def health_check():
        return {"service": "asset_engines", "config": runtime_config.config_snapshot()}

    return app
