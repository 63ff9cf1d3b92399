"""
FastAPI application entry point for the marketplace backend.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from marketplace.config import get_settings
from marketplace.errors import StorageBusy, StorageError
from marketplace.routes import router

logger = logging.getLogger(__name__)


async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code)


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = sorted(
        {".".join(str(p) for p in err.get("loc", ())[1:]) or "body" for err in exc.errors()}
    )
    return JSONResponse(
        {"error": f"Missing or invalid fields: {', '.join(fields)}"}, status_code=400
    )


async def _storage_error(request: Request, exc: StorageError) -> JSONResponse:
    logger.error(
        "%s %s failed in storage (%s)",
        request.method,
        request.url.path,
        exc.entity or "unknown collection",
        exc_info=exc,
    )
    message = "Storage is busy" if isinstance(exc, StorageBusy) else "Storage failure"
    return JSONResponse({"error": message}, status_code=500)


async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "%s %s failed unexpectedly", request.method, request.url.path, exc_info=exc
    )
    return JSONResponse({"error": "Internal server error"}, status_code=500)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Marketplace Dashboard API", version="0.1.0")
    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type", settings.session_header],
        )
    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(StorageError, _storage_error)
    app.add_exception_handler(Exception, _unhandled_error)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
