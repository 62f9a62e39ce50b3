"""Exception handlers that give every failed request the same JSON error envelope."""

from __future__ import annotations

from typing import Any

import logfire
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from core.exceptions import ResearchPipelineError


def error_body(request: Request, error: str, message: str, details: dict[str, Any]) -> dict[str, Any]:
    return {"error": error, "message": message, "details": details, "path": request.url.path}


def install_error_handlers(app: FastAPI) -> None:
    """Register the research API's exception handlers on ``app``."""

    @app.exception_handler(ResearchPipelineError)
    async def handle_pipeline_error(  # type: ignore[override]
        request: Request,
        exc: ResearchPipelineError,
    ) -> JSONResponse:
        log = logfire.error if exc.status_code >= 500 else logfire.info
        log(
            "Request failed: {error_code}",
            error_code=exc.error_code,
            status_code=exc.status_code,
            details=exc.details,
            method=request.method,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(request, exc.error_code, exc.message, exc.details),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_invalid_request(  # type: ignore[override]
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = jsonable_encoder(exc.errors())
        logfire.info("Rejected research request", path=request.url.path, error_count=len(errors))
        return JSONResponse(
            status_code=422,
            content=error_body(request, "INVALID_REQUEST", "Request validation failed", {"errors": errors}),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(  # type: ignore[override]
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        logfire.exception("Unhandled error", method=request.method, path=request.url.path)
        return JSONResponse(
            status_code=500,
            content=error_body(request, "INTERNAL_SERVER_ERROR", "Unexpected server error", {}),
        )


__all__ = ["error_body", "install_error_handlers"]
