import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from comicgen.core.exceptions import (
    ComicGenerationError,
    SessionExistsError,
    SessionNotFoundError,
    UnknownAppError,
)
from comicgen.core.request_context import get_session_id, get_stage, reset_request_id, set_request_id
from comicgen.services.vertex_gemini import GeminiError

logger = logging.getLogger("comicgen")


def install_request_context(app: FastAPI) -> None:
    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        token = set_request_id(request_id)
        start = time.perf_counter()
        try:
            try:
                response = await call_next(request)
            except Exception:
                duration_ms = (time.perf_counter() - start) * 1000
                logger.exception(
                    "request_failed",
                    extra={
                        "method": request.method,
                        "path": request.url.path,
                        "duration_ms": duration_ms,
                    },
                )
                raise

            duration_ms = (time.perf_counter() - start) * 1000
            request_logger = logger.debug if request.url.path in ("/health", "/metrics") else logger.info
            request_logger(
                "request_complete",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "duration_ms": duration_ms,
                    "stage": get_stage(),
                    "session_id": get_session_id(),
                },
            )
            response.headers["x-request-id"] = request_id
            return response
        finally:
            reset_request_id(token)


def _error_response(request: Request, status_code: int, detail: str) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    return JSONResponse(status_code=status_code, content={"detail": detail, "request_id": request_id})


def install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return _error_response(request, 400, str(exc))

    @app.exception_handler(UnknownAppError)
    async def unknown_app_handler(request: Request, exc: UnknownAppError):
        return _error_response(request, 404, exc.detail)

    @app.exception_handler(SessionNotFoundError)
    async def session_not_found_handler(request: Request, exc: SessionNotFoundError):
        return _error_response(request, 404, exc.detail)

    @app.exception_handler(SessionExistsError)
    async def session_exists_handler(request: Request, exc: SessionExistsError):
        return _error_response(request, 409, exc.detail)

    @app.exception_handler(ComicGenerationError)
    async def generation_error_handler(request: Request, exc: ComicGenerationError):
        return _error_response(request, 502, str(exc))

    @app.exception_handler(GeminiError)
    async def gemini_error_handler(request: Request, exc: GeminiError):
        return _error_response(request, 502, str(exc))

    @app.exception_handler(RuntimeError)
    async def runtime_error_handler(request: Request, exc: RuntimeError):
        return _error_response(request, 502, str(exc))
