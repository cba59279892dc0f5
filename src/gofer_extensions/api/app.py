"""Extension-side FastAPI application factory."""

from __future__ import annotations

import hmac
import time
import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from gofer_extensions import __version__
from gofer_extensions.api.routes import router
from gofer_extensions.errors import AuthError, ExtensionError

if TYPE_CHECKING:
    from gofer_extensions.engine.harness import ExtensionHarness

log = structlog.get_logger()

UNAUTHENTICATED_PATHS = frozenset({"/health", "/api/health"})


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "")


def _error(request: Request, status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"message": message, "request_id": _request_id(request)},
    )


def _check_auth(request: Request, secret: str) -> None:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise AuthError("Authorization header not found but required", status_code=400)
    scheme, _, token = auth_header.partition(" ")
    if scheme != "Bearer" or not token:
        raise AuthError("Malformed token; expected 'Bearer <token>'", status_code=400)
    if not hmac.compare_digest(token.encode(), secret.encode()):
        raise AuthError("Unauthorized")


def create_extension_app(harness: ExtensionHarness) -> FastAPI:
    """Create the lifecycle API application.

    Args:
        harness: The ExtensionHarness the routes act on.

    Routes are served both at the root and under ``/api``.
    """
    app = FastAPI(
        title=f"Gofer Extension: {harness.config.extension_id}",
        version=__version__,
        docs_url=None,
        redoc_url=None,
    )
    app.state.harness = harness
    secret = harness.config.shared_secret

    @app.middleware("http")
    async def request_middleware(request: Request, call_next) -> Response:
        request.state.request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex
        start = time.perf_counter()

        response = None
        if request.url.path not in UNAUTHENTICATED_PATHS:
            try:
                _check_auth(request, secret)
            except AuthError as e:
                response = _error(request, e.status_code, e.message)
        if response is None:
            response = await call_next(request)

        log.info(
            "request completed",
            remote_addr=request.client.host if request.client else "",
            request_id=request.state.request_id,
            method=request.method,
            uri=str(request.url.path),
            response_code=response.status_code,
            latency=f"{(time.perf_counter() - start) * 1000:.2f}ms",
        )
        response.headers["X-Request-Id"] = request.state.request_id
        return response

    @app.exception_handler(ExtensionError)
    async def extension_error_handler(request: Request, exc: ExtensionError) -> JSONResponse:
        log.warning("request rejected", error=exc.message, status_code=exc.status_code)
        return _error(request, exc.status_code, exc.message)

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return _error(request, exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'] if p != 'body') or 'body'}: {err['msg']}"
            for err in exc.errors()
        )
        return _error(request, 400, f"Malformed request: {problems}")

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        log.exception("unhandled error", request_id=_request_id(request))
        return _error(request, 500, "Internal server error")

    app.include_router(router)
    app.include_router(router, prefix="/api", include_in_schema=False)
    return app


def openapi_document() -> dict:
    """OpenAPI description of the lifecycle API, independent of any running extension."""
    app = FastAPI(title="Gofer Extension", version=__version__, docs_url=None, redoc_url=None)
    app.include_router(router)
    return app.openapi()
