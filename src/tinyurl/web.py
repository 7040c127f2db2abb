"""
FastAPI application for the URL shortener.

Endpoints:
- POST /u            shorten the 'url' form or query field, returns {"id": key}
- GET  /r/{key}      redirect to the stored URL
- GET  /dump/{token} CSV export of every mapping
- GET  /health       liveness check
"""

import io
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware

from . import __version__
from .audit_logger import AuditLogger, request_context
from .exceptions import (
    AccessDenied,
    CollisionExhaustedError,
    InvalidInputError,
    ReputationDeniedError,
    StorageError,
    TinyURLError,
    UnreachableError,
)
from .persistence import DUMP_ENCODING
from .service import ShortenerService


REQUEST_ID_HEADER = "X-Request-ID"

# HTTP status for each error family; anything else is a server error
ERROR_STATUS = (
    (InvalidInputError, 400),
    (ReputationDeniedError, 400),
    (UnreachableError, 400),
    (AccessDenied, 403),
    (CollisionExhaustedError, 500),
    (StorageError, 500),
)


def status_for(error: TinyURLError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds a request id and the client address to every log entry of a request."""

    def __init__(self, app, logger: Optional[AuditLogger] = None):
        super().__init__(app)
        self.logger = logger

    async def dispatch(self, request: Request, call_next: Callable):
        client_ip = request.client.host if request.client else None
        request_id = request.headers.get(REQUEST_ID_HEADER)
        with request_context(client_ip=client_ip, request_id=request_id) as context:
            start_time = time.time()
            response = await call_next(request)
            duration_ms = (time.time() - start_time) * 1000
            if self.logger:
                self.logger.debug(
                    "HTTP",
                    f"{request.method} {request.url.path} {response.status_code}",
                    {"duration_ms": round(duration_ms, 2)},
                )
            response.headers[REQUEST_ID_HEADER] = context["request_id"]
            return response


def create_app(
    service: ShortenerService,
    logger: Optional[AuditLogger] = None,
    manage_lifecycle: bool = True,
) -> FastAPI:
    """
    Create the FastAPI application around a service.

    Args:
        service: Service handling every request
        logger: Optional audit logger for request logging
        manage_lifecycle: Open the service on startup and close it on shutdown

    Returns:
        Configured FastAPI app
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_lifecycle:
            await service.open()
        try:
            yield
        finally:
            if manage_lifecycle:
                await service.close()

    app = FastAPI(
        title="TinyURL",
        description="URL shortener with reputation checks",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.service = service
    app.add_middleware(RequestContextMiddleware, logger=logger)

    @app.exception_handler(TinyURLError)
    async def handle_tinyurl_error(request: Request, exc: TinyURLError):
        status = status_for(exc)
        if logger and status >= 500:
            logger.log_error("HTTP", exc.message, error=exc, request_url=str(request.url.path))
        return JSONResponse(status_code=status, content={"error": exc.to_dict()})

    @app.post("/u")
    async def shorten(request: Request):
        url = request.query_params.get("url")
        if url is None:
            form = await request.form()
            value = form.get("url")
            url = value if isinstance(value, str) else None
        result = await service.submit(url)
        return result.to_response()

    @app.get("/r/{key}")
    async def redirect(key: str):
        record = service.resolve(key)
        if record is None:
            return JSONResponse(status_code=404, content={"error": {"code": "not_found", "message": "Not Found"}})
        return RedirectResponse(record.url, status_code=302)

    @app.get("/dump/{token}")
    async def dump(token: str):
        buffer = io.BytesIO()
        service.dump(buffer, token)
        return Response(
            content=buffer.getvalue(),
            media_type=f"text/csv; charset={DUMP_ENCODING.upper()}",
        )

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app
