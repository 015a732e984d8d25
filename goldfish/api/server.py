"""
FastAPI server for the goldfish API. Run with run_api_server(goldfish_app).
Proxy routes live at /health, /api/canvas/* and /api/ustep/*; per-user task,
sync, credential and note routes are mounted under /api/users/{user_id}.
Docs: http://<host>:<port>/docs
"""
import logging
import time
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from goldfish.api import proxy, users
from goldfish.core.errors import GoldfishError

logger = logging.getLogger(__name__)


def create_app(goldfish_app: Any) -> FastAPI:
    """Create FastAPI app with routes that use the given GoldfishApp instance."""
    server_config = goldfish_app.config_data.get("server") or {}
    app = FastAPI(title="Goldfish API", description="Canvas, Classroom and USTeP task aggregation")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=server_config.get("cors_origins") or [],
        allow_origin_regex=server_config.get("cors_origin_regex"),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.monotonic()
        response = await call_next(request)
        elapsed_ms = (time.monotonic() - started) * 1000
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.0f} ms)")
        return response

    @app.exception_handler(GoldfishError)
    async def goldfish_error_handler(request: Request, exc: GoldfishError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.summary, "message": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": "Invalid request", "message": str(exc.errors())})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"error": "Invalid request", "message": str(exc)})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "message": "Something went wrong. Please try again."},
        )

    app.include_router(proxy.get_router(goldfish_app))
    app.include_router(users.get_router(goldfish_app), prefix="/api/users/{user_id}")

    return app


def run_api_server(goldfish_app: Any) -> None:
    """
    Serve the API in the foreground.
    Reads server.host (default 127.0.0.1) and server.port (default 3001) from config.
    """
    import uvicorn

    server_config = goldfish_app.config_data.get("server") or {}
    host = server_config.get("host", "127.0.0.1")
    port = int(server_config.get("port", 3001))
    fastapi_app = create_app(goldfish_app)
    logger.info(f"Proxy server running on http://{host}:{port} (docs at /docs)")
    uvicorn.run(fastapi_app, host=host, port=port, log_config=None)
