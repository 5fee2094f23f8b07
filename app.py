from contextlib import asynccontextmanager
import os
import re
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend import create_backend
from backends.base import KVBackend
from constants import CORS_ALLOWED_ORIGINS, CORS_ALLOWED_PARENT_DOMAIN
from errors import ServiceError
from logging_config import get_logger, setup_logging
from routers.lan import lan_router
from routers.paste import paste_router

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


def parent_domain_regex(domain: str) -> Optional[str]:
    """Origin regex matching the domain itself and any https subdomain of it."""
    if not domain:
        return None
    return rf"https://([a-z0-9-]+\.)*{re.escape(domain)}"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
        else:
            logger.info(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0]["msg"] if errors else "Invalid request"
        logger.info(f"Rejected invalid request on {request.url.path}: {message}")
        return JSONResponse(status_code=400, content={"error": f"Invalid request body: {message}"})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(backend: Optional[KVBackend] = None) -> FastAPI:
    """Build the application.

    With no ``backend`` the KV backend is chosen from ``KV_MODE`` when the
    app starts and closed on shutdown. A backend passed in is owned by the
    caller.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if backend is not None:
            yield
            return
        app.state.backend = await create_backend()
        logger.info(f"KV backend ready ({app.state.backend.mode})")
        try:
            yield
        finally:
            await app.state.backend.close()
            logger.info("KV backend closed")

    app = FastAPI(title="Ephemeral Paste", lifespan=lifespan)
    if backend is not None:
        app.state.backend = backend

    # Only listed origins (plus subdomains of the parent domain) get CORS headers
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ALLOWED_ORIGINS,
        allow_origin_regex=parent_domain_regex(CORS_ALLOWED_PARENT_DOMAIN),
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    register_exception_handlers(app)
    app.include_router(paste_router)
    app.include_router(lan_router)

    logger.info("FastAPI application initialized")
    return app


app = create_app()
