"""
Main FastAPI Application - KSU CSOS rules and roles service
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from csos import __version__
from csos.backend import get_backend
from csos.common.config import get_settings
from csos.routes.api_audit import router as api_audit_router
from csos.routes.api_health import router as api_health_router
from csos.routes.api_proposals import router as api_proposals_router
from csos.routes.api_roles import router as api_roles_router
from csos.routes.api_routing import router as api_routing_router
from csos.routes.api_rules import router as api_rules_router
from csos.routes.api_work_queue import router as api_work_queue_router
from csos.utils.env import env_str
from csos.utils.error_handling import ConfigurationError
from csos.utils.responses import CORS_ALLOW_HEADERS, CORS_ALLOW_METHODS, error_response

logging.basicConfig(
    level=env_str("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Fail fast on missing backend configuration
    settings = get_settings()
    logger.info(f"csos {__version__} starting; rules from {settings.rules_storage}:{settings.rules_bucket}")
    yield
    if get_backend.cache_info().currsize:
        get_backend().close()
        get_backend.cache_clear()


app = FastAPI(title="ksu-csos", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_headers=CORS_ALLOW_HEADERS,
    allow_methods=CORS_ALLOW_METHODS,
)

# Include API routers
app.include_router(api_health_router)
app.include_router(api_roles_router)
app.include_router(api_routing_router)
app.include_router(api_proposals_router)
app.include_router(api_work_queue_router)
app.include_router(api_rules_router)
app.include_router(api_audit_router)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    detail = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}" for err in errors
    )
    return error_response(f"Invalid request: {detail}" if detail else "Invalid request", 400)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"Configuration error handling {request.url.path}: {exc}")
    return error_response(str(exc), 500)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return error_response(str(exc) or "Internal server error", 500)


@app.get("/")
async def root():
    return {
        "message": "KSU CSOS API",
        "version": __version__,
        "endpoints": [
            "/role_list", "/role_assign", "/routing_engine", "/proposal_approve",
            "/work_queue", "/audit_trail", "/api/rules/cache", "/api/rules/cache/clear",
            "/health", "/ready",
        ],
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)
