"""
ZK-PRET Composed Proofs - FastAPI Application.

Serves the composed proof engine over HTTP:
- ``/`` and ``/health``
- ``/api/v1/composed-proofs/...`` (templates, executions, cache)

Engine errors are returned as their ``to_dict()`` body with the error's
status code. Run locally with ``python -m src.api.main``.

Version: 1.0.0
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api import __version__
from src.api.middleware.request_context import RequestContextMiddleware
from src.api.routes.composed_proofs import router as composed_proofs_router
from src.composed_proofs import (
    ComposedProofError,
    get_composed_proof_config,
    get_composed_proof_service,
    set_composed_proof_service,
)
from src.utils.logging_config import configure_logging

load_dotenv()
configure_logging()
logger = logging.getLogger(__name__)

SERVICE_TITLE = "ZK-PRET Composed Proofs"


def _allowed_origins() -> List[str]:
    """CORS origins from CORS_ALLOWED_ORIGINS (comma separated), default any."""
    raw = os.environ.get("CORS_ALLOWED_ORIGINS", "*")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = get_composed_proof_config()
    service = get_composed_proof_service()
    environment = os.environ.get("ENVIRONMENT", "development")
    logger.info(
        f"{SERVICE_TITLE} v{__version__} starting: environment={environment}, "
        f"backend={config.backend.url}, templates={[t.id for t in service.get_templates()]}"
    )

    yield

    # The service may have been swapped (tests) while the app ran
    service = get_composed_proof_service()
    try:
        await service.close()
    except Exception as e:
        logger.warning(f"Closing executor adapter failed: {e}")
    finally:
        set_composed_proof_service(None)
    logger.info(f"{SERVICE_TITLE} stopped")


async def root() -> Dict[str, Any]:
    return {
        "service": SERVICE_TITLE,
        "version": __version__,
        "status": "online",
        "docs": "/api/docs",
        "health": "/health",
    }


async def health_check() -> Dict[str, Any]:
    """Liveness plus a snapshot of registry, cache and execution store sizes."""
    service = get_composed_proof_service()
    return {
        "status": "healthy",
        "service": "zk-pret-composed-proofs",
        "version": __version__,
        "timestamp": _now(),
        "components": {
            "templates": len(service.registry),
            "cache_entries": service.cache.size,
            "executions": service.store.stats(),
        },
    }


async def composed_proof_error_handler(request: Request, exc: ComposedProofError):
    # 4xx are caller mistakes and only worth an info line
    log = logger.error if exc.status_code >= 500 else logger.info
    log(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def not_found_handler(request: Request, exc: Exception):
    return JSONResponse(
        status_code=404,
        content={
            "error": "not_found",
            "message": f"Endpoint {request.url.path} not found",
            "available_docs": "/api/docs",
        },
    )


async def internal_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An internal error occurred.",
            "timestamp": _now(),
        },
    )


def create_app() -> FastAPI:
    """Build the application with middleware, routes and error handlers."""
    application = FastAPI(
        title=SERVICE_TITLE,
        description="Composition of zero-knowledge verification tools into dependency-ordered proofs",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(RequestContextMiddleware)

    application.add_api_route("/", root, methods=["GET"], tags=["Root"])
    application.add_api_route("/health", health_check, methods=["GET"], tags=["Health"])
    application.include_router(composed_proofs_router)

    application.add_exception_handler(ComposedProofError, composed_proof_error_handler)
    application.add_exception_handler(404, not_found_handler)
    application.add_exception_handler(500, internal_error_handler)
    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.api.main:app",
        host=os.environ.get("API_HOST", "0.0.0.0"),
        port=int(os.environ.get("API_PORT", "8000")),
        reload=True,
    )
