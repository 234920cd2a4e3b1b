from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from authkernel.api.error_handling import register_exception_handlers
from authkernel.api.routes import router
from authkernel.logging import get_logger, set_correlation_id
from authkernel.storage.errors import StoreUnavailable

logger = get_logger(__name__)

__version__ = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime eagerly so configuration errors fail startup."""
    from authkernel.service.runtime import get_runtime

    runtime = get_runtime()
    logger.info("app_started", version=__version__, roles=runtime.settings.roles)

    yield

    try:
        get_runtime().close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="authkernel", version=__version__, lifespan=lifespan)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag each request with a correlation ID.

    Taken from the X-Request-ID header when the client sends one, generated
    otherwise, and echoed back in the response header.
    """
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = set_correlation_id(client_request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    # Responses carry credentials; proxies must not cache them
    if request.url.path.startswith("/api/") or request.url.path == "/healthz":
        response.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, private")
    if request.url.scheme == "https":
        response.headers.setdefault(
            "Strict-Transport-Security", "max-age=63072000; includeSubDomains"
        )
    return response


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz")
async def health() -> Dict[str, Any]:
    """Report store connectivity and the running version."""
    from authkernel.service.runtime import get_runtime

    runtime = get_runtime()
    store_type = "memory" if runtime.settings.use_memory_store else "postgres"
    try:
        healthy = runtime.store.verify_connection()
    except StoreUnavailable as exc:
        logger.warning("health_check_store_failed", error=exc.message)
        healthy = False
    body = {
        "status": "healthy" if healthy else "unhealthy",
        "version": __version__,
        "checks": {"store": {"type": store_type, "healthy": healthy}},
    }
    if not healthy:
        return JSONResponse(status_code=503, content=body)
    return body
