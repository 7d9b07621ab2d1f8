from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import FastAPI

from lessonhub.api.error_handling import register_exception_handlers
from lessonhub.api.middleware import JsonEnvelopeMiddleware
from lessonhub.api.routes import router
from lessonhub.config import Settings
from lessonhub.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

_settings = Settings.from_env()

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 3


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime on startup and release the AI client on shutdown."""
    from lessonhub.service.runtime import get_runtime

    try:
        get_runtime()
        logger.info("app_started", version=__version__)
    except Exception as exc:
        logger.error("startup_failed", error=str(exc))
        raise

    yield

    try:
        await get_runtime().close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="LessonHub API", version=__version__, lifespan=lifespan)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag the request with a correlation id (client ``X-Request-ID`` or a new UUID)."""
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


# Added last so it wraps everything else, including failures no handler caught
app.add_middleware(JsonEnvelopeMiddleware, allow_origin=_settings.frontend_url)

register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz")
async def health() -> Dict[str, Any]:
    """Liveness plus a bounded probe of the store."""
    from lessonhub.service.runtime import get_runtime

    runtime = get_runtime()
    store_ok = True
    try:
        await asyncio.wait_for(
            asyncio.to_thread(runtime.store.verify_connection),
            HEALTH_CHECK_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        logger.error("health_check_timeout", component="store", timeout=HEALTH_CHECK_TIMEOUT_SECONDS)
        store_ok = False
    except Exception as exc:
        logger.error("health_check_store_failed", error=str(exc))
        store_ok = False

    return {
        "status": "healthy" if store_ok else "unhealthy",
        "checks": {
            "store": {
                "status": "healthy" if store_ok else "unhealthy",
                "persistent": bool(runtime.settings.state_root),
            },
            "ai": {"status": "configured" if runtime.llm.is_configured else "placeholder"},
        },
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def create_app() -> FastAPI:
    return app
