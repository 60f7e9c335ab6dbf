from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from estategate.api.error_handling import register_exception_handlers
from estategate.api.middleware import install_correlation_id, install_security_filters
from estategate.api.routes import router
from estategate.logging import get_logger
from estategate.service.runtime import get_runtime

logger = get_logger(__name__)

__version__ = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    get_runtime()
    yield
    try:
        get_runtime().close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


def create_app() -> FastAPI:
    app = FastAPI(title="EstateGate", version=__version__, lifespan=lifespan)
    register_exception_handlers(app)
    # Middleware added last runs first: correlation id wraps the filters
    install_security_filters(app, lambda: get_runtime().security_filters)
    install_correlation_id(app)
    app.include_router(router)

    @app.get("/healthz", tags=["health"])
    def health():
        return {"status": "ok", "version": __version__}

    return app


app = create_app()
