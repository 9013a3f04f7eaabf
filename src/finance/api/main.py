"""FastAPI application factory."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlmodel import SQLModel

from finance.api.routes import sync as sync_routes
from finance.config import get_settings
from finance.db.engine import get_engine, import_models
from finance.sync.service import SyncError

logger = logging.getLogger(__name__)


def create_app(engine=None) -> FastAPI:
    """Build and return the FastAPI app.

    Args:
        engine: Engine whose tables are created on startup. Defaults to the
                configured module-level engine.
    """

    engine = engine or get_engine()
    logging.getLogger("finance").setLevel(get_settings().log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create tables on startup (idempotent)
        import_models()
        SQLModel.metadata.create_all(engine)
        yield

    app = FastAPI(
        title="Finance Sync API",
        description="Offline transaction sync for the personal finance backend",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.exception_handler(SyncError)
    async def sync_error_handler(request: Request, exc: SyncError):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "message": "Sync failed",
                "error": str(exc),
                "session_id": exc.session_id,
            },
        )

    @app.get("/health", tags=["health"])
    def health():
        return {"status": "ok"}

    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])

    return app


# Module-level app instance for uvicorn
app = create_app()
