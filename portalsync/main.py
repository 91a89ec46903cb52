"""FastAPI status surface for the sync runtime."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from portalsync.infra.logging import app_logger
from portalsync.infra.middleware import RequestIDMiddleware, RequestLoggingMiddleware, setup_cors
from portalsync.runtime import SyncRuntime


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown."""
    app_logger.info("Application starting up")
    runtime: SyncRuntime = app.state.runtime
    runtime.start()

    yield

    app_logger.info("Application shutting down")
    await runtime.aclose()


def create_app(runtime: Optional[SyncRuntime] = None) -> FastAPI:
    """Build the application around a runtime (a default one when not given)."""
    app = FastAPI(
        title="Portal Sync",
        description="Push channel status and merged notifications for the portal UI shell.",
        version="1.0.0",
        lifespan=lifespan,
        tags_metadata=[
            {
                "name": "Notifications",
                "description": "Merged message, activity and tracking notifications",
            },
            {
                "name": "Health",
                "description": "Health check and monitoring endpoints",
            },
        ],
    )
    app.state.runtime = runtime or SyncRuntime()

    # Last added runs first: the request id is set before the request is logged
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    setup_cors(app)

    from portalsync.api.routers import health, notifications

    app.include_router(health.router)
    app.include_router(notifications.router)
    return app


app = create_app()
