"""Health check API router."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from portalsync.api.dependencies import get_runtime
from portalsync.api.models import ConnectionStatusResponse, HealthResponse
from portalsync.infra.metrics import get_metrics_response
from portalsync.models.connection import ConnectionState
from portalsync.runtime import SyncRuntime

router = APIRouter()


def _push_status(runtime: SyncRuntime) -> ConnectionStatusResponse:
    connection = runtime.connection
    return ConnectionStatusResponse(
        state=connection.state,
        attempt=connection.attempt,
        retry_pending=connection.retry_pending,
        url=connection.url,
    )


@router.get("/health", tags=["Health"], response_model=HealthResponse)
async def health_check(runtime: SyncRuntime = Depends(get_runtime)):
    """Combined health check endpoint."""
    return HealthResponse(status="ok", push=_push_status(runtime))


@router.get("/health/live", tags=["Health"])
async def liveness():
    """Liveness check - indicates if the process is running."""
    return {"status": "alive"}


@router.get("/health/ready", tags=["Health"])
async def readiness(runtime: SyncRuntime = Depends(get_runtime)):
    """Readiness check - ready while the push channel is connected."""
    if runtime.connection.state is ConnectionState.CONNECTED:
        return {"status": "ready"}
    return JSONResponse(
        status_code=503,
        content={"status": "not_ready", "push_state": runtime.connection.state.value},
    )


@router.get("/metrics", tags=["Health"])
async def metrics():
    """Prometheus metrics endpoint."""
    return get_metrics_response()
