"""FastAPI dependencies."""

from fastapi import HTTPException, Request, status

from portalsync.runtime import SyncRuntime


def get_runtime(request: Request) -> SyncRuntime:
    """The SyncRuntime owned by the application."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Sync runtime not initialized")
    return runtime
