"""Notifications API router."""

from fastapi import APIRouter, Depends, HTTPException, Path

from portalsync.api.dependencies import get_runtime
from portalsync.api.models import AcknowledgeResponse
from portalsync.infra.error_handler import ErrorCategory, PullRequestError
from portalsync.models.notification import NotificationSnapshot
from portalsync.runtime import SyncRuntime

router = APIRouter()


def _pull_error_to_http(e: PullRequestError) -> HTTPException:
    if e.category is ErrorCategory.AUTH_ERROR:
        return HTTPException(status_code=e.status_code or 401, detail=e.message)
    return HTTPException(status_code=502, detail=e.message)


@router.get("/notifications", tags=["Notifications"], response_model=NotificationSnapshot)
async def list_notifications(runtime: SyncRuntime = Depends(get_runtime)):
    """Merged notification list from the last successful poll."""
    return runtime.notifications.snapshot()


@router.post("/notifications/acknowledge", tags=["Notifications"], response_model=AcknowledgeResponse)
async def acknowledge_notifications(runtime: SyncRuntime = Depends(get_runtime)):
    """The user opened the notification list; clears the new-notification indicator."""
    runtime.notifications.acknowledge()
    return AcknowledgeResponse(has_new=runtime.notifications.has_new)


@router.post("/notifications/activities/{activity_id}/read", tags=["Notifications"], response_model=NotificationSnapshot)
async def mark_activity_read(
    activity_id: int = Path(..., ge=1),
    runtime: SyncRuntime = Depends(get_runtime),
):
    """Mark an activity read through the portal and return the refreshed list."""
    try:
        await runtime.notifications.mark_activity_read(activity_id)
    except PullRequestError as e:
        raise _pull_error_to_http(e)
    return runtime.notifications.snapshot()
