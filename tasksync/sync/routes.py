"""
Sync API routes.
"""
import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from tasksync.auth.dependencies import get_current_account
from tasksync.errors import StorageError, ValidationError
from tasksync.sync.service import SyncService, Conflict
from tasksync.sync.store import VersionedStore, get_versioned_store
from tasksync.sync.models import (
    SyncPullResponse,
    SyncPushRequest,
    SyncPushResponse,
    ConflictResponse,
)


logger = structlog.get_logger()
router = APIRouter(tags=["sync"])


def get_sync_service(
    store: VersionedStore = Depends(get_versioned_store),
) -> SyncService:
    """Dependency: Get SyncService instance."""
    return SyncService(store)


@router.get("/data", response_model=SyncPullResponse)
async def pull_data(
    account: str = Depends(get_current_account),
    sync_service: SyncService = Depends(get_sync_service),
):
    """
    Get the account's task collection.

    **Response:**
    - `data`: Complete task collection (empty for a new account)
    - `version`: Server version; send it back with the next write
    """
    collection, version = await sync_service.get(account)
    return SyncPullResponse(data=collection, version=version)


@router.post(
    "/data",
    response_model=SyncPushResponse,
    responses={status.HTTP_409_CONFLICT: {"model": ConflictResponse}},
)
async def push_data(
    request: SyncPushRequest,
    account: str = Depends(get_current_account),
    sync_service: SyncService = Depends(get_sync_service),
):
    """
    Replace the account's task collection.

    **Request Body:**
    - `data`: Complete task collection
    - `version`: Last server version this device has seen
    - `force`: Overwrite even if the server copy is newer

    **Conflict Resolution:**
    - If the server version is newer and `force` is false, the write is
      rejected with `409 {error: "Conflict", serverVersion}`
    - The client then either reloads the server copy or re-sends with `force`
    """
    try:
        outcome = await sync_service.put(
            account,
            request.collection(),
            request.version,
            request.force,
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    except StorageError:
        logger.error("sync_push_storage_failed", account=account)
        raise

    if isinstance(outcome, Conflict):
        outcome.raise_error(request.version)

    return SyncPushResponse(success=True, version=outcome.version)
