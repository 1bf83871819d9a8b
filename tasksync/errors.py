"""
Error taxonomy shared by the sync engine, the push layer and the routes.
"""
from typing import Optional


class TaskSyncError(Exception):
    """Base class for all service errors."""


class AuthError(TaskSyncError):
    """Missing or invalid credentials."""


class ConflictError(TaskSyncError):
    """Client version is behind the server version and force was not requested."""

    def __init__(self, server_version: int, client_version: int):
        super().__init__(
            f"Server data is newer (server={server_version}, client={client_version})"
        )
        self.server_version = server_version
        self.client_version = client_version


class ValidationError(TaskSyncError):
    """Malformed task collection or subscription payload."""


class StorageError(TaskSyncError):
    """Persistence layer failure. The operation had no effect."""


class DispatchFailure(TaskSyncError):
    """
    A single push endpoint rejected or failed a delivery.

    Never surfaced to API callers; the dispatcher uses `gone` to decide
    whether the subscription should be pruned.
    """

    # Push services answer with these when a subscription is permanently invalid.
    GONE_STATUSES = (401, 403, 404, 410)

    def __init__(self, endpoint: str, status_code: Optional[int] = None, reason: str = ""):
        super().__init__(reason or f"push delivery failed (status={status_code})")
        self.endpoint = endpoint
        self.status_code = status_code
        self.reason = reason

    @property
    def gone(self) -> bool:
        return self.status_code in self.GONE_STATUSES
