"""
Sync service business logic.

Request-facing get/put over the versioned store. Conflicts are surfaced to
the caller; the server never merges collections.
"""
import structlog
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple, Union

from tasksync.config import settings
from tasksync.errors import ConflictError, ValidationError
from tasksync.sync.store import VersionedStore


logger = structlog.get_logger()


@dataclass(frozen=True)
class Accepted:
    version: int


@dataclass(frozen=True)
class Conflict:
    server_version: int

    def raise_error(self, client_version: int) -> None:
        raise ConflictError(self.server_version, client_version)


PutOutcome = Union[Accepted, Conflict]


class SyncService:
    """
    Sync coordinator for whole-collection replace with conflict detection.

    Protocol:
    - GET returns the server collection and its version
    - PUT carries the last version the client saw
    - A stale PUT without force is rejected with the server version so the
      client can reload or retry with force
    """

    def __init__(self, store: VersionedStore, max_tasks: int = settings.max_tasks_per_sync):
        self.store = store
        self.max_tasks = max_tasks

    async def get(self, account: str) -> Tuple[List[Dict[str, Any]], int]:
        """
        Get the account's collection.

        Args:
            account: Authenticated username

        Returns:
            (collection, version); ([], 0) for an account that never synced
        """
        snapshot = await self.store.read(account)

        logger.info(
            "sync_pull_completed",
            account=account,
            tasks_count=len(snapshot.collection),
            version=snapshot.version,
        )
        return snapshot.collection, snapshot.version

    async def put(
        self,
        account: str,
        collection: List[Dict[str, Any]],
        client_version: int,
        force: bool = False,
    ) -> PutOutcome:
        """
        Replace the account's collection.

        Args:
            account: Authenticated username
            collection: Complete new collection
            client_version: Last server version the client saw
            force: Overwrite even if the server is newer

        Returns:
            Accepted with the new version, or Conflict with the server version

        Raises:
            ValidationError: collection is not a list of task objects or too large
        """
        self._validate(collection)

        result = await self.store.write(account, collection, client_version, force)

        if not result.accepted:
            logger.warning(
                "sync_push_conflict",
                account=account,
                client_version=client_version,
                server_version=result.server_version,
            )
            return Conflict(server_version=result.server_version)

        return Accepted(version=result.new_version)

    def _validate(self, collection: List[Dict[str, Any]]) -> None:
        if not isinstance(collection, list):
            raise ValidationError("data must be a list of tasks")
        if len(collection) > self.max_tasks:
            raise ValidationError(
                f"Too many tasks: {len(collection)} (limit {self.max_tasks})"
            )
        for item in collection:
            if not isinstance(item, dict) or "id" not in item:
                raise ValidationError("Every task must be an object with an id")
