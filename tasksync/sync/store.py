"""
Versioned per-account snapshot storage.

Each account owns one JSON task collection and a version stamp. Writes are
whole-collection replaces guarded by an optimistic version check.
"""
import asyncio
import json
import time
import structlog
from collections import defaultdict
from typing import Any, Dict, List

from tasksync.database import StorageManager, storage_manager
from tasksync.errors import StorageError
from tasksync.sync.models import Snapshot, WriteResult


logger = structlog.get_logger()


def now_ms() -> int:
    return int(time.time() * 1000)


class VersionedStore:
    """
    Holds one snapshot per account with conflict-checked writes.

    Read-then-write for a single account runs under that account's lock;
    different accounts never wait on each other.
    """

    def __init__(self, storage: StorageManager, clock=now_ms):
        self.storage = storage
        self.clock = clock
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _load(self, account: str) -> Snapshot:
        row = self.storage.fetch_one(
            "SELECT json_data, version FROM snapshots WHERE username = ?",
            [account],
        )
        if not row:
            return Snapshot()

        try:
            collection = json.loads(row[0]) if row[0] else []
        except (json.JSONDecodeError, TypeError) as e:
            logger.error("snapshot_decode_failed", account=account, error=str(e))
            raise StorageError(f"Corrupt snapshot for {account}") from e

        return Snapshot(collection=collection, version=int(row[1] or 0))

    async def read(self, account: str) -> Snapshot:
        """
        Get the account's current snapshot.

        Returns:
            Snapshot; empty collection and version 0 if the account never wrote
        """
        async with self._locks[account]:
            return self._load(account)

    async def write(
        self,
        account: str,
        collection: List[Dict[str, Any]],
        client_version: int,
        force: bool = False,
    ) -> WriteResult:
        """
        Replace the account's collection if the caller is up to date.

        Args:
            account: Username
            collection: The complete new task collection
            client_version: Last server version the caller has seen
            force: Skip the version check

        Returns:
            WriteResult; accepted=False leaves the stored snapshot untouched
        """
        async with self._locks[account]:
            row = self.storage.fetch_one(
                "SELECT version FROM snapshots WHERE username = ?",
                [account],
            )
            server_version = int(row[0]) if row and row[0] else 0

            if not force and client_version < server_version:
                logger.info(
                    "sync_write_rejected",
                    account=account,
                    client_version=client_version,
                    server_version=server_version,
                )
                return WriteResult(accepted=False, new_version=None, server_version=server_version)

            # Clock ties or regressions must still move the version forward
            new_version = max(self.clock(), server_version + 1)

            self.storage.execute(
                "INSERT OR REPLACE INTO snapshots (username, json_data, version) VALUES (?, ?, ?)",
                [account, json.dumps(collection, ensure_ascii=False), new_version],
            )

            logger.info(
                "sync_write_accepted",
                account=account,
                forced=force,
                tasks_count=len(collection),
                server_version=server_version,
                new_version=new_version,
            )
            return WriteResult(accepted=True, new_version=new_version, server_version=server_version)

    async def accounts(self) -> List[str]:
        """List accounts holding a non-empty collection."""
        rows = self.storage.fetch_all(
            "SELECT username FROM snapshots WHERE json_data NOT IN ('', '[]') ORDER BY username"
        )
        return [row[0] for row in rows]


# Global store instance
versioned_store = VersionedStore(storage_manager)


def get_versioned_store() -> VersionedStore:
    """Dependency injection for the versioned store."""
    return versioned_store
