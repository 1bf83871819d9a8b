"""
libSQL storage manager.

A single database file holds every account's snapshot, the push
subscriptions and server-wide settings (VAPID keys).
"""
import time
import structlog
from pathlib import Path
from typing import Any, List, Optional, Sequence

import libsql

from tasksync.config import settings
from tasksync.errors import StorageError


logger = structlog.get_logger()


SCHEMA_VERSION = 1


class StorageManager:
    """
    Owns the libSQL connection and the schema.

    Architecture:
    - One connection per process, opened lazily
    - Automatic schema migration on first access
    - Every driver error is re-raised as StorageError
    """

    def __init__(self, database_path: str):
        self.database_path = Path(database_path)
        self._connection: Optional[Any] = None

    def get_connection(self):
        """Get or create the database connection."""
        if self._connection is not None:
            return self._connection

        try:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = libsql.connect(str(self.database_path))
            logger.info("database_connected", path=str(self.database_path))
        except Exception as e:
            logger.error("database_connection_failed", path=str(self.database_path), error=str(e))
            raise StorageError(f"Cannot open database: {e}") from e

        self._ensure_schema()
        return self._connection

    def _ensure_schema(self) -> None:
        """
        Ensure database has correct schema version.
        Runs migrations if needed.
        """
        conn = self._connection
        try:
            rows = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
            ).fetchall()

            current_version = 0
            if rows:
                version_rows = conn.execute(
                    "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
                ).fetchall()
                current_version = version_rows[0][0] if version_rows else 0

            logger.info("schema_version_check", version=current_version)

            if current_version < 1:
                self._run_migration_v001(conn)

        except Exception as e:
            logger.error("schema_check_failed", error=str(e))
            raise StorageError(f"Schema migration failed: {e}") from e

    def _run_migration_v001(self, conn) -> None:
        """Run initial schema migration."""
        statements = [
            """
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            )
            """,
            # One snapshot per account
            """
            CREATE TABLE IF NOT EXISTS snapshots (
                username TEXT PRIMARY KEY,
                json_data TEXT NOT NULL,
                version INTEGER NOT NULL
            )
            """,
            # Web Push subscriptions, keyed by endpoint
            """
            CREATE TABLE IF NOT EXISTS push_subscriptions (
                endpoint TEXT PRIMARY KEY,
                username TEXT NOT NULL,
                p256dh TEXT NOT NULL,
                auth TEXT NOT NULL,
                expiration_time INTEGER,
                created_at INTEGER NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_push_subscriptions_user ON push_subscriptions(username)",
            # Server-wide key/value settings
            """
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
            """,
        ]

        for statement in statements:
            conn.execute(statement)

        conn.execute(
            "INSERT OR REPLACE INTO schema_version (version, applied_at) VALUES (?, ?)",
            (SCHEMA_VERSION, int(time.time())),
        )
        conn.commit()
        logger.info("migration_v001_completed")

    # ========== Query Helpers ==========

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[tuple]:
        """Run a query and return the first row, if any."""
        try:
            return self.get_connection().execute(sql, tuple(params)).fetchone()
        except StorageError:
            raise
        except Exception as e:
            logger.error("database_query_failed", error=str(e))
            raise StorageError(f"Query failed: {e}") from e

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[tuple]:
        """Run a query and return every row."""
        try:
            return self.get_connection().execute(sql, tuple(params)).fetchall()
        except StorageError:
            raise
        except Exception as e:
            logger.error("database_query_failed", error=str(e))
            raise StorageError(f"Query failed: {e}") from e

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """
        Run a single write statement and commit it.

        Returns:
            Number of affected rows

        Raises:
            StorageError: the statement failed and was rolled back
        """
        conn = self.get_connection()
        try:
            cursor = conn.execute(sql, tuple(params))
            conn.commit()
            return cursor.rowcount
        except Exception as e:
            try:
                conn.rollback()
            except Exception as rollback_error:
                logger.error("database_rollback_failed", error=str(rollback_error))
            logger.error("database_write_failed", error=str(e))
            raise StorageError(f"Write failed: {e}") from e

    def close_connection(self) -> None:
        """Close the database connection."""
        if self._connection is None:
            return
        try:
            self._connection.close()
            logger.info("connection_closed", path=str(self.database_path))
        except Exception as e:
            logger.error("connection_close_failed", error=str(e))
        finally:
            self._connection = None


# Global storage manager instance
storage_manager = StorageManager(settings.database_path)


def get_storage_manager() -> StorageManager:
    """Dependency injection for storage manager."""
    return storage_manager
