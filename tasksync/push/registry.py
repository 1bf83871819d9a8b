"""
Push subscription registry.
"""
import time
import structlog
from typing import List, Optional

from tasksync.database import StorageManager, storage_manager
from tasksync.push.models import Subscription


logger = structlog.get_logger()


def short_endpoint(endpoint: str) -> str:
    """Endpoint trimmed for logs; the tail is a bearer-like secret."""
    return endpoint[:48] + "…" if len(endpoint) > 48 else endpoint


class SubscriptionRegistry:
    """
    Stores per-account push endpoints.

    Endpoints are unique: subscribing an endpoint again moves it to the new
    owner and replaces its keys. Deletes are idempotent so concurrent
    dispatches may prune the same endpoint safely.
    """

    def __init__(self, storage: StorageManager):
        self.storage = storage

    def add(self, subscription: Subscription) -> None:
        """Insert or replace a subscription."""
        self.storage.execute(
            """
            INSERT OR REPLACE INTO push_subscriptions
                (endpoint, username, p256dh, auth, expiration_time, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                subscription.endpoint,
                subscription.owner,
                subscription.p256dh,
                subscription.auth,
                subscription.expiration_time,
                int(time.time()),
            ],
        )
        logger.info(
            "subscription_saved",
            account=subscription.owner,
            endpoint=short_endpoint(subscription.endpoint),
        )

    def list_for(self, account: str) -> List[Subscription]:
        """All subscriptions owned by an account."""
        rows = self.storage.fetch_all(
            """
            SELECT endpoint, username, p256dh, auth, expiration_time
            FROM push_subscriptions
            WHERE username = ?
            ORDER BY created_at ASC, rowid ASC
            """,
            [account],
        )
        return [
            Subscription(
                endpoint=row[0],
                owner=row[1],
                p256dh=row[2],
                auth=row[3],
                expiration_time=row[4],
            )
            for row in rows
        ]

    def remove(self, endpoint: str, account: Optional[str] = None) -> bool:
        """
        Delete one endpoint.

        Args:
            endpoint: Subscription endpoint
            account: Restrict the delete to this owner

        Returns:
            True if a row was deleted; deleting a missing endpoint is not an error
        """
        if account is None:
            deleted = self.storage.execute(
                "DELETE FROM push_subscriptions WHERE endpoint = ?",
                [endpoint],
            )
        else:
            deleted = self.storage.execute(
                "DELETE FROM push_subscriptions WHERE endpoint = ? AND username = ?",
                [endpoint, account],
            )

        if deleted:
            logger.info("subscription_removed", endpoint=short_endpoint(endpoint))
        return deleted > 0

    def remove_all(self, account: str) -> int:
        """Delete every subscription of an account."""
        deleted = self.storage.execute(
            "DELETE FROM push_subscriptions WHERE username = ?",
            [account],
        )
        logger.info("subscriptions_removed", account=account, count=deleted)
        return deleted


# Global registry instance
subscription_registry = SubscriptionRegistry(storage_manager)


def get_subscription_registry() -> SubscriptionRegistry:
    """Dependency injection for the subscription registry."""
    return subscription_registry
