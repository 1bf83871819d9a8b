"""
Web Push notification dispatcher.

Sends one payload to every endpoint of an account. Each endpoint is its own
task with its own timeout; a hanging push service never delays the others.
"""
import asyncio
import structlog
from typing import Optional

from pywebpush import webpush, WebPushException

from tasksync.config import settings
from tasksync.errors import DispatchFailure, StorageError
from tasksync.push.models import DispatchReport, NotificationPayload, Subscription
from tasksync.push.registry import SubscriptionRegistry, short_endpoint, subscription_registry
from tasksync.push.vapid import VapidKeys, VapidKeyStore, vapid_key_store


logger = structlog.get_logger()


class NotificationDispatcher:
    """
    Fan-out of a notification to an account's subscriptions.

    Outcomes per endpoint:
    - delivered: counts toward sent_any
    - gone/unauthorized/forbidden: subscription pruned, not retried
    - anything else: dropped for this dispatch
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        key_store: VapidKeyStore,
        subject: str = settings.vapid_subject,
        ttl: int = settings.push_ttl_seconds,
        timeout: float = settings.push_timeout_seconds,
    ):
        self.registry = registry
        self.key_store = key_store
        self.subject = subject
        self.ttl = ttl
        self.timeout = timeout

    async def dispatch(self, account: str, payload: NotificationPayload) -> bool:
        """
        Send payload to every subscription of account.

        Returns:
            True if at least one endpoint accepted the notification
        """
        report = await self.dispatch_with_report(account, payload)
        return report.sent_any

    async def dispatch_with_report(
        self, account: str, payload: NotificationPayload
    ) -> DispatchReport:
        report = DispatchReport()

        subscriptions = self.registry.list_for(account)
        if not subscriptions:
            logger.debug("dispatch_no_subscriptions", account=account)
            return report

        try:
            keys = self.key_store.get_or_create()
        except StorageError as e:
            logger.warning("dispatch_skipped_no_vapid_keys", account=account, error=str(e))
            return report

        data = payload.model_dump_json()

        results = await asyncio.gather(
            *(self._deliver(subscription, data, keys) for subscription in subscriptions)
        )

        for subscription, failure in zip(subscriptions, results):
            if failure is None:
                report.sent.append(subscription.endpoint)
            elif failure.gone:
                self._prune(subscription, failure)
                report.pruned.append(subscription.endpoint)
            else:
                report.failed.append(subscription.endpoint)

        logger.info(
            "dispatch_completed",
            account=account,
            tag=payload.tag,
            sent=len(report.sent),
            pruned=len(report.pruned),
            failed=len(report.failed),
        )
        return report

    async def _deliver(
        self, subscription: Subscription, data: str, keys: VapidKeys
    ) -> Optional[DispatchFailure]:
        """Send to one endpoint. Returns the failure instead of raising it."""
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._send, subscription, data, keys),
                timeout=self.timeout + 1,
            )
            return None
        except DispatchFailure as failure:
            return failure
        except asyncio.TimeoutError:
            return DispatchFailure(subscription.endpoint, reason="timeout")
        except Exception as e:
            logger.error(
                "push_send_error",
                endpoint=short_endpoint(subscription.endpoint),
                error=str(e),
            )
            return DispatchFailure(subscription.endpoint, reason=str(e))

    def _send(self, subscription: Subscription, data: str, keys: VapidKeys) -> None:
        """Blocking Web Push request; runs in a worker thread."""
        try:
            webpush(
                subscription_info=subscription.subscription_info(),
                data=data,
                vapid_private_key=keys.private_key,
                # webpush adds aud/exp to the claims dict, so it must not be shared
                vapid_claims={"sub": self.subject},
                ttl=self.ttl,
                timeout=self.timeout,
                headers={"Urgency": "high"},
            )
        except WebPushException as e:
            status_code = e.response.status_code if e.response is not None else None
            logger.warning(
                "push_send_rejected",
                endpoint=short_endpoint(subscription.endpoint),
                status=status_code,
            )
            raise DispatchFailure(subscription.endpoint, status_code, str(e)) from e

    def _prune(self, subscription: Subscription, failure: DispatchFailure) -> None:
        try:
            self.registry.remove(subscription.endpoint)
            logger.info(
                "subscription_pruned",
                account=subscription.owner,
                endpoint=short_endpoint(subscription.endpoint),
                status=failure.status_code,
            )
        except StorageError as e:
            logger.error(
                "subscription_prune_failed",
                endpoint=short_endpoint(subscription.endpoint),
                error=str(e),
            )


# Global dispatcher instance
notification_dispatcher = NotificationDispatcher(subscription_registry, vapid_key_store)


def get_notification_dispatcher() -> NotificationDispatcher:
    """Dependency injection for the notification dispatcher."""
    return notification_dispatcher
