"""
Web Push API routes.
"""
import structlog
from typing import Optional
from fastapi import APIRouter, Body, Depends, HTTPException, status

from tasksync.auth.dependencies import get_current_account
from tasksync.push.dispatcher import NotificationDispatcher, get_notification_dispatcher
from tasksync.push.models import (
    PublicKeyResponse,
    SubscribeRequest,
    Subscription,
    SuccessResponse,
    TestPushResponse,
    UnsubscribeRequest,
)
from tasksync.push.registry import SubscriptionRegistry, get_subscription_registry
from tasksync.push.vapid import VapidKeyStore, get_vapid_key_store
from tasksync.reminders.payload import build_test_payload


logger = structlog.get_logger()
router = APIRouter(prefix="/push", tags=["push"])


@router.get("/public-key", response_model=PublicKeyResponse)
async def get_public_key(
    key_store: VapidKeyStore = Depends(get_vapid_key_store),
):
    """
    Application server key for `pushManager.subscribe`.

    Generated on first request and reused afterwards.
    """
    keys = key_store.get_or_create()
    return PublicKeyResponse(key=keys.public_key)


@router.post("/subscribe", response_model=SuccessResponse)
async def subscribe(
    request: SubscribeRequest,
    account: str = Depends(get_current_account),
    registry: SubscriptionRegistry = Depends(get_subscription_registry),
):
    """
    Register this device's push subscription for the current account.

    Subscribing an endpoint that is already known replaces its keys.
    """
    browser_subscription = request.subscription
    registry.add(
        Subscription(
            endpoint=browser_subscription.endpoint,
            owner=account,
            p256dh=browser_subscription.keys.p256dh,
            auth=browser_subscription.keys.auth,
            expiration_time=browser_subscription.expirationTime,
        )
    )
    return SuccessResponse(success=True)


@router.post("/unsubscribe", response_model=SuccessResponse)
async def unsubscribe(
    request: Optional[UnsubscribeRequest] = Body(default=None),
    account: str = Depends(get_current_account),
    registry: SubscriptionRegistry = Depends(get_subscription_registry),
):
    """
    Remove a push subscription.

    Without an `endpoint`, every subscription of the current account is removed.
    """
    endpoint = request.endpoint if request else None

    if endpoint:
        registry.remove(endpoint, account=account)
    else:
        registry.remove_all(account)

    return SuccessResponse(success=True)


@router.post("/test", response_model=TestPushResponse)
async def send_test_push(
    account: str = Depends(get_current_account),
    registry: SubscriptionRegistry = Depends(get_subscription_registry),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """
    Send a test notification to every device of the current account.
    """
    if not registry.list_for(account):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No push subscription"
        )

    report = await dispatcher.dispatch_with_report(account, build_test_payload())

    logger.info("test_push_sent", account=account, sent=len(report.sent))
    return TestPushResponse(success=report.sent_any, sent=len(report.sent))
