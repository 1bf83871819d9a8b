"""
Tests for push subscriptions, VAPID keys and the notification dispatcher.
"""
import asyncio
import base64
import time
from unittest.mock import Mock, patch

import pytest
from pywebpush import WebPushException

from tasksync.push.models import NotificationPayload, Subscription
from tasksync.push.vapid import generate_vapid_keys


ENDPOINT_1 = "https://push.example.com/send/device-1"
ENDPOINT_2 = "https://push.example.com/send/device-2"

PAYLOAD = NotificationPayload(title="Dentist", body="Starts at 09:30", url="/", tag="task-1")


def make_subscription(endpoint: str, owner: str = "alice") -> Subscription:
    return Subscription(endpoint=endpoint, owner=owner, p256dh="p256dh-key", auth="auth-secret")


def push_error(status_code: int) -> WebPushException:
    return WebPushException("Push failed", response=Mock(status_code=status_code))


def b64url_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


# ========== Registry Tests ==========

def test_registry_add_and_list(registry):
    registry.add(make_subscription(ENDPOINT_1))
    registry.add(make_subscription(ENDPOINT_2))
    registry.add(make_subscription("https://push.example.com/send/bob", owner="bob"))

    endpoints = [s.endpoint for s in registry.list_for("alice")]

    assert sorted(endpoints) == [ENDPOINT_1, ENDPOINT_2]


def test_registry_resubscribe_replaces(registry):
    """Endpoints are unique; re-subscribing moves the endpoint and its keys."""
    registry.add(make_subscription(ENDPOINT_1, owner="alice"))
    registry.add(
        Subscription(endpoint=ENDPOINT_1, owner="bob", p256dh="new-key", auth="new-auth")
    )

    assert registry.list_for("alice") == []
    [subscription] = registry.list_for("bob")
    assert subscription.p256dh == "new-key"


def test_registry_remove_is_idempotent(registry):
    registry.add(make_subscription(ENDPOINT_1))

    registry.remove(ENDPOINT_1)
    registry.remove(ENDPOINT_1)

    assert registry.list_for("alice") == []


def test_registry_remove_scoped_to_owner(registry):
    """An account cannot drop another account's endpoint."""
    registry.add(make_subscription(ENDPOINT_1, owner="alice"))

    registry.remove(ENDPOINT_1, account="bob")

    assert len(registry.list_for("alice")) == 1


def test_registry_remove_all(registry):
    registry.add(make_subscription(ENDPOINT_1))
    registry.add(make_subscription(ENDPOINT_2))
    registry.add(make_subscription("https://push.example.com/send/bob", owner="bob"))

    registry.remove_all("alice")

    assert registry.list_for("alice") == []
    assert len(registry.list_for("bob")) == 1


# ========== VAPID Tests ==========

def test_generate_vapid_keys_encoding():
    keys = generate_vapid_keys()

    public = b64url_decode(keys.public_key)
    assert len(public) == 65
    assert public[0] == 0x04  # uncompressed point
    assert len(b64url_decode(keys.private_key)) == 32
    assert "=" not in keys.public_key


def test_vapid_keys_persisted_once(storage, key_store):
    from tasksync.push.vapid import VapidKeyStore

    first = key_store.get_or_create()
    # A fresh store on the same database sees the same pair
    second = VapidKeyStore(storage).get_or_create()

    assert first == second


# ========== Dispatcher Tests ==========

@pytest.mark.asyncio
async def test_dispatch_without_subscriptions(dispatcher):
    with patch("tasksync.push.dispatcher.webpush") as mock_webpush:
        sent_any = await dispatcher.dispatch("alice", PAYLOAD)

    assert sent_any is False
    mock_webpush.assert_not_called()


@pytest.mark.asyncio
async def test_dispatch_sends_to_every_endpoint(dispatcher, registry, key_store):
    registry.add(make_subscription(ENDPOINT_1))
    registry.add(make_subscription(ENDPOINT_2))

    with patch("tasksync.push.dispatcher.webpush") as mock_webpush:
        sent_any = await dispatcher.dispatch("alice", PAYLOAD)

    assert sent_any is True
    assert mock_webpush.call_count == 2

    kwargs = mock_webpush.call_args.kwargs
    assert kwargs["vapid_private_key"] == key_store.get_or_create().private_key
    assert kwargs["vapid_claims"]["sub"].startswith("mailto:")
    assert '"tag":"task-1"' in kwargs["data"]


@pytest.mark.asyncio
async def test_dispatch_prunes_gone_endpoint(dispatcher, registry):
    """410 Gone deletes the subscription; the next dispatch skips it."""
    registry.add(make_subscription(ENDPOINT_1))

    with patch("tasksync.push.dispatcher.webpush", side_effect=push_error(410)):
        sent_any = await dispatcher.dispatch("alice", PAYLOAD)

    assert sent_any is False
    assert registry.list_for("alice") == []

    with patch("tasksync.push.dispatcher.webpush") as mock_webpush:
        assert await dispatcher.dispatch("alice", PAYLOAD) is False
    mock_webpush.assert_not_called()


@pytest.mark.parametrize("status_code", [401, 403, 404])
@pytest.mark.asyncio
async def test_dispatch_prunes_unauthorized_endpoints(dispatcher, registry, status_code):
    registry.add(make_subscription(ENDPOINT_1))

    with patch("tasksync.push.dispatcher.webpush", side_effect=push_error(status_code)):
        await dispatcher.dispatch("alice", PAYLOAD)

    assert registry.list_for("alice") == []


@pytest.mark.asyncio
async def test_dispatch_keeps_endpoint_on_transient_failure(dispatcher, registry):
    registry.add(make_subscription(ENDPOINT_1))

    with patch("tasksync.push.dispatcher.webpush", side_effect=push_error(503)):
        report = await dispatcher.dispatch_with_report("alice", PAYLOAD)

    assert report.sent_any is False
    assert report.failed == [ENDPOINT_1]
    assert len(registry.list_for("alice")) == 1


@pytest.mark.asyncio
async def test_dispatch_partial_success(dispatcher, registry):
    """One endpoint gone, one delivered: counts as sent, gone one is pruned."""
    registry.add(make_subscription(ENDPOINT_1))
    registry.add(make_subscription(ENDPOINT_2))

    def fake_webpush(subscription_info, **kwargs):
        if subscription_info["endpoint"] == ENDPOINT_1:
            raise push_error(410)

    with patch("tasksync.push.dispatcher.webpush", side_effect=fake_webpush):
        report = await dispatcher.dispatch_with_report("alice", PAYLOAD)

    assert report.sent == [ENDPOINT_2]
    assert report.pruned == [ENDPOINT_1]
    assert [s.endpoint for s in registry.list_for("alice")] == [ENDPOINT_2]


@pytest.mark.asyncio
async def test_dispatch_connection_error_is_swallowed(dispatcher, registry):
    registry.add(make_subscription(ENDPOINT_1))

    with patch("tasksync.push.dispatcher.webpush", side_effect=ConnectionError("reset")):
        assert await dispatcher.dispatch("alice", PAYLOAD) is False

    assert len(registry.list_for("alice")) == 1


@pytest.mark.asyncio
async def test_slow_endpoint_does_not_block_others(registry, key_store):
    """A hanging endpoint times out on its own while the other is delivered."""
    from tasksync.push.dispatcher import NotificationDispatcher

    dispatcher = NotificationDispatcher(registry, key_store, timeout=0.1)
    registry.add(make_subscription(ENDPOINT_1))
    registry.add(make_subscription(ENDPOINT_2))

    def fake_webpush(subscription_info, **kwargs):
        if subscription_info["endpoint"] == ENDPOINT_1:
            time.sleep(2)

    with patch("tasksync.push.dispatcher.webpush", side_effect=fake_webpush):
        started = asyncio.get_running_loop().time()
        report = await dispatcher.dispatch_with_report("alice", PAYLOAD)
        elapsed = asyncio.get_running_loop().time() - started

    assert report.sent == [ENDPOINT_2]
    assert report.failed == [ENDPOINT_1]
    assert elapsed < 2


# ========== Endpoint Tests ==========

SUBSCRIBE_BODY = {
    "subscription": {
        "endpoint": ENDPOINT_1,
        "keys": {"p256dh": "p256dh-key", "auth": "auth-secret"},
        "expirationTime": None,
    }
}


def test_public_key_endpoint_is_stable(client):
    first = client.get("/api/push/public-key")
    second = client.get("/api/push/public-key")

    assert first.status_code == 200
    assert first.json()["key"]
    assert first.json() == second.json()


def test_subscribe_endpoint(client, auth_headers, registry):
    response = client.post("/api/push/subscribe", json=SUBSCRIBE_BODY, headers=auth_headers())

    assert response.status_code == 200
    assert response.json() == {"success": True}
    [subscription] = registry.list_for("alice")
    assert subscription.endpoint == ENDPOINT_1
    assert subscription.auth == "auth-secret"


def test_subscribe_rejects_missing_keys(client, auth_headers, registry):
    body = {"subscription": {"endpoint": ENDPOINT_1, "keys": {"p256dh": "x"}}}

    response = client.post("/api/push/subscribe", json=body, headers=auth_headers())

    assert response.status_code == 422
    assert registry.list_for("alice") == []


def test_subscribe_requires_auth(client):
    response = client.post("/api/push/subscribe", json=SUBSCRIBE_BODY)
    assert response.status_code == 401


def test_unsubscribe_single_endpoint(client, auth_headers, registry):
    registry.add(make_subscription(ENDPOINT_1))
    registry.add(make_subscription(ENDPOINT_2))

    response = client.post(
        "/api/push/unsubscribe", json={"endpoint": ENDPOINT_1}, headers=auth_headers()
    )

    assert response.status_code == 200
    assert [s.endpoint for s in registry.list_for("alice")] == [ENDPOINT_2]


def test_unsubscribe_without_endpoint_removes_all(client, auth_headers, registry):
    registry.add(make_subscription(ENDPOINT_1))
    registry.add(make_subscription(ENDPOINT_2))

    response = client.post("/api/push/unsubscribe", headers=auth_headers())

    assert response.status_code == 200
    assert registry.list_for("alice") == []


def test_test_push_without_subscription_is_404(client, auth_headers):
    response = client.post("/api/push/test", headers=auth_headers())
    assert response.status_code == 404


def test_test_push_sends(client, auth_headers, registry):
    registry.add(make_subscription(ENDPOINT_1))

    with patch("tasksync.push.dispatcher.webpush") as mock_webpush:
        response = client.post("/api/push/test", headers=auth_headers())

    assert response.status_code == 200
    assert response.json() == {"success": True, "sent": 1}
    assert '"tag":"test-push"' in mock_webpush.call_args.kwargs["data"]
