"""
Web Push models and schemas.
"""
from dataclasses import dataclass, field
from typing import List, Optional
from pydantic import BaseModel, Field


# Internal Models
class Subscription(BaseModel):
    """A push endpoint registered by one device for one account."""
    endpoint: str
    owner: str
    p256dh: str
    auth: str
    expiration_time: Optional[int] = None

    def subscription_info(self) -> dict:
        """Shape expected by pywebpush."""
        return {
            "endpoint": self.endpoint,
            "keys": {"p256dh": self.p256dh, "auth": self.auth},
        }


class NotificationPayload(BaseModel):
    """What the service worker receives."""
    title: str
    body: str = ""
    url: str = "/"
    tag: str


@dataclass
class DispatchReport:
    """Per-endpoint outcome of one dispatch."""
    sent: List[str] = field(default_factory=list)
    pruned: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def sent_any(self) -> bool:
        return bool(self.sent)


# Request Models
class SubscriptionKeys(BaseModel):
    p256dh: str = Field(..., min_length=1)
    auth: str = Field(..., min_length=1)


class BrowserSubscription(BaseModel):
    """PushSubscription.toJSON() as sent by the browser."""
    endpoint: str = Field(..., pattern="^https://")
    keys: SubscriptionKeys
    expirationTime: Optional[int] = None


class SubscribeRequest(BaseModel):
    subscription: BrowserSubscription


class UnsubscribeRequest(BaseModel):
    endpoint: Optional[str] = None


# Response Models
class PublicKeyResponse(BaseModel):
    key: str


class SuccessResponse(BaseModel):
    success: bool = True


class TestPushResponse(BaseModel):
    success: bool
    sent: int
