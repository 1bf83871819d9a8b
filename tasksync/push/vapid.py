"""
VAPID key material for Web Push.

The key pair is generated once and persisted in the settings table so every
process and restart signs with the same application server key.
"""
import base64
from dataclasses import dataclass
from typing import Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
import structlog

from tasksync.database import StorageManager, storage_manager


logger = structlog.get_logger()


PUBLIC_KEY_SETTING = "vapid_public_key"
PRIVATE_KEY_SETTING = "vapid_private_key"


@dataclass(frozen=True)
class VapidKeys:
    public_key: str  # base64url uncompressed P-256 point, for applicationServerKey
    private_key: str  # base64url raw 32-byte scalar, accepted by pywebpush


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_vapid_keys() -> VapidKeys:
    """
    Generate a fresh P-256 key pair.

    Returns:
        VapidKeys encoded the way browsers and pywebpush expect
    """
    private_key = ec.generate_private_key(ec.SECP256R1())

    public_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )
    private_bytes = private_key.private_numbers().private_value.to_bytes(32, "big")

    return VapidKeys(public_key=b64url(public_bytes), private_key=b64url(private_bytes))


class VapidKeyStore:
    """Loads the persisted key pair, creating it on first use."""

    def __init__(self, storage: StorageManager):
        self.storage = storage
        self._keys: Optional[VapidKeys] = None

    def _get_setting(self, key: str) -> Optional[str]:
        row = self.storage.fetch_one("SELECT value FROM settings WHERE key = ?", [key])
        return row[0] if row else None

    def get_or_create(self) -> VapidKeys:
        if self._keys is not None:
            return self._keys

        public_key = self._get_setting(PUBLIC_KEY_SETTING)
        private_key = self._get_setting(PRIVATE_KEY_SETTING)

        if public_key and private_key:
            self._keys = VapidKeys(public_key=public_key, private_key=private_key)
            return self._keys

        keys = generate_vapid_keys()
        # INSERT OR IGNORE keeps whichever pair another process stored first
        for setting, value in (
            (PUBLIC_KEY_SETTING, keys.public_key),
            (PRIVATE_KEY_SETTING, keys.private_key),
        ):
            self.storage.execute(
                "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?)",
                [setting, value],
            )
        logger.info("vapid_keys_generated")

        self._keys = VapidKeys(
            public_key=self._get_setting(PUBLIC_KEY_SETTING),
            private_key=self._get_setting(PRIVATE_KEY_SETTING),
        )
        return self._keys


# Global key store instance
vapid_key_store = VapidKeyStore(storage_manager)


def get_vapid_key_store() -> VapidKeyStore:
    """Dependency injection for the VAPID key store."""
    return vapid_key_store
