"""Bearer token persistence for the asset backend.

The access token and its expiry are kept in the OS keyring so a restarted
process can resume a session that has not expired yet. An unavailable
keyring only costs that resume; tokens still work for the running process.
"""

from __future__ import annotations

import contextlib
import json
import logging
import time
from dataclasses import dataclass

import keyring
from keyring.errors import KeyringError

KEYRING_SERVICE = "fieldsync"
DEFAULT_ACCOUNT = "drive-token"

logger = logging.getLogger(__name__)


@dataclass
class AccessToken:
    """A bearer token with its expiry (epoch seconds)."""

    value: str
    expires_at: float

    @property
    def expired(self) -> bool:
        return time.time() >= self.expires_at

    @property
    def expires_in(self) -> float:
        """Seconds until expiry (negative once expired)."""
        return self.expires_at - time.time()


class TokenStore:
    """Stores one access token in the OS keyring."""

    def __init__(self, service: str = KEYRING_SERVICE, account: str = DEFAULT_ACCOUNT) -> None:
        self._service = service
        self._account = account

    def save(self, token: AccessToken) -> None:
        """Persist a token (logged and ignored if the keyring is unavailable)."""
        payload = json.dumps({"access_token": token.value, "expires_at": token.expires_at})
        try:
            keyring.set_password(self._service, self._account, payload)
        except KeyringError as e:
            logger.warning("Could not store access token in keyring: %s", e)

    def load(self) -> AccessToken | None:
        """Load the stored token, or None if absent, unreadable or expired.

        Expired tokens are removed from the keyring.
        """
        try:
            raw = keyring.get_password(self._service, self._account)
        except KeyringError as e:
            logger.warning("Could not read access token from keyring: %s", e)
            return None
        if not raw:
            return None

        try:
            data = json.loads(raw)
            token = AccessToken(str(data["access_token"]), float(data["expires_at"]))
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding unreadable stored access token")
            self.clear()
            return None

        if token.expired:
            logger.info("Stored access token expired")
            self.clear()
            return None
        return token

    def clear(self) -> None:
        """Remove the stored token."""
        # PasswordDeleteError when nothing is stored
        with contextlib.suppress(KeyringError):
            keyring.delete_password(self._service, self._account)
