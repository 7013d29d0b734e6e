"""HTTP client for the binary asset backend (Google Drive v3 style API).

This module provides:
- DriveClient: Bearer-authenticated client for folders and file uploads
- DriveError, DriveAuthError: Backend failures

Every call checks the token expiry first. A 401 response or an expired
token ends the session (disconnect listeners are notified) and raises
DriveAuthError. Transient statuses and network errors are retried inside
the call with jittered exponential backoff.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from typing import Any

import httpx

from fieldsync.assets.tokens import AccessToken, TokenStore
from fieldsync.core.config import DriveConfig
from fieldsync.sync.retry import retry_call

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
DEFAULT_TOKEN_LIFETIME = 3600  # seconds


class DriveError(Exception):
    """Base exception for asset backend errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DriveAuthError(DriveError):
    """Not connected, token expired, or token rejected."""


def _quote(value: str) -> str:
    """Escape a value for a single-quoted search query literal."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


class DriveClient:
    """Client for the asset backend API.

    Usage:
        drive = DriveClient(DriveConfig(), TokenStore())
        drive.restore_session() or drive.set_access_token(token)
        folder = drive.find_folder("Field Sync") or drive.create_folder("Field Sync")
        drive.upload_file(pdf_bytes, "report.pdf", folder["id"])
    """

    def __init__(
        self,
        config: DriveConfig | None = None,
        token_store: TokenStore | None = None,
        client: httpx.Client | None = None,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        """Initialize the client (not connected until a token is set).

        Args:
            config: Backend configuration.
            token_store: Token persistence (keyring); None keeps tokens in memory.
            client: Optional preconfigured httpx client.
            sleep: Sleep function used between in-request retries.
        """
        self._config = config or DriveConfig()
        self._token_store = token_store
        self._client = client or httpx.Client(timeout=self._config.timeout)
        self._sleep = sleep
        self._token: AccessToken | None = None
        self._lock = threading.Lock()
        self._connect_listeners: list[Callable[[], None]] = []
        self._disconnect_listeners: list[Callable[[], None]] = []

    @property
    def config(self) -> DriveConfig:
        return self._config

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> DriveClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # === Session ===

    def set_access_token(self, token: str, expires_in: float = DEFAULT_TOKEN_LIFETIME) -> None:
        """Start a session with a bearer token and notify connect listeners."""
        access = AccessToken(token, time.time() + expires_in)
        with self._lock:
            self._token = access
        if self._token_store is not None:
            self._token_store.save(access)
        logger.info("Asset backend connected (token valid for %.0fs)", expires_in)
        self._fire(self._connect_listeners)

    def restore_session(self) -> bool:
        """Resume a session from a stored, unexpired token.

        Returns:
            True if a session was restored.
        """
        if self._token_store is None:
            return False
        token = self._token_store.load()
        if token is None:
            return False
        with self._lock:
            self._token = token
        logger.info("Restored asset backend session (%.0fs left)", token.expires_in)
        return True

    def is_connected(self) -> bool:
        """Whether a token is set and has not expired."""
        with self._lock:
            token = self._token
        return token is not None and not token.expired

    def disconnect(self) -> None:
        """End the session and notify disconnect listeners."""
        with self._lock:
            self._token = None
        if self._token_store is not None:
            self._token_store.clear()
        logger.info("Asset backend disconnected")
        self._fire(self._disconnect_listeners)

    def on_connect(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback run after a token is set. Returns an unsubscribe function."""
        return self._subscribe(self._connect_listeners, callback)

    def on_disconnect(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback run after the session ends. Returns an unsubscribe function."""
        return self._subscribe(self._disconnect_listeners, callback)

    def _subscribe(
        self, listeners: list[Callable[[], None]], callback: Callable[[], None]
    ) -> Callable[[], None]:
        with self._lock:
            listeners.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in listeners:
                    listeners.remove(callback)

        return unsubscribe

    def _fire(self, listeners: list[Callable[[], None]]) -> None:
        with self._lock:
            callbacks = list(listeners)
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning("Session listener failed: %s", e)
                logger.debug("Full traceback:", exc_info=True)

    # === Requests ===

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send an authenticated request with in-request retries.

        Raises:
            DriveAuthError: If not connected, expired, or rejected.
            DriveError: On any other error status once retries are exhausted.
            httpx.TransportError: On network failure once retries are exhausted.
        """
        with self._lock:
            token = self._token
        if token is None:
            raise DriveAuthError("Not connected to the asset backend")
        if token.expired:
            self.disconnect()
            raise DriveAuthError("Token expired - please reconnect", 401)

        def send() -> httpx.Response:
            response = self._client.request(
                method, url, headers={"Authorization": f"Bearer {token.value}"}, **kwargs
            )
            return self._handle_response(response)

        return retry_call(
            send,
            max_retries=self._config.max_request_retries,
            base_delay=self._config.base_delay,
            max_delay=self._config.max_delay,
            sleep=self._sleep,
        )

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code == 401:
            self.disconnect()
            raise DriveAuthError("Token expired - please reconnect", 401)
        if response.status_code >= 400:
            try:
                detail = response.json().get("error", {}).get("message", "Unknown error")
            except (ValueError, AttributeError):
                detail = response.reason_phrase or "Unknown error"
            raise DriveError(detail, response.status_code)
        return response

    # === Folders ===

    def find_folder(self, name: str, parent_id: str | None = None) -> dict[str, Any] | None:
        """Find a folder by name, optionally inside a parent.

        Returns:
            The first matching folder resource, or None.
        """
        query = f"name='{_quote(name)}' and mimeType='{FOLDER_MIME_TYPE}' and trashed=false"
        if parent_id:
            query += f" and '{_quote(parent_id)}' in parents"

        response = self._request(
            "GET", f"{self._config.api_base}/files", params={"q": query, "fields": "files(id,name)"}
        )
        files = response.json().get("files") or []
        return files[0] if files else None

    def create_folder(self, name: str, parent_id: str | None = None) -> dict[str, Any]:
        """Create a folder, optionally inside a parent."""
        metadata: dict[str, Any] = {"name": name, "mimeType": FOLDER_MIME_TYPE}
        if parent_id:
            metadata["parents"] = [parent_id]

        response = self._request("POST", f"{self._config.api_base}/files", json=metadata)
        folder = response.json()
        logger.info("Created folder %s (%s)", name, folder.get("id"))
        return folder

    # === Files ===

    def upload_file(
        self,
        content: bytes,
        filename: str,
        parent_id: str,
        mime_type: str | None = None,
    ) -> dict[str, Any]:
        """Upload a file in one multipart request.

        Args:
            content: File bytes.
            filename: Target filename.
            parent_id: Folder to place the file in.
            mime_type: MIME type (defaults to the configured one).

        Returns:
            The created file resource.
        """
        mime_type = mime_type or self._config.mime_type
        metadata = {"name": filename, "mimeType": mime_type, "parents": [parent_id]}

        response = self._request(
            "POST",
            f"{self._config.upload_base}/files",
            params={"uploadType": "multipart"},
            files={
                "metadata": (None, json.dumps(metadata), "application/json"),
                "file": (filename, content, mime_type),
            },
        )
        result = response.json()
        logger.info("Uploaded %s (%d bytes) as %s", filename, len(content), result.get("id"))
        return result

    def search_files(self, pattern: str, parent_id: str) -> list[dict[str, Any]]:
        """List files inside a folder whose name contains a pattern."""
        query = (
            f"name contains '{_quote(pattern)}' and '{_quote(parent_id)}' in parents "
            "and trashed=false"
        )
        response = self._request(
            "GET",
            f"{self._config.api_base}/files",
            params={"q": query, "fields": "files(id,name,createdTime,size)"},
        )
        return response.json().get("files") or []

    def delete_file(self, file_id: str) -> bool:
        """Delete a file by id.

        Returns:
            True if deleted.
        """
        response = self._request("DELETE", f"{self._config.api_base}/files/{file_id}")
        return response.status_code in (200, 204)
