"""REST adapter for a Firebase Realtime Database style remote store.

This module provides:
- FirebaseRestStore: RemoteStore over the database REST API
- FirebaseReference: set/update/remove/get/listen on one address
- FirebaseSubscription: Server-sent-event stream on a background thread

REST mapping:
    set     PUT    {database_url}/{path}.json
    update  PATCH  {database_url}/{path}.json
    remove  DELETE {database_url}/{path}.json
    get     GET    {database_url}/{path}.json
    listen  GET    {database_url}/{path}.json  (Accept: text/event-stream)

The credential, when configured, is passed as the ``auth`` query parameter.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from collections.abc import Iterable, Iterator
from typing import TYPE_CHECKING, Any

import httpx

from fieldsync.remote import (
    RemoteAuthError,
    RemoteError,
    RemoteNotFoundError,
    split_path,
)

if TYPE_CHECKING:
    from fieldsync.core.config import RemoteConfig
    from fieldsync.remote import ErrorCallback, ValueCallback

logger = logging.getLogger(__name__)


class FirebaseRestStore:
    """RemoteStore backed by the database REST API.

    Usage:
        with FirebaseRestStore(RemoteConfig("https://x.firebaseio.com")) as store:
            store.reference("forms/form-42").update({"status": "done"})
    """

    def __init__(
        self,
        config: RemoteConfig,
        client: httpx.Client | None = None,
        reconnect_delay: float = 5.0,
    ) -> None:
        """Initialize the store.

        Args:
            config: Remote configuration with URL and credential.
            client: Optional preconfigured httpx client.
            reconnect_delay: Delay between stream reconnection attempts.
        """
        self._config = config
        self._reconnect_delay = reconnect_delay
        self._client = client or httpx.Client(
            timeout=config.timeout,
            verify=config.verify_ssl,
            follow_redirects=True,
        )

    @property
    def config(self) -> RemoteConfig:
        return self._config

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> FirebaseRestStore:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def reference(self, path: str) -> FirebaseReference:
        return FirebaseReference(self, "/".join(split_path(path)))

    def url_for(self, path: str) -> str:
        """Build the REST URL of an address."""
        return f"{self._config.database_url}/{path}.json"

    def params(self) -> dict[str, str]:
        if self._config.auth_token:
            return {"auth": self._config.auth_token}
        return {}

    def health_check(self) -> bool:
        """Check that the database answers a shallow read of its root.

        Returns:
            True if the database is reachable and accepts the credential.
        """
        try:
            response = self._client.get(
                self.url_for(""), params={**self.params(), "shallow": "true"}
            )
            return response.status_code == 200
        except httpx.RequestError:
            return False

    def request(self, method: str, path: str, body: Any = None) -> Any:
        """Send one REST request and decode the JSON response.

        Raises:
            RemoteAuthError: On 401/403.
            RemoteNotFoundError: On 404.
            RemoteError: On any other error status or network failure.
        """
        try:
            response = self._client.request(
                method,
                self.url_for(path),
                params=self.params(),
                content=None if body is None else json.dumps(body),
            )
        except httpx.RequestError as e:
            raise RemoteError(f"{method} {path} failed: {e}") from e

        _raise_for_status(response)
        if not response.content:
            return None
        return response.json()

    def stream(self, path: str) -> Any:
        """Open a server-sent-event stream for an address (context manager)."""
        return self._client.stream(
            "GET",
            self.url_for(path),
            params=self.params(),
            headers={"Accept": "text/event-stream"},
            timeout=httpx.Timeout(self._config.timeout, read=None),
        )

    @property
    def reconnect_delay(self) -> float:
        return self._reconnect_delay


def _raise_for_status(response: httpx.Response) -> None:
    if response.status_code < 400:
        return
    try:
        detail = response.json().get("error", response.reason_phrase)
    except (ValueError, AttributeError):
        detail = response.reason_phrase or "Unknown error"

    if response.status_code in (401, 403):
        raise RemoteAuthError(detail, response.status_code)
    if response.status_code == 404:
        raise RemoteNotFoundError(detail, 404)
    raise RemoteError(detail, response.status_code)


class FirebaseReference:
    """Reference to one address of a FirebaseRestStore."""

    def __init__(self, store: FirebaseRestStore, path: str) -> None:
        self._store = store
        self._path = path

    @property
    def path(self) -> str:
        return self._path

    def set(self, value: dict[str, Any]) -> None:
        self._store.request("PUT", self._path, value)

    def update(self, partial: dict[str, Any]) -> None:
        self._store.request("PATCH", self._path, partial)

    def remove(self) -> None:
        self._store.request("DELETE", self._path)

    def get(self) -> Any:
        return self._store.request("GET", self._path)

    def listen(
        self, callback: ValueCallback, on_error: ErrorCallback | None = None
    ) -> FirebaseSubscription:
        subscription = FirebaseSubscription(self._store, self._path, callback, on_error)
        subscription.start()
        return subscription

    def __repr__(self) -> str:
        return f"FirebaseReference({self._path!r})"


class FirebaseSubscription:
    """Server-sent-event subscription running on a daemon thread.

    Keeps a local copy of the watched value, applies every ``put`` and
    ``patch`` event to it and calls back with the whole value. The stream
    reconnects after network errors until closed; authentication errors
    and ``auth_revoked`` events end it.
    """

    def __init__(
        self,
        store: FirebaseRestStore,
        path: str,
        callback: ValueCallback,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._store = store
        self._path = path
        self._callback = callback
        self._on_error = on_error
        self._value: Any = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._response: httpx.Response | None = None

    @property
    def closed(self) -> bool:
        return self._stop.is_set()

    @property
    def value(self) -> Any:
        """Last value delivered to the callback."""
        return copy.deepcopy(self._value)

    def start(self) -> None:
        """Start streaming in a background thread."""
        if self._thread and self._thread.is_alive():
            logger.warning("Subscription on %s already running", self._path)
            return
        self._thread = threading.Thread(
            target=self._run, name=f"FirebaseSubscription[{self._path}]", daemon=True
        )
        self._thread.start()
        logger.debug("Subscribed to %s", self._path)

    def close(self) -> None:
        """Stop streaming. Safe to call more than once."""
        if self._stop.is_set():
            return
        self._stop.set()
        response = self._response
        if response is not None:
            response.close()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=5.0)
        self._thread = None
        logger.debug("Unsubscribed from %s", self._path)

    def __enter__(self) -> FirebaseSubscription:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                with self._store.stream(self._path) as response:
                    self._response = response
                    if response.status_code >= 400:
                        response.read()
                    _raise_for_status(response)
                    for event, data in parse_sse(response.iter_lines()):
                        if self._stop.is_set():
                            return
                        if not self.handle_event(event, data):
                            return
            except RemoteAuthError as e:
                logger.error("Subscription on %s rejected: %s", self._path, e)
                self._report(e)
                return
            except (httpx.HTTPError, RemoteError) as e:
                if self._stop.is_set():
                    return
                logger.warning("Subscription on %s dropped: %s", self._path, e)
                self._report(e)
            finally:
                self._response = None

            self._stop.wait(self._store.reconnect_delay)

    def handle_event(self, event: str, data: str) -> bool:
        """Apply one stream event.

        Returns:
            False if the stream must end.
        """
        if event in ("put", "patch"):
            try:
                message = json.loads(data)
            except ValueError:
                logger.warning("Ignoring malformed %s event on %s", event, self._path)
                return True
            self._value = apply_event(
                self._value, message.get("path", "/"), message.get("data"), event == "patch"
            )
            self._deliver()
        elif event == "cancel":
            self._report(RemoteAuthError(f"Subscription cancelled: {data}", 403))
            return False
        elif event == "auth_revoked":
            self._report(RemoteAuthError("Credential revoked", 401))
            return False
        return True

    def _deliver(self) -> None:
        try:
            self._callback(copy.deepcopy(self._value))
        except Exception as e:
            logger.warning("Subscription callback on %s failed: %s", self._path, e)
            logger.debug("Full traceback:", exc_info=True)

    def _report(self, error: Exception) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception as e:
            logger.warning("Subscription error handler on %s failed: %s", self._path, e)


def parse_sse(lines: Iterable[str]) -> Iterator[tuple[str, str]]:
    """Parse server-sent-event lines into (event, data) pairs."""
    event = "message"
    data: list[str] = []
    for line in lines:
        if not line:
            if data:
                yield event, "\n".join(data)
            event, data = "message", []
        elif line.startswith(":"):
            continue
        elif line.startswith("event:"):
            event = line[6:].strip()
        elif line.startswith("data:"):
            data.append(line[5:].lstrip())
    if data:
        yield event, "\n".join(data)


def apply_event(current: Any, path: str, data: Any, merge: bool) -> Any:
    """Apply a put or patch at a relative path to a nested value.

    Args:
        current: Current value of the watched address.
        path: Path of the change relative to the watched address.
        data: New value (None deletes).
        merge: True for patch (merge children), False for put (replace).

    Returns:
        The new value of the watched address.
    """
    segments = split_path(path)
    if not segments:
        if merge and isinstance(current, dict) and isinstance(data, dict):
            merged = dict(current)
            for key, value in data.items():
                if value is None:
                    merged.pop(key, None)
                else:
                    merged[key] = value
            return merged or None
        return data

    root = dict(current) if isinstance(current, dict) else {}
    node = root
    for segment in segments[:-1]:
        child = node.get(segment)
        child = dict(child) if isinstance(child, dict) else {}
        node[segment] = child
        node = child

    leaf = segments[-1]
    new_value = apply_event(node.get(leaf), "/", data, merge)
    if new_value is None:
        node.pop(leaf, None)
    else:
        node[leaf] = new_value
    return root or None
