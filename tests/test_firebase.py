"""Tests for the Firebase REST remote store adapter."""

from __future__ import annotations

import json
import threading
from typing import Any
from unittest.mock import MagicMock

import httpx
import pytest
from pytest_httpx import HTTPXMock

from fieldsync.core.config import RemoteConfig
from fieldsync.firebase import (
    FirebaseReference,
    FirebaseRestStore,
    FirebaseSubscription,
    apply_event,
    parse_sse,
)
from fieldsync.remote import RemoteAuthError, RemoteError, RemoteNotFoundError

DB = "https://db.test"


@pytest.fixture
def store() -> FirebaseRestStore:
    return FirebaseRestStore(RemoteConfig(database_url=DB))


class TestRequests:
    """Tests for the REST mapping."""

    def test_set_is_put(self, store: FirebaseRestStore, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(method="PUT", url=f"{DB}/forms/form-42.json", json={"a": 1})

        store.reference("/forms/form-42/").set({"a": 1})

        request = httpx_mock.get_request()
        assert request is not None
        assert json.loads(request.content) == {"a": 1}

    def test_update_is_patch(self, store: FirebaseRestStore, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(method="PATCH", url=f"{DB}/forms/form-42.json", json={})
        store.reference("forms/form-42").update({"status": "submitted"})

        request = httpx_mock.get_request()
        assert request is not None
        assert json.loads(request.content) == {"status": "submitted"}

    def test_remove_is_delete(self, store: FirebaseRestStore, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(method="DELETE", url=f"{DB}/sites/s1.json", content=b"null")
        store.reference("sites/s1").remove()

        request = httpx_mock.get_request()
        assert request is not None
        assert request.content == b""

    def test_get(self, store: FirebaseRestStore, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            method="GET", url=f"{DB}/forms/f1.json", json={"_lastModified": 5}
        )
        httpx_mock.add_response(method="GET", url=f"{DB}/forms/f2.json", content=b"null")

        assert store.reference("forms/f1").get() == {"_lastModified": 5}
        assert store.reference("forms/f2").get() is None

    def test_auth_token_is_query_param(self, httpx_mock: HTTPXMock) -> None:
        store = FirebaseRestStore(RemoteConfig(database_url=DB, auth_token="secret"))
        httpx_mock.add_response(method="GET", url=f"{DB}/forms/f1.json?auth=secret", json=None)

        assert store.reference("forms/f1").get() is None

    def test_reference_repr(self, store: FirebaseRestStore) -> None:
        assert repr(store.reference("forms/f1")) == "FirebaseReference('forms/f1')"


class TestErrors:
    """Tests for error mapping."""

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth(self, store: FirebaseRestStore, httpx_mock: HTTPXMock, status: int) -> None:
        httpx_mock.add_response(status_code=status, json={"error": "Permission denied"})

        with pytest.raises(RemoteAuthError) as exc_info:
            store.reference("forms/f1").set({"a": 1})

        assert exc_info.value.status_code == status
        assert str(exc_info.value) == "Permission denied"

    def test_not_found(self, store: FirebaseRestStore, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(status_code=404, text="missing")

        with pytest.raises(RemoteNotFoundError):
            store.reference("forms/f1").get()

    def test_server_error(self, store: FirebaseRestStore, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(status_code=503, json={"error": "Service unavailable"})

        with pytest.raises(RemoteError) as exc_info:
            store.reference("forms/f1").update({"a": 1})

        assert exc_info.value.status_code == 503

    def test_network_error(self, store: FirebaseRestStore, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_exception(httpx.ConnectError("connection refused"))

        with pytest.raises(RemoteError) as exc_info:
            store.reference("forms/f1").get()

        assert exc_info.value.status_code is None


class TestHealthCheck:
    """Tests for health_check."""

    def test_healthy(self, store: FirebaseRestStore, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(method="GET", url=f"{DB}/.json?shallow=true", json={"forms": True})
        assert store.health_check()

    def test_rejected(self, store: FirebaseRestStore, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(status_code=401, json={"error": "Permission denied"})
        assert not store.health_check()

    def test_unreachable(self, store: FirebaseRestStore, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_exception(httpx.ConnectError("connection refused"))
        assert not store.health_check()


class TestParseSse:
    """Tests for parse_sse."""

    def test_events(self) -> None:
        lines = [
            ": keep-alive comment",
            "event: put",
            'data: {"path": "/", "data": {"a": 1}}',
            "",
            "event: keep-alive",
            "data: null",
            "",
            "event: patch",
            'data: {"path": "/a",',
            'data:  "data": 2}',
        ]

        assert list(parse_sse(lines)) == [
            ("put", '{"path": "/", "data": {"a": 1}}'),
            ("keep-alive", "null"),
            ("patch", '{"path": "/a",\n"data": 2}'),
        ]

    def test_blank_lines_only(self) -> None:
        assert list(parse_sse(["", "", ""])) == []


class TestApplyEvent:
    """Tests for apply_event."""

    def test_put_root_replaces(self) -> None:
        assert apply_event({"a": 1}, "/", {"b": 2}, merge=False) == {"b": 2}

    def test_patch_root_merges(self) -> None:
        assert apply_event({"a": 1, "b": 2}, "/", {"b": None, "c": 3}, merge=True) == {
            "a": 1,
            "c": 3,
        }

    def test_put_child(self) -> None:
        current = {"f1": {"status": "draft"}}
        assert apply_event(current, "/f2/status", "done", merge=False) == {
            "f1": {"status": "draft"},
            "f2": {"status": "done"},
        }
        assert current == {"f1": {"status": "draft"}}

    def test_delete_child(self) -> None:
        current = {"f1": {"status": "draft", "n": 1}}
        assert apply_event(current, "/f1/status", None, merge=False) == {"f1": {"n": 1}}

    def test_delete_last_child_empties_root(self) -> None:
        assert apply_event({"f1": {"status": "draft"}}, "/f1", None, merge=False) is None

    def test_patch_child(self) -> None:
        current = {"f1": {"status": "draft", "n": 1}}
        assert apply_event(current, "/f1", {"status": "done"}, merge=True) == {
            "f1": {"status": "done", "n": 1}
        }


class TestSubscription:
    """Tests for FirebaseSubscription."""

    def make(self) -> tuple[FirebaseSubscription, list[Any], list[Exception]]:
        values: list[Any] = []
        errors: list[Exception] = []
        subscription = FirebaseSubscription(
            MagicMock(), "forms", values.append, errors.append
        )
        return subscription, values, errors

    def test_put_and_patch(self) -> None:
        subscription, values, _ = self.make()

        assert subscription.handle_event("put", json.dumps({"path": "/", "data": {"f1": {"a": 1}}}))
        assert subscription.handle_event("patch", json.dumps({"path": "/f1", "data": {"b": 2}}))

        assert values == [{"f1": {"a": 1}}, {"f1": {"a": 1, "b": 2}}]
        assert subscription.value == {"f1": {"a": 1, "b": 2}}

    def test_keep_alive_ignored(self) -> None:
        subscription, values, _ = self.make()
        assert subscription.handle_event("keep-alive", "null")
        assert values == []

    def test_malformed_event_ignored(self) -> None:
        subscription, values, _ = self.make()
        assert subscription.handle_event("put", "{broken")
        assert values == []

    def test_cancel_and_revoke_end_stream(self) -> None:
        subscription, _, errors = self.make()

        assert not subscription.handle_event("cancel", "Permission denied")
        assert not subscription.handle_event("auth_revoked", "credential is no longer valid")

        assert all(isinstance(e, RemoteAuthError) for e in errors)
        assert len(errors) == 2

    def test_stream_thread(self) -> None:
        """A listening reference delivers streamed values until closed."""
        response = MagicMock(status_code=200)
        response.iter_lines.return_value = iter(
            [
                "event: put",
                'data: {"path": "/", "data": {"status": "draft"}}',
                "",
                "event: patch",
                'data: {"path": "/", "data": {"status": "submitted"}}',
                "",
            ]
        )
        fake_store = MagicMock()
        fake_store.reconnect_delay = 0.01
        fake_store.stream.return_value.__enter__.return_value = response

        values: list[Any] = []
        delivered = threading.Event()

        def callback(value: Any) -> None:
            values.append(value)
            if len(values) == 2:
                delivered.set()

        subscription = FirebaseReference(fake_store, "forms/f1").listen(callback)
        try:
            assert delivered.wait(timeout=2.0)
        finally:
            subscription.close()

        assert subscription.closed
        assert values == [{"status": "draft"}, {"status": "submitted"}]
        fake_store.stream.assert_called_with("forms/f1")
