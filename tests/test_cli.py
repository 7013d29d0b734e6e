"""Tests for CLI commands - configure, status, pending, drain, clear."""

import json
from collections.abc import Iterator
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from fieldsync.cli import cli
from fieldsync.core.storage import SQLiteStore
from fieldsync.core.types import OperationKind, ResourceCategory
from fieldsync.remote import MemoryRemoteStore
from fieldsync.status import StatusNotifier
from fieldsync.sync.queue import OperationQueue
from fieldsync.sync.types import SyncOperation


class FakeDatabase(MemoryRemoteStore):
    """In-memory stand-in for FirebaseRestStore."""

    def __init__(self, healthy: bool = True) -> None:
        super().__init__()
        self.healthy = healthy

    def health_check(self) -> bool:
        return self.healthy

    def __enter__(self) -> "FakeDatabase":
        return self

    def __exit__(self, *args: object) -> None:
        pass


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def config_dir(tmp_path: Path) -> Iterator[Path]:
    """Point the CLI at a temporary config directory."""
    with patch("fieldsync.cli.config.get_config_dir", return_value=tmp_path):
        yield tmp_path


def queue_form(config_dir: Path, record_id: str, payload: dict[str, Any]) -> None:
    """Persist one queued create operation the way the engine does."""
    with SQLiteStore(config_dir / "queue.db") as store:
        queue = OperationQueue(store, "fieldsync.sync-queue", StatusNotifier())
        queue.load()
        queue.enqueue(
            SyncOperation.create(
                ResourceCategory.FORMS,
                OperationKind.CREATE,
                f"forms/{record_id}",
                payload,
                device_id="device-cli",
            )
        )


def configure_database(runner: CliRunner) -> None:
    result = runner.invoke(
        cli, ["configure", "--database-url", "https://db.test/", "--device-id", "device-cli"]
    )
    assert result.exit_code == 0


class TestConfigureCommand:
    """Tests for 'fieldsync configure'."""

    def test_saves_config(self, runner: CliRunner, config_dir: Path) -> None:
        result = runner.invoke(
            cli,
            ["configure", "--database-url", "https://db.test/", "--auth-token", "secret"],
        )

        assert result.exit_code == 0
        assert "Configuration saved" in result.output
        saved = json.loads((config_dir / "config.json").read_text())
        assert saved == {"database_url": "https://db.test", "auth_token": "secret"}

    def test_rejects_bad_url(self, runner: CliRunner, config_dir: Path) -> None:
        result = runner.invoke(cli, ["configure", "--database-url", "db.test"])

        assert result.exit_code == 1
        assert not (config_dir / "config.json").exists()

    def test_show_masks_token(self, runner: CliRunner, config_dir: Path) -> None:
        runner.invoke(cli, ["configure", "--auth-token", "secret", "--root-path", "/prod/"])

        result = runner.invoke(cli, ["configure"])

        assert result.exit_code == 0
        assert "auth_token: ********" in result.output
        assert "root_path: prod" in result.output
        assert "secret" not in result.output


class TestStatusCommand:
    """Tests for 'fieldsync status'."""

    def test_empty(self, runner: CliRunner, config_dir: Path) -> None:
        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        assert "(not generated yet)" in result.output
        assert "(not configured)" in result.output

    def test_json(self, runner: CliRunner, config_dir: Path) -> None:
        configure_database(runner)
        queue_form(config_dir, "form-42", {"status": "draft"})

        result = runner.invoke(cli, ["status", "--json"])

        assert result.exit_code == 0
        info = json.loads(result.output)
        assert info == {
            "device_id": "device-cli",
            "database_url": "https://db.test",
            "pending_operations": 1,
            "failed_operations": 0,
            "pending_uploads": 0,
        }


class TestPendingCommand:
    """Tests for 'fieldsync pending'."""

    def test_empty(self, runner: CliRunner, config_dir: Path) -> None:
        result = runner.invoke(cli, ["pending"])
        assert result.exit_code == 0
        assert "Queue is empty." in result.output

    def test_lists_operations(self, runner: CliRunner, config_dir: Path) -> None:
        queue_form(config_dir, "form-1", {"n": 1})
        queue_form(config_dir, "form-2", {"n": 2})

        result = runner.invoke(cli, ["pending"])

        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert "forms/form-1" in lines[0]
        assert "forms/form-2" in lines[1]
        assert "attempts=0" in lines[0]


class TestDrainCommand:
    """Tests for 'fieldsync drain'."""

    def test_requires_database(self, runner: CliRunner, config_dir: Path) -> None:
        result = runner.invoke(cli, ["drain"])

        assert result.exit_code == 1
        assert "No database configured" in result.output

    def test_unreachable(self, runner: CliRunner, config_dir: Path) -> None:
        configure_database(runner)
        with patch("fieldsync.cli.queue.FirebaseRestStore", return_value=FakeDatabase(False)):
            result = runner.invoke(cli, ["drain"])

        assert result.exit_code == 1
        assert "Cannot reach https://db.test" in result.output

    def test_pushes_queue(self, runner: CliRunner, config_dir: Path) -> None:
        configure_database(runner)
        queue_form(config_dir, "form-42", {"status": "draft"})
        database = FakeDatabase()

        with patch("fieldsync.cli.queue.FirebaseRestStore", return_value=database):
            result = runner.invoke(cli, ["drain"])

        assert result.exit_code == 0
        assert "Synced: 1  Failed: 0  Skipped: 0  Pending: 0" in result.output
        assert database.reference("forms/form-42").get()["status"] == "draft"

        status = runner.invoke(cli, ["status", "--json"])
        assert json.loads(status.output)["pending_operations"] == 0


class TestClearCommand:
    """Tests for 'fieldsync clear'."""

    def test_empty(self, runner: CliRunner, config_dir: Path) -> None:
        result = runner.invoke(cli, ["clear", "--yes"])
        assert "Queue is empty." in result.output

    def test_aborted(self, runner: CliRunner, config_dir: Path) -> None:
        queue_form(config_dir, "form-1", {"n": 1})

        result = runner.invoke(cli, ["clear"], input="n\n")

        assert "Aborted." in result.output
        assert "Pending:    1" in runner.invoke(cli, ["status"]).output

    def test_drops_queue(self, runner: CliRunner, config_dir: Path) -> None:
        queue_form(config_dir, "form-1", {"n": 1})
        queue_form(config_dir, "form-2", {"n": 2})

        result = runner.invoke(cli, ["clear"], input="y\n")

        assert result.exit_code == 0
        assert "Dropped 2 queued items." in result.output
        assert "Queue is empty." in runner.invoke(cli, ["pending"]).output
