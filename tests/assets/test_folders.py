"""Tests for folder resolution."""

from __future__ import annotations

import pytest

from fieldsync.assets.drive import DriveError
from fieldsync.assets.folders import FolderResolver
from fieldsync.core.config import DriveConfig
from tests.fakes import FakeDrive


@pytest.fixture
def drive() -> FakeDrive:
    return FakeDrive(DriveConfig(root_folder_name="Field Sync"), connected=True)


@pytest.fixture
def folders(drive: FakeDrive) -> FolderResolver:
    return FolderResolver(drive)


class TestFolderResolver:
    """Tests for FolderResolver."""

    def test_creates_missing_path(self, drive: FakeDrive, folders: FolderResolver) -> None:
        """Each unseen segment costs one lookup and one create."""
        folder_id = folders.resolve_folder("incident")

        assert drive.calls == [
            ("find_folder", "Field Sync"),
            ("create_folder", "Field Sync"),
            ("find_folder", "01_Safety_Compliance"),
            ("create_folder", "01_Safety_Compliance"),
            ("find_folder", "Incident_Reports"),
            ("create_folder", "Incident_Reports"),
        ]
        assert (folders.lookups, folders.creates) == (3, 3)
        assert drive.folders[("folder-2", "Incident_Reports")] == folder_id

    def test_cached_folder_needs_no_lookup(self, drive: FakeDrive, folders: FolderResolver) -> None:
        first = folders.resolve_folder("incident")
        drive.calls.clear()

        assert folders.resolve_folder("incident") == first
        assert drive.calls == []

    def test_shared_prefix_is_reused(self, drive: FakeDrive, folders: FolderResolver) -> None:
        folders.resolve_folder("incident")
        drive.calls.clear()

        folders.resolve_folder("prestart")

        assert drive.calls == [
            ("find_folder", "Pre-Start_Checklists"),
            ("create_folder", "Pre-Start_Checklists"),
        ]

    def test_existing_folder_is_found(self, drive: FakeDrive, folders: FolderResolver) -> None:
        drive.folders[(None, "Field Sync")] = "existing-root"

        assert folders.root_folder() == "existing-root"
        assert drive.count("create_folder") == 0

    def test_unknown_category_goes_to_root(self, drive: FakeDrive, folders: FolderResolver) -> None:
        root = folders.root_folder()
        assert folders.resolve_folder("receipts") == root
        assert folders.resolve_folder(None) == root
        assert folders.lookups == 1

    def test_disconnect_clears_cache(self, drive: FakeDrive, folders: FolderResolver) -> None:
        folders.resolve_folder("itp")
        assert len(folders) == 3

        drive.disconnect()

        assert len(folders) == 0

    def test_failure_is_not_cached(self, drive: FakeDrive, folders: FolderResolver) -> None:
        drive.fail_next(DriveError("backend error", 500))

        with pytest.raises(DriveError):
            folders.root_folder()

        folders.root_folder()
        assert len(folders) == 1
