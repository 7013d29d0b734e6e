"""Folder resolution for asset uploads.

Uploads are placed under one root folder, then under the nested path the
category maps to:

    "incident" → <root>/01_Safety_Compliance/Incident_Reports

Each (parent, name) pair is looked up, and created if missing, at most
once per session. The cache is cleared when the backend session ends,
since folder ids may belong to another account after re-authentication.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fieldsync.assets.drive import DriveClient

logger = logging.getLogger(__name__)

ROOT_KEY = "root"


class FolderResolver:
    """Resolves category names to folder ids, creating folders on demand.

    Attributes:
        lookups: Number of folder searches sent to the backend.
        creates: Number of folders created.
    """

    def __init__(self, drive: DriveClient) -> None:
        self._drive = drive
        self._cache: dict[tuple[str, str], str] = {}
        self._lock = threading.RLock()
        self.lookups = 0
        self.creates = 0
        drive.on_disconnect(self.clear_cache)

    def find_or_create_folder(self, name: str, parent_id: str | None = None) -> str:
        """Get the id of a folder, creating it if it does not exist.

        Raises:
            DriveError: If the backend call fails.
        """
        key = (parent_id or ROOT_KEY, name)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

            self.lookups += 1
            folder = self._drive.find_folder(name, parent_id)
            if folder is None:
                self.creates += 1
                folder = self._drive.create_folder(name, parent_id)

            folder_id = folder["id"]
            self._cache[key] = folder_id
            logger.debug("Resolved folder %s/%s -> %s", key[0], name, folder_id)
            return folder_id

    def root_folder(self) -> str:
        """Get or create the top-level folder."""
        return self.find_or_create_folder(self._drive.config.root_folder_name)

    def resolve_path(self, path: str) -> str:
        """Walk a slash-separated path below the root folder."""
        folder_id = self.root_folder()
        for segment in path.split("/"):
            if segment:
                folder_id = self.find_or_create_folder(segment, folder_id)
        return folder_id

    def resolve_folder(self, category: str | None) -> str:
        """Get the folder id uploads of a category go to.

        Unknown or missing categories go to the root folder.
        """
        path = self._drive.config.folder_paths.get(category) if category else None
        if not path:
            return self.root_folder()
        return self.resolve_path(path)

    def clear_cache(self) -> None:
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
        if count:
            logger.debug("Cleared %d cached folders", count)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
