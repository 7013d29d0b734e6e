"""Configuration classes for fieldsync.

This module defines the configuration dataclasses shared by the record
engine, the remote store adapter and the asset backend client.
"""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_RETRY_DELAYS: tuple[float, ...] = (1.0, 5.0, 15.0, 30.0, 60.0)

DEFAULT_FOLDER_PATHS: dict[str, str] = {
    "prestart": "01_Safety_Compliance/Pre-Start_Checklists",
    "inspection": "01_Safety_Compliance/Site_Inspections",
    "incident": "01_Safety_Compliance/Incident_Reports",
    "toolbox": "01_Safety_Compliance/Toolbox_Talks",
    "itp": "02_ITPs/General",
    "steel-itp": "02_ITPs/Structural_Steel",
    "training": "05_Training/Certificates",
}


@dataclass
class EngineConfig:
    """Configuration for the record sync engine and its queues.

    Attributes:
        device_id: Identifier of this device (generated and persisted if None).
        root_path: Optional prefix for every remote address (e.g. "app-data").
        queue_key: Storage key of the pending record operations.
        upload_queue_key: Storage key of the pending uploads.
        device_key: Storage key of the persisted device id.
        retry_delays: Back-off ladder in seconds.
        max_retries: Failed attempts before a record operation is terminal.
        upload_max_retries: Failed attempts before an upload is dropped.
    """

    device_id: str | None = None
    root_path: str = ""
    queue_key: str = "fieldsync.sync-queue"
    upload_queue_key: str = "fieldsync.upload-queue"
    device_key: str = "fieldsync.device-id"
    retry_delays: tuple[float, ...] = DEFAULT_RETRY_DELAYS
    max_retries: int = 5
    upload_max_retries: int = 3

    def __post_init__(self) -> None:
        """Normalize root path and validate retry settings."""
        self.root_path = self.root_path.strip("/")
        if not self.retry_delays:
            raise ValueError("retry_delays must not be empty")
        if self.max_retries < 1 or self.upload_max_retries < 1:
            raise ValueError("max retries must be at least 1")

    def address_for(self, category: str, record_id: str) -> str:
        """Build the remote address of a record."""
        if self.root_path:
            return f"{self.root_path}/{category}/{record_id}"
        return f"{category}/{record_id}"


@dataclass
class RemoteConfig:
    """Configuration for the remote record store REST adapter.

    Attributes:
        database_url: Base URL of the database (e.g. "https://x.firebaseio.com").
        auth_token: Credential appended as the ``auth`` query parameter.
        timeout: Request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates.
    """

    database_url: str
    auth_token: str | None = None
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize database URL."""
        self.database_url = self.database_url.rstrip("/")

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS."""
        return self.database_url.startswith("https://")


@dataclass
class DriveConfig:
    """Configuration for the binary asset backend.

    Attributes:
        api_base: Base URL of the metadata API.
        upload_base: Base URL of the upload API.
        root_folder_name: Top-level folder every upload is placed under.
        folder_paths: Category to nested folder path lookup table.
        mime_type: Default MIME type of uploaded payloads.
        timeout: Request timeout in seconds.
        max_request_retries: In-request retries for transient HTTP statuses.
        base_delay: Initial in-request backoff in seconds.
        max_delay: Maximum in-request backoff in seconds.
    """

    api_base: str = "https://www.googleapis.com/drive/v3"
    upload_base: str = "https://www.googleapis.com/upload/drive/v3"
    root_folder_name: str = "Field Sync"
    folder_paths: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_FOLDER_PATHS))
    mime_type: str = "application/pdf"
    timeout: float = 60.0
    max_request_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        """Normalize base URLs."""
        self.api_base = self.api_base.rstrip("/")
        self.upload_base = self.upload_base.rstrip("/")
