"""Binary asset uploads.

Architecture:
    AssetUploader → UploadQueue (durable) → FolderResolver → DriveClient

Components:
- **DriveClient**: Bearer-authenticated backend client (folders, multipart upload)
- **TokenStore**: Access token persistence in the OS keyring
- **FolderResolver**: Category to folder id resolution with a session cache
- **AssetUploader**: Direct uploads, offline queuing and queue drain
"""

from fieldsync.assets.drive import FOLDER_MIME_TYPE, DriveAuthError, DriveClient, DriveError
from fieldsync.assets.folders import FolderResolver
from fieldsync.assets.tokens import AccessToken, TokenStore
from fieldsync.assets.uploader import AssetUploader

__all__ = [
    "FOLDER_MIME_TYPE",
    "AccessToken",
    "AssetUploader",
    "DriveAuthError",
    "DriveClient",
    "DriveError",
    "FolderResolver",
    "TokenStore",
]
