"""
Relay module for backup-relay.

This module handles the core relay functionality including:
- Retrying HTTP requests to the source
- Catalog parsing and selection of the newest backup
- Destination name sanitization
- Storage (OneDrive, Google Drive and S3)
- Cycle orchestration
"""

from .httpclient import RetryingHTTPClient, RetryPolicy
from .catalog import BackupCandidate, select_latest
from .naming import sanitize_name
from .sources import BackupSource
from .storage import OneDriveStorage, GoogleDriveStorage, S3Storage, create_storage
from .executor import BackupCycle

__all__ = [
    'RetryingHTTPClient',
    'RetryPolicy',
    'BackupCandidate',
    'select_latest',
    'sanitize_name',
    'BackupSource',
    'OneDriveStorage',
    'GoogleDriveStorage',
    'S3Storage',
    'create_storage',
    'BackupCycle'
]
