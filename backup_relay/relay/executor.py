"""
Backup cycle executor - runs one complete relay pass.

Workflow:
1. Fetch the backup catalog from the source
2. Select the newest backup
3. Download it into an in-memory buffer (size capped)
4. Build and sanitize the destination name
5. Upload the buffer to the destination
6. Discard the buffer
"""

import io
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .catalog import select_latest
from .naming import sanitize_name
from .sources import BackupSource
from .storage import StorageProvider


logger = logging.getLogger(__name__)


@dataclass
class CycleResult:
    """Outcome of a successful cycle, for logging."""
    version: str
    name: str
    size_bytes: int
    destination_ref: str
    started_at: datetime
    completed_at: datetime


def destination_path(prefix: str, version: str) -> str:
    """
    Join the destination prefix and a backup version into a raw path.

    Args:
        prefix: Destination path prefix, may be empty
        version: Version label of the backup

    Returns:
        Unsanitized destination path
    """
    if not prefix:
        return version
    return f"{prefix.rstrip('/')}/{version}"


class BackupCycle:
    """
    Runs the fetch, select, download, name and upload steps once per call.

    A cycle keeps no state between runs; every error propagates to the caller.
    """

    def __init__(self, source: BackupSource, storage: StorageProvider, destination_prefix: str,
                 max_backup_bytes: int, folder_id: Optional[str] = None):
        """
        Initialize the cycle.

        Args:
            source: Backup source handler
            storage: Destination storage handler
            destination_prefix: Path prefix for uploaded backups
            max_backup_bytes: Largest backup that will be relayed
            folder_id: Optional destination folder passed to the storage handler
        """
        self.source = source
        self.storage = storage
        self.destination_prefix = destination_prefix
        self.max_backup_bytes = max_backup_bytes
        self.folder_id = folder_id

    def run(self) -> CycleResult:
        """
        Relay the newest backup once.

        Returns:
            CycleResult describing the uploaded backup

        Raises:
            RelayError: Any failure of a step, unchanged
        """
        started_at = datetime.utcnow()
        logger.info("Starting backup cycle")

        candidates = self.source.list_backups()
        selected = select_latest(candidates)
        logger.info(f"Selected backup version {selected.version}")

        buffer = io.BytesIO()
        try:
            size = self.source.download(selected.location, buffer, self.max_backup_bytes)
            logger.info(f"Downloaded backup {selected.version} ({size / 1024 / 1024:.2f} MB)")

            name = sanitize_name(destination_path(self.destination_prefix, selected.version))
            logger.info(f"Uploading backup to {self.storage.kind} as {name!r}")

            ref = self.storage.upload(buffer, name, folder_id=self.folder_id)
        finally:
            buffer.close()

        result = CycleResult(
            version=selected.version,
            name=name,
            size_bytes=size,
            destination_ref=ref,
            started_at=started_at,
            completed_at=datetime.utcnow()
        )
        logger.info(f"Backup cycle completed: {name!r} uploaded ({ref})")
        return result
