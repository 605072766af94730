"""
Backup catalog model and selection of the newest backup.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Sequence

from backup_relay.errors import RelayError


# Todoist labels each backup with a minute-resolution timestamp, e.g. "2018-07-13 02:05"
VERSION_FORMAT = '%Y-%m-%d %H:%M'
_VERSION_RE = re.compile(r'\d{4}-\d{2}-\d{2} \d{2}:\d{2}')


class CatalogError(RelayError):
    """Raised when the backup catalog is empty or malformed."""
    pass


@dataclass(frozen=True)
class BackupCandidate:
    """
    One backup advertised by the source.

    Attributes:
        version: Timestamp label in VERSION_FORMAT
        location: URL the backup payload is fetched from
    """
    version: str
    location: str


def parse_version(version: str) -> datetime:
    """
    Parse a backup version label.

    Args:
        version: Label such as "2018-07-13 02:05"

    Returns:
        Naive datetime for the label

    Raises:
        CatalogError: If the label does not match VERSION_FORMAT exactly
    """
    if not _VERSION_RE.fullmatch(version):
        raise CatalogError(f"Cannot parse backup version {version!r} (expected YYYY-MM-DD hh:mm)")

    try:
        return datetime.strptime(version, VERSION_FORMAT)
    except ValueError as e:
        raise CatalogError(f"Cannot parse backup version {version!r}: {e}") from e


def parse_catalog(payload: Any) -> List[BackupCandidate]:
    """
    Convert the decoded catalog JSON into candidates.

    Missing fields become empty strings and are rejected later by
    select_latest; anything structurally wrong is rejected here.

    Args:
        payload: Decoded JSON body, expected to be a list of {"version", "url"} objects

    Returns:
        List of BackupCandidate in catalog order

    Raises:
        CatalogError: If the payload has the wrong shape
    """
    if not isinstance(payload, list):
        raise CatalogError(f"Expected a list of backups, got {type(payload).__name__}")

    candidates = []
    for index, entry in enumerate(payload):
        if not isinstance(entry, dict):
            raise CatalogError(f"Backup entry {index} is not an object: {entry!r}")

        version = entry.get('version', '')
        url = entry.get('url', '')
        if not isinstance(version, str) or not isinstance(url, str):
            raise CatalogError(f"Backup entry {index} has non-string fields: {entry!r}")

        candidates.append(BackupCandidate(version=version, location=url))

    return candidates


def select_latest(candidates: Sequence[BackupCandidate]) -> BackupCandidate:
    """
    Pick the candidate with the latest version timestamp.

    Candidates are scanned in order and the scan stops at the first invalid
    one. When two candidates share the latest timestamp the first one wins.

    Args:
        candidates: Backups listed by the source

    Returns:
        The newest BackupCandidate

    Raises:
        CatalogError: If the list is empty, a location is blank or a version
            cannot be parsed
    """
    if not candidates:
        raise CatalogError("The list of available backups is empty")

    latest = None
    latest_time = None

    for candidate in candidates:
        if not candidate.location:
            raise CatalogError(
                f"The list of available backups includes a blank URL (version {candidate.version!r})"
            )

        timestamp = parse_version(candidate.version)

        if latest_time is None or timestamp > latest_time:
            latest_time = timestamp
            latest = candidate

    return latest
