"""
Destination name sanitization.

OneDrive and SharePoint reject some characters, some reserved file/folder
names and some substrings in file names:
https://support.microsoft.com/en-us/office/restrictions-and-limitations-in-onedrive-and-sharepoint-64883a5d-228e-48f5-b3d2-eb39e07630fa

Paths are "/"-delimited and "/" is always a separator, never a literal.
"""

import re
from typing import List

from backup_relay.errors import RelayError


MAX_PATH_LENGTH = 400

# " * : < > ? \ | ("/" is a separator, not an illegal character)
ILLEGAL_CHARACTERS = re.compile(r'["*:<>?\\|]')

RESERVED_SEGMENT = re.compile(
    r'\.lock|CON|PRN|AUX|NUL|COM[0-9]|LPT[0-9]|_vti_|desktop\.ini',
    re.IGNORECASE
)

FORBIDDEN_FILENAME_SUBSTRINGS = ('~$', '_vti_')


class NameSanitizationError(RelayError):
    """Raised when a path cannot be turned into a legal destination name."""
    pass


def _check_reserved(segments: List[str], raw_path: str):
    for segment in segments:
        if RESERVED_SEGMENT.fullmatch(segment):
            raise NameSanitizationError(
                f"Path {raw_path!r} contains disallowed file/folder name: {segment!r}"
            )


def _check_filename(filename: str, raw_path: str):
    for substring in FORBIDDEN_FILENAME_SUBSTRINGS:
        if substring in filename:
            raise NameSanitizationError(
                f"File name {filename!r} in path {raw_path!r} cannot include {substring!r}"
            )


def sanitize_name(raw_path: str) -> str:
    """
    Map a relative path to a name the destination accepts.

    One leading and one trailing "/" are removed, and each illegal character
    is replaced with "_". Reserved names and forbidden file name substrings
    cannot be repaired and raise instead. The file name is the last segment
    of raw_path, so a path ending in "/" has an empty file name.

    Args:
        raw_path: "/"-delimited path, at most MAX_PATH_LENGTH characters

    Returns:
        The sanitized path

    Raises:
        NameSanitizationError: If the path is too long, has a reserved
            segment, or its file name contains "~$" or "_vti_"
    """
    if len(raw_path) > MAX_PATH_LENGTH:
        raise NameSanitizationError(
            f"The path cannot exceed {MAX_PATH_LENGTH} characters (got {len(raw_path)})"
        )

    trimmed = raw_path
    if trimmed.startswith('/'):
        trimmed = trimmed[1:]
    if trimmed.endswith('/'):
        trimmed = trimmed[:-1]

    sanitized = ILLEGAL_CHARACTERS.sub('_', trimmed)
    filename = raw_path.split('/')[-1]

    _check_reserved(raw_path.split('/'), raw_path)
    _check_filename(filename, raw_path)

    # Replacement can spell out a reserved name (":vti:" -> "_vti_")
    _check_reserved(sanitized.split('/'), raw_path)
    _check_filename(ILLEGAL_CHARACTERS.sub('_', filename), raw_path)

    return sanitized
