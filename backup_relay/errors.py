"""
Base exception for backup-relay.

Each concrete error lives in the module that raises it; they all derive
from RelayError so the command line can report any cycle failure in one place.
"""


class RelayError(Exception):
    """Base class for every error raised by backup-relay."""
    pass
