"""
Source handler for the backup listing and payload APIs.

Both the catalog request and the payload download are authenticated with
the same bearer token and go through the retrying HTTP client.
"""

import logging
from typing import BinaryIO, List

import requests

from backup_relay.errors import RelayError
from .catalog import BackupCandidate, CatalogError, parse_catalog
from .httpclient import RetryingHTTPClient, RetryPolicy, TransportError


logger = logging.getLogger(__name__)

DEFAULT_CATALOG_URL = 'https://api.todoist.com/sync/v9/backups/get'

# Download chunk size: 64KB
CHUNK_SIZE = 64 * 1024


class SizeExceededError(RelayError):
    """Raised when a backup payload is larger than the configured limit."""

    def __init__(self, message: str, limit: int):
        super().__init__(message)
        self.limit = limit


class BackupSource:
    """
    Handler for a source that lists backups and serves their payloads.

    The catalog is a JSON array of {"version": ..., "url": ...} objects.
    """

    def __init__(self, api_token: str, client: RetryingHTTPClient, policy: RetryPolicy,
                 catalog_url: str = DEFAULT_CATALOG_URL):
        """
        Initialize the source handler.

        Args:
            api_token: Bearer token for the source API
            client: HTTP client used for every request
            policy: Retry policy for every request
            catalog_url: URL of the backup listing endpoint
        """
        self.api_token = api_token
        self.client = client
        self.policy = policy
        self.catalog_url = catalog_url

    def _request(self, url: str) -> requests.Request:
        return requests.Request('GET', url, headers={'Authorization': f'Bearer {self.api_token}'})

    def list_backups(self) -> List[BackupCandidate]:
        """
        Fetch the list of available backups.

        Returns:
            Candidates in the order the source listed them

        Raises:
            HTTPRequestError: If the request fails (after retries for 5xx)
            CatalogError: If the body is not a valid catalog
        """
        logger.debug(f"Fetching backup catalog from {self.catalog_url}")
        response = self.client.execute(self._request(self.catalog_url), self.policy)

        try:
            payload = response.json()
        except ValueError as e:
            raise CatalogError(f"Unable to parse the available backups from {self.catalog_url}: {e}") from e

        candidates = parse_catalog(payload)
        logger.info(f"Source lists {len(candidates)} backups")
        return candidates

    def download(self, url: str, buffer: BinaryIO, max_bytes: int) -> int:
        """
        Stream a backup payload into a buffer.

        Args:
            url: Payload URL from the catalog
            buffer: Writable binary buffer
            max_bytes: Largest payload accepted

        Returns:
            Number of bytes written

        Raises:
            HTTPRequestError: If the request fails (after retries for 5xx)
            SizeExceededError: If the payload is larger than max_bytes
        """
        response = self.client.execute(self._request(url), self.policy, stream=True)
        written = 0

        try:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if not chunk:
                    continue
                written += len(chunk)
                if written > max_bytes:
                    raise SizeExceededError(
                        f"Backup at {url} exceeds the upload limit of {max_bytes} bytes", max_bytes
                    )
                buffer.write(chunk)
        except requests.RequestException as e:
            raise TransportError(f"Download from {url} was interrupted: {e}", url) from e
        finally:
            response.close()

        logger.info(f"Downloaded {written} bytes from source")
        return written
