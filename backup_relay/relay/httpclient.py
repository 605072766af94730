"""
HTTP client with bounded retries for server errors.

Every outbound call to the backup source goes through RetryingHTTPClient:
- 2xx responses are returned
- 4xx responses raise ClientError right away
- 5xx responses are resent after a blocking wait until the retry budget runs out
- transport failures raise TransportError without retrying
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import requests

from backup_relay.errors import RelayError


logger = logging.getLogger(__name__)


class HTTPRequestError(RelayError):
    """Raised when an HTTP exchange does not produce a usable response."""

    def __init__(self, message: str, request_url: str, response: Optional[requests.Response] = None):
        super().__init__(message)
        self.request_url = request_url
        self.response = response


class TransportError(HTTPRequestError):
    """Raised when no response was obtained (connection, DNS, timeout)."""
    pass


class ClientError(HTTPRequestError):
    """Raised on a 4xx response. Never retried."""
    pass


class ServerError(HTTPRequestError):
    """Raised on a 5xx response once the retry budget is spent."""

    def __init__(self, message: str, request_url: str, response: requests.Response, retries: int):
        super().__init__(message, request_url, response)
        self.retries = retries


class UnexpectedStatusError(HTTPRequestError):
    """Raised on a status code outside the 2xx/4xx/5xx classes."""
    pass


@dataclass(frozen=True)
class RetryPolicy:
    """
    How server errors are retried.

    Attributes:
        interval: Seconds to wait before each retry
        max_retries: Number of retries after the first attempt
    """
    interval: float
    max_retries: int

    def __post_init__(self):
        if self.interval < 0:
            raise ValueError(f"Retry interval must not be negative: {self.interval}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must not be negative: {self.max_retries}")


class RetryingHTTPClient:
    """
    Sends requests through a requests.Session, retrying 5xx responses.

    The client keeps no per-request state, so one instance can be shared by
    every call in the process.
    """

    def __init__(self, session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep, timeout: Optional[float] = 60):
        """
        Initialize the client.

        Args:
            session: Session used to send requests (a new one by default)
            sleep: Function used to wait between retries
            timeout: Per-attempt timeout in seconds, None to wait forever
        """
        self.session = session or requests.Session()
        self.sleep = sleep
        self.timeout = timeout

    def execute(self, request: requests.Request, policy: RetryPolicy, stream: bool = False) -> requests.Response:
        """
        Send a request, retrying on server errors.

        Args:
            request: Request to send. It is prepared once and resent unchanged.
            policy: Retry policy
            stream: Whether to defer downloading the response body

        Returns:
            The 2xx response

        Raises:
            TransportError: If no response was obtained
            ClientError: On a 4xx response
            ServerError: If the last permitted attempt got a 5xx response
            UnexpectedStatusError: On any other status code
        """
        prepared = self.session.prepare_request(request)
        url = prepared.url
        remaining = policy.max_retries

        while True:
            try:
                response = self.session.send(prepared, timeout=self.timeout, stream=stream)
            except requests.RequestException as e:
                raise TransportError(f"Request to {url} failed: {e}", url) from e

            status_class = response.status_code // 100

            if status_class == 2:
                return response

            if status_class == 4:
                raise ClientError(
                    f"Got client error {response.status_code} for URL {url}", url, response
                )

            if status_class != 5:
                raise UnexpectedStatusError(
                    f"Got unexpected status {response.status_code} for URL {url}", url, response
                )

            if remaining == 0:
                raise ServerError(
                    f"The request to {url} failed after {policy.max_retries} retries "
                    f"(last status {response.status_code})",
                    url, response, policy.max_retries
                )

            remaining -= 1
            logger.warning(
                f"Server error {response.status_code} from {url}, retrying in {policy.interval}s "
                f"({policy.max_retries - remaining}/{policy.max_retries})"
            )
            response.close()
            self.sleep(policy.interval)
