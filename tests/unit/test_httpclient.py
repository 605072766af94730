"""
Unit tests for the retrying HTTP client (backup_relay/relay/httpclient.py).

Tests retry classification of 2xx/4xx/5xx responses and transport failures.
"""

from dataclasses import FrozenInstanceError
from unittest.mock import MagicMock

import pytest
import requests

from backup_relay.relay.httpclient import (
    RetryingHTTPClient,
    RetryPolicy,
    ClientError,
    ServerError,
    TransportError,
    UnexpectedStatusError
)


URL = 'https://source.example.com/backups'


def _request():
    return requests.Request('GET', URL, headers={'Authorization': 'Bearer token'})


class TestRetryPolicy:
    """Test RetryPolicy validation."""

    def test_policy_is_immutable(self):
        """Test that a policy cannot be changed after creation."""
        policy = RetryPolicy(interval=1, max_retries=3)

        with pytest.raises(FrozenInstanceError):
            policy.max_retries = 5

    def test_negative_retries_rejected(self):
        """Test that a negative retry count is rejected."""
        with pytest.raises(ValueError, match="max_retries"):
            RetryPolicy(interval=1, max_retries=-1)

    def test_negative_interval_rejected(self):
        """Test that a negative interval is rejected."""
        with pytest.raises(ValueError, match="interval"):
            RetryPolicy(interval=-1, max_retries=1)


class TestRetryingHTTPClient:
    """Test RetryingHTTPClient.execute."""

    def setup_method(self):
        self.sleep = MagicMock()

    def _client(self, session):
        return RetryingHTTPClient(session=session, sleep=self.sleep, timeout=5)

    def test_success_returns_response(self, mock_session, make_response):
        """Test that a 200 response is returned without retrying."""
        mock_session.send.return_value = make_response(200, b'ok')

        response = self._client(mock_session).execute(_request(), RetryPolicy(interval=30, max_retries=3))

        assert response.status_code == 200
        assert mock_session.send.call_count == 1
        self.sleep.assert_not_called()

    def test_other_2xx_is_success(self, mock_session, make_response):
        """Test that any 2xx status counts as success."""
        mock_session.send.return_value = make_response(204)

        response = self._client(mock_session).execute(_request(), RetryPolicy(interval=30, max_retries=3))

        assert response.status_code == 204

    def test_server_errors_then_success(self, mock_session, make_response):
        """Test that 500 on the first max_retries attempts then 200 succeeds."""
        mock_session.send.side_effect = [
            make_response(500),
            make_response(502),
            make_response(503),
            make_response(200, b'payload'),
        ]

        response = self._client(mock_session).execute(_request(), RetryPolicy(interval=30, max_retries=3))

        assert response.status_code == 200
        assert response.content == b'payload'
        assert mock_session.send.call_count == 4
        assert self.sleep.call_count == 3
        self.sleep.assert_called_with(30)

    def test_server_errors_exhaust_retries(self, mock_session, make_response):
        """Test that a request always returning 500 fails after exactly max_retries retries."""
        mock_session.send.side_effect = [make_response(500) for _ in range(10)]

        with pytest.raises(ServerError) as exc_info:
            self._client(mock_session).execute(_request(), RetryPolicy(interval=30, max_retries=3))

        assert mock_session.send.call_count == 4
        assert self.sleep.call_count == 3
        assert exc_info.value.retries == 3
        assert exc_info.value.response.status_code == 500
        assert URL in str(exc_info.value)
        assert '3 retries' in str(exc_info.value)

    def test_zero_retries_sends_once(self, mock_session, make_response):
        """Test that a policy without retries sends a single request."""
        mock_session.send.side_effect = [make_response(500), make_response(200)]

        with pytest.raises(ServerError):
            self._client(mock_session).execute(_request(), RetryPolicy(interval=30, max_retries=0))

        assert mock_session.send.call_count == 1
        self.sleep.assert_not_called()

    def test_client_error_not_retried(self, mock_session, make_response):
        """Test that a 404 is returned immediately with zero retries."""
        mock_session.send.return_value = make_response(404)

        with pytest.raises(ClientError) as exc_info:
            self._client(mock_session).execute(_request(), RetryPolicy(interval=30, max_retries=3))

        assert mock_session.send.call_count == 1
        self.sleep.assert_not_called()
        assert exc_info.value.response.status_code == 404
        assert exc_info.value.request_url == URL

    def test_unexpected_status_not_retried(self, mock_session, make_response):
        """Test that a 3xx surfacing from the session is an error."""
        mock_session.send.return_value = make_response(302)

        with pytest.raises(UnexpectedStatusError):
            self._client(mock_session).execute(_request(), RetryPolicy(interval=30, max_retries=3))

        assert mock_session.send.call_count == 1
        self.sleep.assert_not_called()

    def test_transport_error_not_retried(self, mock_session):
        """Test that a connection failure is raised without retrying."""
        mock_session.send.side_effect = requests.ConnectionError("connection refused")

        with pytest.raises(TransportError) as exc_info:
            self._client(mock_session).execute(_request(), RetryPolicy(interval=30, max_retries=3))

        assert mock_session.send.call_count == 1
        self.sleep.assert_not_called()
        assert exc_info.value.response is None
        assert URL in str(exc_info.value)

    def test_timeout_is_transport_error(self, mock_session):
        """Test that a timeout before any response is a transport error."""
        mock_session.send.side_effect = requests.Timeout("timed out")

        with pytest.raises(TransportError):
            self._client(mock_session).execute(_request(), RetryPolicy(interval=30, max_retries=3))

    def test_same_request_resent(self, mock_session, make_response):
        """Test that every retry sends the same prepared request."""
        mock_session.send.side_effect = [make_response(500), make_response(500), make_response(200)]

        self._client(mock_session).execute(_request(), RetryPolicy(interval=0, max_retries=5))

        sent = [c.args[0] for c in mock_session.send.call_args_list]
        assert len(sent) == 3
        assert all(p is sent[0] for p in sent)
        assert sent[0].url == URL
        assert sent[0].headers['Authorization'] == 'Bearer token'

    def test_send_options(self, mock_session, make_response):
        """Test that timeout and stream are passed to the session."""
        mock_session.send.return_value = make_response(200)

        self._client(mock_session).execute(_request(), RetryPolicy(interval=0, max_retries=0), stream=True)

        kwargs = mock_session.send.call_args.kwargs
        assert kwargs['timeout'] == 5
        assert kwargs['stream'] is True

    def test_discarded_responses_closed(self, mock_session, make_response):
        """Test that responses thrown away before a retry are closed."""
        first = make_response(500)
        mock_session.send.side_effect = [first, make_response(200)]

        self._client(mock_session).execute(_request(), RetryPolicy(interval=0, max_retries=1))

        assert first.raw.closed
