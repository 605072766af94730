"""
Shared pytest fixtures for backup-relay tests.

This module provides fixtures for:
- Fake HTTP responses and a requests session with a mocked transport
- Sample backup catalogs
- Configuration dicts and files
- Mock fixtures for external services (S3)
"""

import io
import json

import pytest
import boto3
import requests
import yaml
from unittest.mock import MagicMock
from moto import mock_aws

from backup_relay.relay.catalog import BackupCandidate


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep BACKUP_RELAY_* overrides from the host environment out of tests."""
    for name in ('BACKUP_RELAY_API_TOKEN', 'BACKUP_RELAY_CLIENT_SECRET',
                 'BACKUP_RELAY_LOG_DIR', 'BACKUP_RELAY_DEBUG'):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def make_response():
    """
    Factory for real requests.Response objects with an in-memory body.

    Usage: make_response(200, b'body') or make_response(200, json_body=[...])
    """
    def _make(status_code=200, body=b'', json_body=None, url='https://source.example.com/'):
        if json_body is not None:
            body = json.dumps(json_body).encode('utf-8')
        response = requests.Response()
        response.status_code = status_code
        response.raw = io.BytesIO(body)
        response.url = url
        return response

    return _make


@pytest.fixture
def mock_session():
    """
    requests.Session whose send() is a MagicMock.

    Requests are still prepared by the real session, so URLs and headers
    can be asserted on the PreparedRequest passed to send().
    """
    session = requests.Session()
    session.send = MagicMock()
    return session


@pytest.fixture
def sample_catalog():
    """Catalog with four backups, listed out of order."""
    return [
        {'version': '2018-07-13 02:03', 'url': 'https://source.example.com/a.zip'},
        {'version': '2018-07-13 02:04', 'url': 'https://source.example.com/b.zip'},
        {'version': '2018-07-13 02:06', 'url': 'https://source.example.com/c.zip'},
        {'version': '2018-07-13 02:05', 'url': 'https://source.example.com/d.zip'},
    ]


@pytest.fixture
def sample_candidates(sample_catalog):
    """The sample catalog as BackupCandidate objects."""
    return [BackupCandidate(version=e['version'], location=e['url']) for e in sample_catalog]


@pytest.fixture
def config_dict():
    """A valid configuration using an S3 destination."""
    return {
        'general': {
            'api_token': '123abc123abc123abc',
            'backup_interval': '3h',
            'retry_interval': '1s',
            'max_retries': 2,
        },
        'destination': {
            'type': 's3',
            'bucket': 'test-bucket',
            'region': 'us-east-1',
            'path_prefix': 'backups',
        },
    }


@pytest.fixture
def config_file(tmp_path, config_dict):
    """Write config_dict to a YAML file and return its path."""
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump(config_dict))
    return str(path)


@pytest.fixture
def mock_s3(monkeypatch):
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')

    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3
