"""
Storage handlers for relayed backups.

Supports:
- OneDriveStorage: Upload to a OneDrive drive through Microsoft Graph
- GoogleDriveStorage: Upload to a Google Drive folder with a service account
- S3Storage: Upload to an AWS S3 bucket

Every handler uploads a whole in-memory buffer in a single request.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, BinaryIO, Dict, Optional
from urllib.parse import quote

import boto3
import msal
import requests
from botocore.exceptions import BotoCoreError, ClientError
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from backup_relay.errors import RelayError


logger = logging.getLogger(__name__)


class StorageError(RelayError):
    """Raised when storage operation fails."""
    pass


class StorageProvider(ABC):
    """Abstract base class for destination storage handlers."""

    kind = 'storage'

    @abstractmethod
    def upload(self, buffer: BinaryIO, name: str, folder_id: Optional[str] = None) -> str:
        """
        Upload the contents of buffer under name.

        Args:
            buffer: Binary buffer holding the whole backup
            name: Sanitized destination name
            folder_id: Optional provider-specific destination folder

        Returns:
            Provider-specific reference to the uploaded object

        Raises:
            StorageError: If upload fails
        """


class OneDriveStorage(StorageProvider):
    """
    Handler for uploading backups to OneDrive with Microsoft Graph.

    Authenticates with the client credentials flow and writes into the
    app folder of the configured drive, or into folder_id when one is given.
    The Graph simple upload accepts bodies of up to 4MB:
    https://learn.microsoft.com/en-us/onedrive/developer/rest-api/api/driveitem_put_content
    """

    kind = 'onedrive'

    GRAPH_URL = 'https://graph.microsoft.com/v1.0'
    SCOPES = ['https://graph.microsoft.com/.default']

    def __init__(self, tenant_id: str, client_id: str, client_secret: str, drive_id: str,
                 session: Optional[requests.Session] = None, timeout: Optional[float] = 60):
        """
        Initialize OneDrive storage handler.

        Args:
            tenant_id: Azure AD tenant ID
            client_id: Application (client) ID
            client_secret: Client secret of the application
            drive_id: ID of the drive to write to
            session: Session used for Graph requests (a new one by default)
            timeout: Upload timeout in seconds
        """
        self.drive_id = drive_id
        self.session = session or requests.Session()
        self.timeout = timeout

        try:
            self.app = msal.ConfidentialClientApplication(
                client_id,
                authority=f'https://login.microsoftonline.com/{tenant_id}',
                client_credential=client_secret
            )
        except (ValueError, requests.RequestException) as e:
            raise StorageError(f"Failed to initialize Microsoft identity client: {e}") from e

    def _get_token(self) -> str:
        try:
            result = self.app.acquire_token_for_client(scopes=self.SCOPES)
        except requests.RequestException as e:
            raise StorageError(f"Could not reach Azure AD for an auth token: {e}") from e

        if 'access_token' not in result:
            reason = result.get('error_description') or result.get('error') or 'unknown error'
            raise StorageError(f"Could not retrieve an Azure AD auth token: {reason}")

        return result['access_token']

    def upload_url(self, name: str, folder_id: Optional[str] = None) -> str:
        """Build the simple upload URL for name."""
        path = quote(name, safe='/')
        drive = f"{self.GRAPH_URL}/drives/{self.drive_id}"

        if folder_id:
            return f"{drive}/items/{folder_id}:/{path}:/content"
        return f"{drive}/special/approot:/{path}:/content"

    def upload(self, buffer: BinaryIO, name: str, folder_id: Optional[str] = None) -> str:
        token = self._get_token()
        url = self.upload_url(name, folder_id)
        buffer.seek(0)

        try:
            response = self.session.put(
                url,
                data=buffer,
                headers={
                    'Authorization': f'Bearer {token}',
                    'Content-Type': 'application/octet-stream'
                },
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise StorageError(f"OneDrive upload to {url} failed: {e}") from e

        if response.status_code not in (200, 201):
            raise StorageError(
                f"OneDrive upload to {url} got unexpected response code: {response.status_code}"
            )

        try:
            return response.json().get('id', name)
        except ValueError:
            return name


class GoogleDriveStorage(StorageProvider):
    """
    Handler for uploading backups to Google Drive.

    Backups go into a folder named folder_name at the root of the drive,
    created on first use. The drive.file scope limits the service account
    to files this application creates.
    """

    kind = 'google_drive'

    SCOPES = ['https://www.googleapis.com/auth/drive.file']
    FOLDER_MIME = 'application/vnd.google-apps.folder'
    BACKUP_MIME = 'application/zip'

    def __init__(self, credentials_path: str, folder_name: str, service: Any = None):
        """
        Initialize Google Drive storage handler.

        Args:
            credentials_path: Path to a service account key file
            folder_name: Name of the folder backups are written to
            service: Prebuilt Drive v3 service (built from credentials_path by default)
        """
        self.folder_name = folder_name

        if service is None:
            try:
                credentials = service_account.Credentials.from_service_account_file(
                    credentials_path, scopes=self.SCOPES
                )
            except (OSError, ValueError) as e:
                raise StorageError(f"Unable to load Google credentials from {credentials_path}: {e}") from e
            service = build('drive', 'v3', credentials=credentials, cache_discovery=False)

        self._service = service

    def _find_or_create_folder(self) -> str:
        safe_name = self.folder_name.replace("'", "\\'")
        query = f"name = '{safe_name}' and mimeType = '{self.FOLDER_MIME}' and trashed = false"

        files = (
            self._service.files()
            .list(q=query, spaces='drive', fields='files(id, name)')
            .execute()
            .get('files', [])
        )

        if len(files) == 1:
            return files[0]['id']

        if len(files) > 1:
            raise StorageError(
                f"Unexpected number of backup folders: {len(files)} folders named {self.folder_name!r}"
            )

        logger.info(f"Creating Google Drive folder {self.folder_name!r}")
        folder = (
            self._service.files()
            .create(body={'name': self.folder_name, 'mimeType': self.FOLDER_MIME}, fields='id')
            .execute()
        )
        return folder['id']

    def upload(self, buffer: BinaryIO, name: str, folder_id: Optional[str] = None) -> str:
        buffer.seek(0)

        try:
            parent = folder_id or self._find_or_create_folder()
            media = MediaIoBaseUpload(buffer, mimetype=self.BACKUP_MIME, resumable=False)
            created = (
                self._service.files()
                .create(
                    body={'name': name, 'mimeType': self.BACKUP_MIME, 'parents': [parent]},
                    media_body=media,
                    fields='id'
                )
                .execute()
            )
        except (HttpError, GoogleAuthError, OSError) as e:
            raise StorageError(f"Google Drive upload of {name!r} failed: {e}") from e

        return created['id']


class S3Storage(StorageProvider):
    """
    Handler for uploading backups to AWS S3.

    The object key is the sanitized name, below folder_id when one is given.
    Without explicit keys boto3 falls back to its default credential chain.
    """

    kind = 's3'

    def __init__(self, bucket_name: str, region: str = 'us-east-1',
                 access_key: Optional[str] = None, secret_key: Optional[str] = None):
        """
        Initialize S3 storage handler.

        Args:
            bucket_name: S3 bucket name
            region: AWS region (default: us-east-1)
            access_key: AWS access key ID
            secret_key: AWS secret access key
        """
        self.bucket_name = bucket_name
        self.region = region

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region
            )
        except (BotoCoreError, ValueError) as e:
            raise StorageError(f"Failed to initialize S3 client: {e}") from e

    def upload(self, buffer: BinaryIO, name: str, folder_id: Optional[str] = None) -> str:
        s3_key = f"{folder_id.strip('/')}/{name}" if folder_id else name
        buffer.seek(0)

        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=s3_key,
                Body=buffer
            )
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 upload failed ({error_code}): {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}") from e

        return s3_key


def create_storage(config: Dict[str, Any]) -> StorageProvider:
    """
    Factory function to create the configured storage handler.

    Args:
        config: The validated "destination" section of the configuration

    Returns:
        OneDriveStorage, GoogleDriveStorage or S3Storage instance

    Raises:
        ValueError: If the destination type is invalid
    """
    storage_type = config.get('type')

    if storage_type == 'onedrive':
        return OneDriveStorage(
            tenant_id=config['tenant_id'],
            client_id=config['client_id'],
            client_secret=config['client_secret'],
            drive_id=config['drive_id']
        )
    elif storage_type == 'google_drive':
        return GoogleDriveStorage(
            credentials_path=config['credentials_path'],
            folder_name=config['folder_name']
        )
    elif storage_type == 's3':
        return S3Storage(
            bucket_name=config['bucket'],
            region=config.get('region') or 'us-east-1',
            access_key=config.get('access_key'),
            secret_key=config.get('secret_key')
        )
    else:
        raise ValueError(f"Invalid destination type: {storage_type}")
