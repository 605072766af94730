import os
import re
from typing import Any, Dict, Optional

import yaml

from backup_relay.errors import RelayError
from backup_relay.relay.httpclient import RetryPolicy
from backup_relay.relay.sources import DEFAULT_CATALOG_URL


# Seconds per duration unit, e.g. "90s", "1h30m", "3d"
DURATION_UNITS = {
    'ns': 1e-9,
    'us': 1e-6,
    'µs': 1e-6,
    'ms': 1e-3,
    's': 1,
    'm': 60,
    'h': 3600,
    'd': 86400,
}

_DURATION_PART = r'(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h|d)'
_DURATION_RE = re.compile(f'(?:{_DURATION_PART})+')

FAILURE_POLICIES = ('terminate', 'continue')

# Required keys for each destination type
DESTINATION_FIELDS = {
    'onedrive': ('tenant_id', 'client_id', 'client_secret', 'drive_id'),
    'google_drive': ('credentials_path', 'folder_name'),
    's3': ('bucket',),
}

# The OneDrive simple upload API supports uploads of up to 4MB
DEFAULT_MAX_BACKUP_BYTES = 4_000_000


class ConfigError(RelayError):
    """Raised when the configuration is missing or invalid."""
    pass


def parse_duration(value: Any) -> float:
    """
    Parse a duration string such as "3h" or "1h30m" into seconds.

    Args:
        value: Duration string

    Returns:
        Duration in seconds

    Raises:
        ConfigError: If value is not a sequence of <number><unit> groups
    """
    if not isinstance(value, str) or not _DURATION_RE.fullmatch(value):
        raise ConfigError(
            f"Invalid duration {value!r}: use a number followed by one of "
            f"{', '.join(DURATION_UNITS)}, e.g. 3h or 1h30m"
        )

    return sum(float(amount) * DURATION_UNITS[unit] for amount, unit in re.findall(_DURATION_PART, value))


def _env_flag(name: str) -> Optional[bool]:
    value = os.environ.get(name)
    if value is None:
        return None
    return value.lower() in ('1', 'true', 'yes')


class Config:
    """
    Relay configuration loaded from the "general" and "destination" sections
    of a YAML file.

    Secrets and a few runtime settings can be overridden from the environment:
    BACKUP_RELAY_API_TOKEN, BACKUP_RELAY_CLIENT_SECRET, BACKUP_RELAY_LOG_DIR
    and BACKUP_RELAY_DEBUG.
    """

    def __init__(self, general: Optional[Dict[str, Any]] = None, destination: Optional[Dict[str, Any]] = None):
        general = dict(general or {})
        self.destination = dict(destination or {})

        # todoist_api_key is the historical name of the token setting
        self.api_token = (
            os.environ.get('BACKUP_RELAY_API_TOKEN')
            or general.get('api_token')
            or general.get('todoist_api_key')
            or ''
        )
        self.backup_interval = general.get('backup_interval')
        self.catalog_url = general.get('catalog_url') or DEFAULT_CATALOG_URL
        self.max_backup_bytes = general.get('max_backup_bytes', DEFAULT_MAX_BACKUP_BYTES)
        self.retry_interval = general.get('retry_interval', '10m')
        self.max_retries = general.get('max_retries', 6)
        self.request_timeout = general.get('request_timeout', 60)
        self.failure_policy = general.get('failure_policy', 'terminate')
        self.log_dir = os.environ.get('BACKUP_RELAY_LOG_DIR') or general.get('log_dir')

        debug = _env_flag('BACKUP_RELAY_DEBUG')
        self.debug = bool(general.get('debug', False)) if debug is None else debug

        client_secret = os.environ.get('BACKUP_RELAY_CLIENT_SECRET')
        if client_secret:
            self.destination['client_secret'] = client_secret

        self.destination.setdefault('type', 'onedrive')

    @classmethod
    def from_dict(cls, data: Any) -> 'Config':
        """Build a Config from the decoded YAML document."""
        if not isinstance(data, dict):
            raise ConfigError("The config file must contain a YAML mapping")

        general = data.get('general') or {}
        destination = data.get('destination') or {}
        if not isinstance(general, dict) or not isinstance(destination, dict):
            raise ConfigError("The general and destination sections must be mappings")

        return cls(general, destination)

    @property
    def destination_prefix(self) -> str:
        return self.destination.get('path_prefix') or ''

    @property
    def folder_id(self) -> Optional[str]:
        return self.destination.get('folder_id') or None

    @property
    def backup_interval_seconds(self) -> float:
        return parse_duration(self.backup_interval)

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(interval=parse_duration(self.retry_interval), max_retries=self.max_retries)

    def validate(self):
        """
        Check the configuration and raise on the first problem found.

        Raises:
            ConfigError: Describing the invalid setting
        """
        if not self.api_token:
            raise ConfigError("Must include an API key for the backup source (general.api_token)")

        if not self.backup_interval:
            raise ConfigError("Must include a backup interval (general.backup_interval)")

        try:
            interval = parse_duration(self.backup_interval)
        except ConfigError as e:
            raise ConfigError(f"The backup interval must be a valid duration: {e}") from e
        if interval <= 0:
            raise ConfigError("The backup interval must be a positive duration, e.g. 3h")

        try:
            parse_duration(self.retry_interval)
        except ConfigError as e:
            raise ConfigError(f"The retry interval must be a valid duration: {e}") from e

        if not isinstance(self.max_retries, int) or isinstance(self.max_retries, bool) or self.max_retries < 0:
            raise ConfigError(f"max_retries must be a non-negative integer, got {self.max_retries!r}")

        if not isinstance(self.max_backup_bytes, int) or isinstance(self.max_backup_bytes, bool) \
                or self.max_backup_bytes <= 0:
            raise ConfigError(f"max_backup_bytes must be a positive integer, got {self.max_backup_bytes!r}")

        if self.request_timeout is not None and (
                not isinstance(self.request_timeout, (int, float)) or self.request_timeout <= 0):
            raise ConfigError(f"request_timeout must be a positive number of seconds, got {self.request_timeout!r}")

        if self.failure_policy not in FAILURE_POLICIES:
            raise ConfigError(
                f"failure_policy must be one of {', '.join(FAILURE_POLICIES)}, got {self.failure_policy!r}"
            )

        destination_type = self.destination.get('type')
        if destination_type not in DESTINATION_FIELDS:
            raise ConfigError(
                f"Unsupported destination type {destination_type!r} "
                f"(expected one of {', '.join(DESTINATION_FIELDS)})"
            )

        for field in DESTINATION_FIELDS[destination_type]:
            if not self.destination.get(field):
                raise ConfigError(f"The {destination_type} destination must include the field: {field}")

        if destination_type == 'google_drive' and not os.path.exists(self.destination['credentials_path']):
            raise ConfigError(f"Cannot find a file at credentials_path: {self.destination['credentials_path']}")


def load_config(path: str) -> Config:
    """
    Load and validate the YAML configuration file.

    Args:
        path: Path to the config file

    Returns:
        Validated Config

    Raises:
        ConfigError: If the file cannot be read, parsed or validated
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Could not open the config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Could not parse the config file {path}: {e}") from e

    config = Config.from_dict(data)
    config.validate()
    return config
