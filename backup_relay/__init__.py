import os
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional


__version__ = '0.1.0'


def configure_logging(debug: bool = False, log_dir: Optional[str] = None):
    """Configure application logging"""

    # Set log level based on environment
    log_level = logging.DEBUG if debug else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    handlers = [console_handler]

    # File handler, only when a log directory is configured
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 'backup-relay.log'),
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # Keep library chatter out of INFO output
    logging.getLogger('apscheduler').setLevel(logging.WARNING if not debug else logging.DEBUG)
    logging.getLogger('urllib3').setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_relay(config):
    """
    Build the scheduler that relays backups according to config.

    Args:
        config: Validated backup_relay.config.Config

    Returns:
        CycleScheduler ready to run
    """
    from backup_relay.relay.httpclient import RetryingHTTPClient
    from backup_relay.relay.sources import BackupSource
    from backup_relay.relay.storage import create_storage
    from backup_relay.relay.executor import BackupCycle
    from backup_relay.scheduler import CycleScheduler

    client = RetryingHTTPClient(timeout=config.request_timeout)
    source = BackupSource(
        api_token=config.api_token,
        client=client,
        policy=config.retry_policy,
        catalog_url=config.catalog_url
    )
    storage = create_storage(config.destination)

    cycle = BackupCycle(
        source=source,
        storage=storage,
        destination_prefix=config.destination_prefix,
        max_backup_bytes=config.max_backup_bytes,
        folder_id=config.folder_id
    )

    return CycleScheduler(
        run_cycle=cycle.run,
        interval_seconds=config.backup_interval_seconds,
        failure_policy=config.failure_policy
    )
