"""
Command line entry point for backup-relay.
"""

import argparse
import logging
import os
import signal
from typing import List, Optional

from backup_relay import configure_logging, create_relay
from backup_relay.config import ConfigError, load_config
from backup_relay.errors import RelayError


logger = logging.getLogger(__name__)

HELP = """
You must provide a --config flag with the path to a config file.

The config file must include the following options in YAML format:

general:

    api_token: the API token of the backup source (e.g. your Todoist API key)

    backup_interval: How often to conduct the backup. A duration string like
    1m, 4h, or 3d.

    Optional: catalog_url, max_backup_bytes, retry_interval, max_retries,
    request_timeout, failure_policy (terminate or continue), log_dir, debug.

destination:

    type: onedrive, google_drive or s3

    path_prefix: path the backups are written to, e.g. "backups"

    onedrive: tenant_id, client_id, client_secret, drive_id
    google_drive: credentials_path, folder_name
    s3: bucket, region, access_key, secret_key

You can optionally use the --oneshot flag to create a single backup without
running the job as a daemon.
"""


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog='backup-relay',
        description="Relays the newest backup from a source API to a storage destination."
    )
    parser.add_argument("--config", type=str, help="Path to the configuration YAML file")
    parser.add_argument("--oneshot", action="store_true", help="Run one backup and exit")
    return parser.parse_args(argv)


def _install_signal_handlers(relay):
    def handle_signal(signum, frame):
        # A second signal gives up on the cycle in progress
        if relay.stop_requested:
            raise KeyboardInterrupt
        logger.info("Received interrupt. Stopping.")
        relay.stop()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)


def _force_exit(status: int):
    # Skips the interpreter's join of the scheduler worker thread
    logging.shutdown()
    os._exit(status)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Run backup-relay.

    Returns:
        Process exit status
    """
    args = parse_args(argv)

    if not args.config:
        print(HELP)
        return 1

    try:
        config = load_config(args.config)
    except ConfigError as e:
        configure_logging()
        logger.error(f"Invalid config: {e}")
        return 1

    configure_logging(debug=config.debug, log_dir=config.log_dir)

    try:
        relay = create_relay(config)
    except RelayError as e:
        logger.error(f"Could not set up the backup destination: {e}")
        return 1

    _install_signal_handlers(relay)

    try:
        relay.run(oneshot=args.oneshot)
    except RelayError as e:
        logger.error(f"Backup failed: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted again, abandoning the backup cycle in progress")
        _force_exit(1)
        return 1

    return 0
