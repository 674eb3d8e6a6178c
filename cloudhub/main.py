"""
CloudHub - Main Entry Point

Wires configuration, the account store and the aggregator, then serves the API.
"""

import sys
import logging
import argparse
from pathlib import Path
from typing import Any, Dict

from cloudhub import __version__
from cloudhub.account_store import AccountStore
from cloudhub.aggregator import StorageAggregator
from cloudhub.config import load_config, load_secret_key
from cloudhub.credential_store import TokenCipher
from cloudhub.web_api import install_log_buffer, run_web_server

logger = logging.getLogger(__name__)


def configure_logging(level: str = 'INFO'):
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    # SDK request logging is too chatty at INFO
    for noisy in ('googleapiclient.discovery', 'urllib3', 'dropbox'):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def build_services(config: Dict[str, Any]):
    """
    Create the account store and aggregator from configuration.

    Returns:
        Tuple of (account_store, aggregator)
    """
    cipher = TokenCipher(config['secret_key'])
    account_store = AccountStore(db_path=config['db_path'], cipher=cipher)
    aggregator = StorageAggregator(account_store, config=config)
    return account_store, aggregator


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description='CloudHub multi-provider storage API')
    parser.add_argument('--host', help='Bind address (overrides WEB_HOST)')
    parser.add_argument('--port', type=int, help='Bind port (overrides WEB_PORT)')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    args = parser.parse_args()

    config = load_config()
    configure_logging(config['log_level'])
    install_log_buffer()

    if args.host:
        config['web_host'] = args.host
    if args.port:
        config['web_port'] = args.port

    config['secret_key'] = load_secret_key(Path(config['secret_key_file']))

    logger.info(f"CloudHub v{__version__} starting (db: {config['db_path']})")
    for provider, key in (('google', 'google_client_id'), ('dropbox', 'dropbox_app_key')):
        if not config.get(key):
            logger.info(f"{provider}: no app credentials configured, expired tokens will not be refreshed")

    account_store, aggregator = build_services(config)

    try:
        run_web_server(config, account_store, aggregator)
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == '__main__':
    main()
