"""
Configuration

All settings come from environment variables; load_config() returns a plain dict.
"""

import os
import logging
import secrets
from pathlib import Path
from typing import Dict, Any

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = '/app/data'


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, '').strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default


def load_secret_key(key_file: Path) -> str:
    """Load secret key from env var, persistent file, or generate a new one.

    Priority:
      1. SECRET_KEY env var (explicit override)
      2. key_file (auto-generated on first run, persists across restarts)
      3. Generate a new random hex key, save it, and use it
    """
    env_key = os.environ.get('SECRET_KEY', '').strip()
    if env_key:
        return env_key

    try:
        if key_file.exists():
            stored = key_file.read_text().strip()
            if stored:
                return stored
    except OSError as e:
        logger.warning(f"Could not read secret key file {key_file}: {e}")

    new_key = secrets.token_hex(32)
    try:
        key_file.parent.mkdir(parents=True, exist_ok=True)
        key_file.write_text(new_key)
        key_file.chmod(0o600)
        logger.info(f"Generated new secret key and saved to {key_file}")
    except OSError as e:
        # Stored tokens become unreadable after a restart with a new key
        logger.warning(f"Could not persist secret key: {e}")
    return new_key


def load_config() -> Dict[str, Any]:
    """Load configuration from environment variables."""
    data_dir = Path(os.getenv('CLOUDHUB_DATA_DIR', DEFAULT_DATA_DIR))
    return {
        'data_dir': str(data_dir),
        'db_path': os.getenv('CLOUDHUB_DB_PATH', str(data_dir / 'cloudhub.db')),
        'secret_key_file': os.getenv('SECRET_KEY_FILE', str(data_dir / '.secret_key')),
        'web_host': os.getenv('WEB_HOST', '0.0.0.0'),
        'web_port': _int_env('WEB_PORT', 8051),
        'web_threads': _int_env('WEB_THREADS', 4),
        'max_upload_mb': _int_env('MAX_UPLOAD_MB', 512),
        'provider_timeout_seconds': _int_env('PROVIDER_TIMEOUT_SECONDS', 60),
        'max_pages_per_provider': _int_env('MAX_PAGES_PER_PROVIDER', 10),
        'log_level': os.getenv('LOG_LEVEL', 'INFO').upper(),
        'google_client_id': os.getenv('GOOGLE_CLIENT_ID'),
        'google_client_secret': os.getenv('GOOGLE_CLIENT_SECRET'),
        'dropbox_app_key': os.getenv('DROPBOX_APP_KEY'),
        'dropbox_app_secret': os.getenv('DROPBOX_APP_SECRET'),
    }
