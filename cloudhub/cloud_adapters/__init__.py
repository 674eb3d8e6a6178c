"""
Cloud Service Adapters

Provides a unified interface for file operations on various cloud services.
"""

from typing import Dict

from .base import CloudServiceAdapter
from .google_drive import GoogleDriveAdapter
from .dropbox_adapter import DropboxAdapter
from .onedrive import OneDriveAdapter

ADAPTERS = {
    'google': GoogleDriveAdapter,
    'dropbox': DropboxAdapter,
    'onedrive': OneDriveAdapter,
}


def create_adapter(provider: str, credentials: Dict, timeout: int = 60) -> CloudServiceAdapter:
    """Instantiate the adapter for a provider name."""
    try:
        adapter_class = ADAPTERS[provider]
    except KeyError:
        raise ValueError(f"Unknown provider '{provider}'. Available: {', '.join(ADAPTERS)}")
    return adapter_class(credentials, timeout=timeout)


__all__ = [
    'CloudServiceAdapter',
    'GoogleDriveAdapter',
    'DropboxAdapter',
    'OneDriveAdapter',
    'ADAPTERS',
    'create_adapter',
]
