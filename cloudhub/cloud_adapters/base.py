"""
Base Cloud Service Adapter

Abstract base class for cloud storage service integrations.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional
import logging

logger = logging.getLogger(__name__)


class CloudServiceAdapter(ABC):
    """Base class for cloud service adapters."""

    provider = 'base'

    def __init__(self, credentials: Dict, timeout: int = 60):
        """
        Initialize adapter with credentials.

        Args:
            credentials: Dict containing service-specific credentials
            timeout: Timeout in seconds for provider HTTP calls
        """
        self.credentials = credentials
        self.timeout = timeout
        self.authenticated = False

    def make_record(self, **fields) -> Dict:
        """
        Build a file record in the common shape.

        Record dict contains: {
            'id': 'file_id',
            'name': 'filename.pdf',
            'size': 12345,
            'mime_type': 'application/pdf',
            'created': '2024-01-01T00:00:00Z',
            'modified': '2024-01-01T00:00:00Z',
            'is_folder': False,
            'path': '/filename.pdf' or None,
            'provider': 'google'
        }
        """
        record = {
            'id': None,
            'name': None,
            'size': 0,
            'mime_type': 'application/octet-stream',
            'created': None,
            'modified': None,
            'is_folder': False,
            'path': None,
        }
        record.update(fields)
        if record['is_folder']:
            record['size'] = 0
        record['provider'] = self.provider
        return record

    @abstractmethod
    async def authenticate(self) -> bool:
        """
        Authenticate with the cloud service.

        Returns:
            True if authentication successful

        Raises:
            Exception if authentication fails
        """
        pass

    @abstractmethod
    async def list_files(self, folder_path: Optional[str] = None,
                         page_token: Optional[str] = None) -> Dict:
        """
        List files in a folder.

        Args:
            folder_path: Path/ID of folder (None for root)
            page_token: Token for pagination

        Returns:
            Dict with 'files' list of records and optional 'next_page_token'
        """
        pass

    @abstractmethod
    async def search_files(self, query: str, folder_path: Optional[str] = None) -> List[Dict]:
        """
        Search for files by name.

        Args:
            query: Search query
            folder_path: Limit search to folder

        Returns:
            List of file records
        """
        pass

    @abstractmethod
    async def get_file_metadata(self, file_id: str) -> Dict:
        """
        Get file metadata.

        Args:
            file_id: Unique file identifier

        Returns:
            File record
        """
        pass

    @abstractmethod
    async def upload_file(self, local_path: str, name: str,
                          mime_type: Optional[str] = None) -> Dict:
        """
        Upload a local file to the root of the drive.

        Args:
            local_path: Path of the file to upload
            name: Remote file name
            mime_type: Content type, if known

        Returns:
            Record of the created file
        """
        pass

    @abstractmethod
    async def download_file(self, file_id: str, output_path: str,
                            mime_type: Optional[str] = None) -> str:
        """
        Download file to local path.

        Args:
            file_id: Unique file identifier
            output_path: Local path to save file
            mime_type: MIME type from the file record, when the caller has it

        Returns:
            Local file path

        Raises:
            Exception if download fails
        """
        pass

    def downloaded_record(self, record: Dict) -> Dict:
        """Record describing the content download_file() wrote for record."""
        return record

    @abstractmethod
    async def delete_file(self, file_id: str) -> None:
        """Delete a remote file."""
        pass

    @abstractmethod
    async def get_storage_quota(self) -> Dict:
        """
        Get storage quota of the account.

        Returns:
            Dict with 'used' bytes and 'limit' bytes (None when unlimited)
        """
        pass

    def disconnect(self):
        """Clean up connections."""
        self.authenticated = False
