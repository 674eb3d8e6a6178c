"""
OneDrive Adapter

Integration with Microsoft OneDrive via Microsoft Graph API.
"""

import logging
import os
from typing import Dict, List, Optional
from urllib.parse import quote

import requests

from .base import CloudServiceAdapter

logger = logging.getLogger(__name__)

ITEM_FIELDS = 'id,name,size,createdDateTime,lastModifiedDateTime,file,folder'

# Graph accepts simple PUT uploads up to 4 MB; larger files need an upload session
SIMPLE_UPLOAD_LIMIT = 4 * 1024 * 1024
# Session chunks must be a multiple of 320 KiB
UPLOAD_CHUNK_SIZE = 32 * 320 * 1024


class OneDriveAdapter(CloudServiceAdapter):
    """OneDrive cloud storage adapter."""

    provider = 'onedrive'

    def __init__(self, credentials: Dict, timeout: int = 60):
        """
        Initialize OneDrive adapter.

        Credentials dict should contain:
        - 'access_token': Microsoft Graph access token (required)
        """
        super().__init__(credentials, timeout)
        self.graph_url = 'https://graph.microsoft.com/v1.0'
        self.headers = {}

    async def authenticate(self) -> bool:
        """
        Authenticate with Microsoft Graph API.

        Returns:
            True if authentication successful
        """
        try:
            access_token = self.credentials.get('access_token')
            if not access_token:
                raise ValueError("OneDrive credentials must include 'access_token'")

            self.headers = {
                'Authorization': f'Bearer {access_token}',
                'Content-Type': 'application/json'
            }

            # Test authentication with a simple API call
            response = requests.get(
                f'{self.graph_url}/me/drive',
                headers=self.headers,
                params={'$select': 'id'},
                timeout=self.timeout
            )
            response.raise_for_status()

            self.authenticated = True
            logger.info("OneDrive authentication successful")
            return True

        except requests.exceptions.RequestException as e:
            logger.error(f"OneDrive authentication failed: {e}")
            self.authenticated = False
            raise
        except Exception as e:
            logger.error(f"OneDrive authentication error: {e}")
            self.authenticated = False
            raise

    def _format(self, item: Dict) -> Dict:
        return self.make_record(
            id=item['id'],
            name=item['name'],
            size=item.get('size', 0),
            mime_type=item.get('file', {}).get('mimeType', 'application/octet-stream'),
            created=item.get('createdDateTime'),
            modified=item.get('lastModifiedDateTime'),
            is_folder='folder' in item,
        )

    def _root_path_url(self, name: str, action: str) -> str:
        return f"{self.graph_url}/me/drive/root:/{quote(name.lstrip('/'))}:/{action}"

    async def list_files(self, folder_path: Optional[str] = None,
                         page_token: Optional[str] = None) -> Dict:
        """
        List files in OneDrive folder.

        Args:
            folder_path: Folder ID (None for root)
            page_token: URL for next page

        Returns:
            Dict with 'files' list and optional 'next_page_token'
        """
        if not self.authenticated:
            await self.authenticate()

        try:
            params = None
            if page_token:
                # nextLink already carries the query parameters
                url = page_token
            else:
                if folder_path:
                    url = f'{self.graph_url}/me/drive/items/{folder_path}/children'
                else:
                    url = f'{self.graph_url}/me/drive/root/children'
                params = {'$top': 100, '$select': ITEM_FIELDS}

            response = requests.get(url, headers=self.headers, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()

            return {
                'files': [self._format(item) for item in data.get('value', [])],
                'next_page_token': data.get('@odata.nextLink')
            }

        except Exception as e:
            logger.error(f"Failed to list OneDrive files: {e}")
            raise

    async def search_files(self, query: str, folder_path: Optional[str] = None) -> List[Dict]:
        """
        Search OneDrive files.

        Args:
            query: Search query
            folder_path: Folder ID to search in

        Returns:
            List of matching files
        """
        if not self.authenticated:
            await self.authenticate()

        try:
            # OData string literals escape a single quote by doubling it
            q = quote(query.replace("'", "''"))
            if folder_path:
                url = f"{self.graph_url}/me/drive/items/{folder_path}/search(q='{q}')"
            else:
                url = f"{self.graph_url}/me/drive/root/search(q='{q}')"

            params = {'$top': 50, '$select': ITEM_FIELDS}

            response = requests.get(url, headers=self.headers, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()

            return [self._format(item) for item in data.get('value', [])]

        except Exception as e:
            logger.error(f"Failed to search OneDrive: {e}")
            raise

    async def get_file_metadata(self, file_id: str) -> Dict:
        if not self.authenticated:
            await self.authenticate()

        try:
            response = requests.get(
                f'{self.graph_url}/me/drive/items/{file_id}',
                headers=self.headers,
                params={'$select': ITEM_FIELDS},
                timeout=self.timeout
            )
            response.raise_for_status()
            return self._format(response.json())

        except Exception as e:
            logger.error(f"Failed to get OneDrive file metadata: {e}")
            raise

    async def upload_file(self, local_path: str, name: str,
                          mime_type: Optional[str] = None) -> Dict:
        """
        Upload file to the OneDrive root, renaming on conflict.

        Files above 4 MB are sent through an upload session in chunks.
        """
        if not self.authenticated:
            await self.authenticate()

        try:
            size = os.path.getsize(local_path)
            if size <= SIMPLE_UPLOAD_LIMIT:
                headers = dict(self.headers)
                headers['Content-Type'] = mime_type or 'application/octet-stream'
                with open(local_path, 'rb') as f:
                    response = requests.put(
                        self._root_path_url(name, 'content'),
                        headers=headers,
                        params={'@microsoft.graph.conflictBehavior': 'rename'},
                        data=f.read(),
                        timeout=self.timeout
                    )
                response.raise_for_status()
                item = response.json()
            else:
                item = self._upload_in_session(local_path, name, size)

            logger.info(f"Uploaded to OneDrive: {name} -> {item['id']}")
            return self._format(item)

        except Exception as e:
            logger.error(f"Failed to upload {name} to OneDrive: {e}")
            raise

    def _upload_in_session(self, local_path: str, name: str, size: int) -> Dict:
        response = requests.post(
            self._root_path_url(name, 'createUploadSession'),
            headers=self.headers,
            json={'item': {'@microsoft.graph.conflictBehavior': 'rename'}},
            timeout=self.timeout
        )
        response.raise_for_status()
        upload_url = response.json()['uploadUrl']

        # The pre-authenticated upload URL must not receive the Authorization header
        with open(local_path, 'rb') as f:
            offset = 0
            while offset < size:
                chunk = f.read(UPLOAD_CHUNK_SIZE)
                end = offset + len(chunk) - 1
                response = requests.put(
                    upload_url,
                    headers={
                        'Content-Length': str(len(chunk)),
                        'Content-Range': f'bytes {offset}-{end}/{size}',
                    },
                    data=chunk,
                    timeout=self.timeout
                )
                response.raise_for_status()
                offset = end + 1
                logger.debug(f"OneDrive upload progress: {offset}/{size} bytes")

        # The final chunk returns the created driveItem
        return response.json()

    async def download_file(self, file_id: str, output_path: str,
                            mime_type: Optional[str] = None) -> str:
        """
        Download file from OneDrive.

        Args:
            file_id: OneDrive file ID
            output_path: Local path to save file

        Returns:
            Local file path
        """
        if not self.authenticated:
            await self.authenticate()

        try:
            url = f'{self.graph_url}/me/drive/items/{file_id}/content'

            response = requests.get(url, headers=self.headers, stream=True, timeout=self.timeout)
            response.raise_for_status()

            with open(output_path, 'wb') as f:
                for chunk in response.iter_content(chunk_size=8192):
                    if chunk:
                        f.write(chunk)

            logger.info(f"Downloaded OneDrive file: {file_id} -> {output_path}")
            return output_path

        except Exception as e:
            logger.error(f"Failed to download OneDrive file {file_id}: {e}")
            raise

    async def delete_file(self, file_id: str) -> None:
        if not self.authenticated:
            await self.authenticate()

        try:
            response = requests.delete(
                f'{self.graph_url}/me/drive/items/{file_id}',
                headers=self.headers,
                timeout=self.timeout
            )
            response.raise_for_status()
            logger.info(f"Deleted OneDrive file: {file_id}")
        except Exception as e:
            logger.error(f"Failed to delete OneDrive file {file_id}: {e}")
            raise

    async def get_storage_quota(self) -> Dict:
        if not self.authenticated:
            await self.authenticate()

        try:
            response = requests.get(
                f'{self.graph_url}/me/drive',
                headers=self.headers,
                params={'$select': 'quota'},
                timeout=self.timeout
            )
            response.raise_for_status()
            quota = response.json().get('quota', {})
            total = quota.get('total')
            return {
                'used': int(quota.get('used', 0) or 0),
                'limit': int(total) if total else None
            }
        except Exception as e:
            logger.error(f"Failed to get OneDrive quota: {e}")
            raise

    def disconnect(self):
        """Clean up OneDrive connection."""
        self.headers = {}
        self.authenticated = False
        logger.debug("OneDrive disconnected")
