"""
Dropbox Adapter

Integration with Dropbox API v2 via the official SDK.
"""

import logging
import mimetypes
import os
from typing import Dict, List, Optional
from .base import CloudServiceAdapter

logger = logging.getLogger(__name__)

# files_upload accepts at most 150 MB per request
SIMPLE_UPLOAD_LIMIT = 150 * 1024 * 1024
UPLOAD_CHUNK_SIZE = 8 * 1024 * 1024


class DropboxAdapter(CloudServiceAdapter):
    """Dropbox cloud storage adapter."""

    provider = 'dropbox'

    def __init__(self, credentials: Dict, timeout: int = 60):
        """
        Initialize Dropbox adapter.

        Credentials dict should contain:
        - 'access_token': Dropbox access token (required)

        Optional (lets the SDK refresh short-lived tokens):
        - 'refresh_token': OAuth refresh token
        - 'app_key': Dropbox app key
        - 'app_secret': Dropbox app secret
        """
        super().__init__(credentials, timeout)
        self.dbx = None

    async def authenticate(self) -> bool:
        """
        Authenticate with Dropbox API.

        Returns:
            True if authentication successful
        """
        try:
            import dropbox

            access_token = self.credentials.get('access_token')
            if not access_token:
                raise ValueError("Dropbox credentials must include 'access_token'")

            kwargs = {'oauth2_access_token': access_token, 'timeout': self.timeout}
            # The SDK refuses a refresh token without the app key
            if self.credentials.get('refresh_token') and self.credentials.get('app_key'):
                kwargs.update(
                    oauth2_refresh_token=self.credentials['refresh_token'],
                    app_key=self.credentials['app_key'],
                    app_secret=self.credentials.get('app_secret'),
                )
            self.dbx = dropbox.Dropbox(**kwargs)

            # Test authentication
            self.dbx.users_get_current_account()

            self.authenticated = True
            logger.info("Dropbox authentication successful")
            return True

        except ImportError as e:
            logger.error("Dropbox library not installed")
            raise RuntimeError("Dropbox integration requires: pip install dropbox") from e
        except Exception as e:
            logger.error(f"Dropbox authentication failed: {e}")
            self.authenticated = False
            raise

    def _format(self, entry) -> Optional[Dict]:
        """Convert SDK metadata to a record; deleted entries yield None."""
        import dropbox

        if isinstance(entry, dropbox.files.FileMetadata):
            return self.make_record(
                id=entry.id,
                name=entry.name,
                size=entry.size,
                mime_type=mimetypes.guess_type(entry.name)[0] or 'application/octet-stream',
                created=entry.server_modified.isoformat() if entry.server_modified else None,
                modified=entry.client_modified.isoformat() if entry.client_modified else None,
                path=entry.path_display,
            )
        if isinstance(entry, dropbox.files.FolderMetadata):
            return self.make_record(
                id=entry.id,
                name=entry.name,
                mime_type='application/vnd.dropbox.folder',
                is_folder=True,
                path=entry.path_display,
            )
        return None

    async def list_files(self, folder_path: Optional[str] = None,
                         page_token: Optional[str] = None) -> Dict:
        """
        List files in Dropbox folder.

        Args:
            folder_path: Folder path (empty string or None for root)
            page_token: Cursor for pagination

        Returns:
            Dict with 'files' list and optional 'next_page_token'
        """
        if not self.authenticated:
            await self.authenticate()

        try:
            if page_token:
                result = self.dbx.files_list_folder_continue(page_token)
            else:
                result = self.dbx.files_list_folder(folder_path or '')

            formatted_files = [r for r in (self._format(e) for e in result.entries) if r]

            return {
                'files': formatted_files,
                'next_page_token': result.cursor if result.has_more else None
            }

        except Exception as e:
            logger.error(f"Failed to list Dropbox files: {e}")
            raise

    async def search_files(self, query: str, folder_path: Optional[str] = None) -> List[Dict]:
        """
        Search Dropbox files.

        Args:
            query: Search query
            folder_path: Folder path to search in

        Returns:
            List of matching files
        """
        if not self.authenticated:
            await self.authenticate()

        try:
            import dropbox

            search_options = dropbox.files.SearchOptions(
                path=folder_path or '',
                max_results=50
            )
            results = self.dbx.files_search_v2(query, options=search_options)

            formatted_files = []
            for match in results.matches:
                record = self._format(match.metadata.get_metadata())
                if record:
                    formatted_files.append(record)
            return formatted_files

        except Exception as e:
            logger.error(f"Failed to search Dropbox: {e}")
            raise

    async def get_file_metadata(self, file_id: str) -> Dict:
        """
        Get Dropbox file metadata.

        Args:
            file_id: Dropbox file ID ('id:...') or path
        """
        if not self.authenticated:
            await self.authenticate()

        try:
            metadata = self.dbx.files_get_metadata(file_id)
            record = self._format(metadata)
            if record is None:
                raise FileNotFoundError(f"Dropbox entry {file_id} has been deleted")
            return record
        except Exception as e:
            logger.error(f"Failed to get Dropbox file metadata: {e}")
            raise

    async def upload_file(self, local_path: str, name: str,
                          mime_type: Optional[str] = None) -> Dict:
        """
        Upload file to the Dropbox root, renaming on conflict.

        Files above 150 MB go through an upload session.
        """
        if not self.authenticated:
            await self.authenticate()

        try:
            import dropbox

            remote_path = f"/{name.lstrip('/')}"
            mode = dropbox.files.WriteMode.add
            size = os.path.getsize(local_path)

            with open(local_path, 'rb') as f:
                if size <= SIMPLE_UPLOAD_LIMIT:
                    metadata = self.dbx.files_upload(f.read(), remote_path, mode=mode, autorename=True)
                else:
                    session = self.dbx.files_upload_session_start(f.read(UPLOAD_CHUNK_SIZE))
                    cursor = dropbox.files.UploadSessionCursor(
                        session_id=session.session_id, offset=f.tell()
                    )
                    commit = dropbox.files.CommitInfo(path=remote_path, mode=mode, autorename=True)
                    metadata = None
                    while metadata is None:
                        if size - f.tell() <= UPLOAD_CHUNK_SIZE:
                            metadata = self.dbx.files_upload_session_finish(
                                f.read(UPLOAD_CHUNK_SIZE), cursor, commit
                            )
                        else:
                            self.dbx.files_upload_session_append_v2(f.read(UPLOAD_CHUNK_SIZE), cursor)
                            cursor.offset = f.tell()

            logger.info(f"Uploaded to Dropbox: {name} -> {metadata.path_display}")
            return self._format(metadata)

        except Exception as e:
            logger.error(f"Failed to upload {name} to Dropbox: {e}")
            raise

    async def download_file(self, file_id: str, output_path: str,
                            mime_type: Optional[str] = None) -> str:
        """
        Download file from Dropbox.

        Args:
            file_id: Dropbox file ID ('id:...') or path (e.g., '/documents/file.pdf')
            output_path: Local path to save file

        Returns:
            Local file path
        """
        if not self.authenticated:
            await self.authenticate()

        try:
            metadata, response = self.dbx.files_download(file_id)
            try:
                with open(output_path, 'wb') as f:
                    for chunk in response.iter_content(chunk_size=8192):
                        if chunk:
                            f.write(chunk)
            finally:
                response.close()

            logger.info(f"Downloaded Dropbox file: {file_id} -> {output_path}")
            return output_path

        except Exception as e:
            logger.error(f"Failed to download Dropbox file {file_id}: {e}")
            raise

    async def delete_file(self, file_id: str) -> None:
        if not self.authenticated:
            await self.authenticate()

        try:
            self.dbx.files_delete_v2(file_id)
            logger.info(f"Deleted Dropbox file: {file_id}")
        except Exception as e:
            logger.error(f"Failed to delete Dropbox file {file_id}: {e}")
            raise

    async def get_storage_quota(self) -> Dict:
        """Get space usage; team accounts report the shared team allocation."""
        if not self.authenticated:
            await self.authenticate()

        try:
            usage = self.dbx.users_get_space_usage()
            allocation = usage.allocation
            if allocation.is_individual():
                limit = allocation.get_individual().allocated
            elif allocation.is_team():
                limit = allocation.get_team().allocated
            else:
                limit = None
            return {'used': usage.used, 'limit': limit}
        except Exception as e:
            logger.error(f"Failed to get Dropbox space usage: {e}")
            raise

    def disconnect(self):
        """Clean up Dropbox connection."""
        if self.dbx is not None:
            self.dbx.close()
        self.dbx = None
        self.authenticated = False
        logger.debug("Dropbox disconnected")
