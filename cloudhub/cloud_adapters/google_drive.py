"""
Google Drive Adapter

Integration with Google Drive API v3 using a user's OAuth2 tokens.
"""

import io
import logging
from typing import Dict, List, Optional
from .base import CloudServiceAdapter

logger = logging.getLogger(__name__)

FOLDER_MIME = 'application/vnd.google-apps.folder'
FILE_FIELDS = 'id, name, size, mimeType, createdTime, modifiedTime'

# Google Workspace files have no binary content and must be exported
# (export MIME type, file extension)
EXPORT_FORMATS = {
    'application/vnd.google-apps.document': ('application/pdf', '.pdf'),
    'application/vnd.google-apps.spreadsheet': (
        'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet', '.xlsx'),
    'application/vnd.google-apps.presentation': (
        'application/vnd.openxmlformats-officedocument.presentationml.presentation', '.pptx'),
}
DEFAULT_EXPORT = ('application/pdf', '.pdf')


def _export_format(mime_type: Optional[str]) -> Optional[tuple]:
    """(mime type, extension) a Workspace file is exported as, None for binary files."""
    if not (mime_type or '').startswith('application/vnd.google-apps.'):
        return None
    return EXPORT_FORMATS.get(mime_type, DEFAULT_EXPORT)


def _escape_query(value: str) -> str:
    return value.replace('\\', '\\\\').replace("'", "\\'")


class GoogleDriveAdapter(CloudServiceAdapter):
    """Google Drive cloud storage adapter."""

    provider = 'google'

    def __init__(self, credentials: Dict, timeout: int = 60):
        """
        Initialize Google Drive adapter.

        Credentials dict should contain:
        - 'access_token': OAuth2 access token

        Optional (lets google-auth refresh an expired access token):
        - 'refresh_token': OAuth2 refresh token
        - 'client_id': OAuth2 client ID
        - 'client_secret': OAuth2 client secret
        """
        super().__init__(credentials, timeout)
        self.service = None
        self.creds = None

    async def authenticate(self) -> bool:
        """
        Authenticate with Google Drive API.

        Returns:
            True if authentication successful
        """
        try:
            from google.oauth2.credentials import Credentials
            from googleapiclient.discovery import build

            token = self.credentials.get('access_token')
            if not token:
                raise ValueError("Google Drive credentials must include 'access_token'")

            self.creds = Credentials(
                token=token,
                refresh_token=self.credentials.get('refresh_token'),
                token_uri='https://oauth2.googleapis.com/token',
                client_id=self.credentials.get('client_id'),
                client_secret=self.credentials.get('client_secret')
            )

            self.service = build('drive', 'v3', credentials=self.creds, cache_discovery=False)

            # Test authentication with a simple API call
            self.service.about().get(fields='user').execute()

            self.authenticated = True
            logger.info("Google Drive authentication successful")
            return True

        except ImportError as e:
            logger.error(f"Google Drive libraries not installed: {e}")
            raise RuntimeError(
                "Google Drive integration requires: "
                "pip install google-api-python-client google-auth"
            ) from e
        except Exception as e:
            logger.error(f"Google Drive authentication failed: {e}")
            self.authenticated = False
            raise

    def _format(self, file: Dict) -> Dict:
        is_folder = file.get('mimeType') == FOLDER_MIME
        return self.make_record(
            id=file['id'],
            name=file['name'],
            size=int(file.get('size', 0) or 0),
            mime_type=file.get('mimeType'),
            created=file.get('createdTime'),
            modified=file.get('modifiedTime'),
            is_folder=is_folder,
        )

    async def list_files(self, folder_path: Optional[str] = None,
                         page_token: Optional[str] = None) -> Dict:
        """
        List files in Google Drive folder.

        Args:
            folder_path: Folder ID (None for the root of My Drive)
            page_token: Token for pagination

        Returns:
            Dict with 'files' list and optional 'next_page_token'
        """
        if not self.authenticated:
            await self.authenticate()

        try:
            parent = _escape_query(folder_path) if folder_path else 'root'
            query = f"'{parent}' in parents and trashed = false"

            results = self.service.files().list(
                q=query,
                pageSize=100,
                pageToken=page_token,
                fields=f"nextPageToken, files({FILE_FIELDS})",
                orderBy='name'
            ).execute()

            return {
                'files': [self._format(f) for f in results.get('files', [])],
                'next_page_token': results.get('nextPageToken')
            }

        except Exception as e:
            logger.error(f"Failed to list Google Drive files: {e}")
            raise

    async def search_files(self, query: str, folder_path: Optional[str] = None) -> List[Dict]:
        """
        Search Google Drive files.

        Args:
            query: Search query (file name contains)
            folder_path: Folder ID to search in

        Returns:
            List of matching files
        """
        if not self.authenticated:
            await self.authenticate()

        try:
            search_query = f"name contains '{_escape_query(query)}' and trashed = false"
            if folder_path:
                search_query += f" and '{_escape_query(folder_path)}' in parents"

            results = self.service.files().list(
                q=search_query,
                pageSize=50,
                fields=f"files({FILE_FIELDS})",
                orderBy='name'
            ).execute()

            return [self._format(f) for f in results.get('files', [])]

        except Exception as e:
            logger.error(f"Failed to search Google Drive: {e}")
            raise

    async def get_file_metadata(self, file_id: str) -> Dict:
        if not self.authenticated:
            await self.authenticate()

        try:
            file = self.service.files().get(fileId=file_id, fields=FILE_FIELDS).execute()
            return self._format(file)
        except Exception as e:
            logger.error(f"Failed to get Google Drive file metadata: {e}")
            raise

    async def upload_file(self, local_path: str, name: str,
                          mime_type: Optional[str] = None) -> Dict:
        """
        Upload file to the root of My Drive.

        Args:
            local_path: Local file to upload
            name: File name on Drive
            mime_type: Content type (defaults to application/octet-stream)

        Returns:
            Record of the created file
        """
        if not self.authenticated:
            await self.authenticate()

        try:
            from googleapiclient.http import MediaFileUpload

            media = MediaFileUpload(
                local_path,
                mimetype=mime_type or 'application/octet-stream',
                resumable=True
            )
            file = self.service.files().create(
                body={'name': name},
                media_body=media,
                fields=FILE_FIELDS
            ).execute()

            logger.info(f"Uploaded to Google Drive: {name} -> {file['id']}")
            return self._format(file)

        except Exception as e:
            logger.error(f"Failed to upload {name} to Google Drive: {e}")
            raise

    async def download_file(self, file_id: str, output_path: str,
                            mime_type: Optional[str] = None) -> str:
        """
        Download file from Google Drive.

        Args:
            file_id: Google Drive file ID
            output_path: Local path to save file
            mime_type: Drive MIME type of the file; looked up when not given

        Returns:
            Local file path
        """
        if not self.authenticated:
            await self.authenticate()

        try:
            from googleapiclient.http import MediaIoBaseDownload

            if mime_type is None:
                mime_type = (await self.get_file_metadata(file_id)).get('mime_type')

            export = _export_format(mime_type)
            if export:
                logger.info(f"Exporting Google Workspace file: {mime_type} -> {export[0]}")
                request = self.service.files().export_media(fileId=file_id, mimeType=export[0])
            else:
                request = self.service.files().get_media(fileId=file_id)

            with io.FileIO(output_path, 'wb') as fh:
                downloader = MediaIoBaseDownload(fh, request)
                done = False
                while not done:
                    status, done = downloader.next_chunk()
                    if status:
                        progress = int(status.progress() * 100)
                        if progress % 25 == 0:  # Log every 25%
                            logger.debug(f"Download progress: {progress}%")

            logger.info(f"Downloaded Google Drive file: {file_id} -> {output_path}")
            return output_path

        except Exception as e:
            logger.error(f"Failed to download Google Drive file {file_id}: {e}")
            raise

    def downloaded_record(self, record: Dict) -> Dict:
        """Workspace files are served as their export format."""
        export = _export_format(record.get('mime_type'))
        if not export:
            return record
        export_mime, extension = export
        name = record.get('name') or 'download'
        if not name.lower().endswith(extension):
            name += extension
        return dict(record, mime_type=export_mime, name=name)

    async def delete_file(self, file_id: str) -> None:
        if not self.authenticated:
            await self.authenticate()

        try:
            self.service.files().delete(fileId=file_id).execute()
            logger.info(f"Deleted Google Drive file: {file_id}")
        except Exception as e:
            logger.error(f"Failed to delete Google Drive file {file_id}: {e}")
            raise

    async def get_storage_quota(self) -> Dict:
        """
        Get Drive storage quota.

        Accounts with unlimited storage report no limit.
        """
        if not self.authenticated:
            await self.authenticate()

        try:
            about = self.service.about().get(fields='storageQuota').execute()
            quota = about.get('storageQuota', {})
            limit = quota.get('limit')
            return {
                'used': int(quota.get('usage', 0) or 0),
                'limit': int(limit) if limit else None
            }
        except Exception as e:
            logger.error(f"Failed to get Google Drive quota: {e}")
            raise

    def disconnect(self):
        """Clean up Google Drive connection."""
        self.service = None
        self.creds = None
        self.authenticated = False
        logger.debug("Google Drive disconnected")
