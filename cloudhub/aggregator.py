"""
Storage Aggregator

Fans file operations out to every cloud account a user has linked, merges the
results into one file list, picks the upload target by free capacity and keeps
the local storage-usage ledger in step with what the providers report.
"""

import logging
import os
from typing import Any, Callable, Dict, List, Optional, Tuple

from cloudhub.account_store import AccountStore, LinkedAccount, PROVIDERS
from cloudhub.cloud_adapters import CloudServiceAdapter, create_adapter
from cloudhub.errors import (
    AccountNotConnectedError,
    CloudHubError,
    InsufficientStorageError,
    NoConnectedAccountsError,
    ProviderError,
    ValidationError,
)

logger = logging.getLogger(__name__)

UNLIMITED = float('inf')


def clean_file_name(name: Optional[str]) -> str:
    """Strip any directory part from a client-supplied file name."""
    cleaned = (name or '').replace('\\', '/').rsplit('/', 1)[-1].strip()
    if not cleaned or cleaned in ('.', '..'):
        raise ValidationError("A file name is required")
    return cleaned


def choose_target(accounts: List[LinkedAccount], size: int = 0) -> LinkedAccount:
    """
    Pick the account with the most available space.

    An account without a known limit counts as unlimited. Ties go to the
    account linked first.

    Raises:
        NoConnectedAccountsError: If accounts is empty
        InsufficientStorageError: If no account has room for size bytes
    """
    if not accounts:
        raise NoConnectedAccountsError()

    best = None
    best_available = None
    for account in accounts:
        available = UNLIMITED if account.available is None else account.available
        if best is None or available > best_available:
            best, best_available = account, available

    if size and best_available < size:
        raise InsufficientStorageError(
            f"No connected cloud service has {size} bytes available "
            f"(largest free space: {max(best_available, 0)} bytes on {best.provider})"
        )
    return best


class StorageAggregator:
    """Unified file operations across a user's linked cloud accounts."""

    def __init__(self, account_store: AccountStore,
                 adapter_factory: Callable[..., CloudServiceAdapter] = create_adapter,
                 config: Optional[Dict[str, Any]] = None):
        """
        Initialize the aggregator.

        Args:
            account_store: AccountStore holding tokens and the usage ledger
            adapter_factory: Callable(provider, credentials, timeout=...) -> adapter
            config: Configuration dictionary (see cloudhub.config.load_config)
        """
        self.store = account_store
        self.adapter_factory = adapter_factory
        self.config = config or {}
        self.timeout = self.config.get('provider_timeout_seconds', 60)
        self.max_pages = self.config.get('max_pages_per_provider', 10)

    # ── helpers ──────────────────────────────────────────────────────────────

    def _credentials(self, account: LinkedAccount) -> Dict[str, Any]:
        creds = account.credentials()
        if account.provider == 'google' and self.config.get('google_client_id'):
            creds['client_id'] = self.config['google_client_id']
            creds['client_secret'] = self.config.get('google_client_secret')
        elif account.provider == 'dropbox' and self.config.get('dropbox_app_key'):
            creds['app_key'] = self.config['dropbox_app_key']
            creds['app_secret'] = self.config.get('dropbox_app_secret')
        return creds

    def _adapter(self, account: LinkedAccount) -> CloudServiceAdapter:
        return self.adapter_factory(account.provider, self._credentials(account), timeout=self.timeout)

    def _require_account(self, user_id: int, provider: Optional[str]) -> LinkedAccount:
        if not provider:
            raise ValidationError("provider is required")
        if provider not in PROVIDERS:
            raise ValidationError(f"Unknown provider '{provider}'. Available: {', '.join(PROVIDERS)}")
        account = self.store.get_account(user_id, provider)
        if account is None:
            raise AccountNotConnectedError(provider)
        return account

    @staticmethod
    async def _call(provider: str, coro):
        """Await a provider call, wrapping SDK/HTTP failures in ProviderError."""
        try:
            return await coro
        except CloudHubError:
            raise
        except Exception as e:
            raise ProviderError(provider, str(e)) from e

    async def _fan_out(self, user_id: int, action: str,
                       operation: Callable) -> Tuple[List[Dict], List[Dict]]:
        """
        Run operation(adapter) against every linked account in link order.

        A failing provider is logged and reported; the others still answer.
        """
        results, errors = [], []
        for account in self.store.get_accounts(user_id):
            adapter = self._adapter(account)
            try:
                items = await operation(adapter)
                for item in items:
                    item['provider'] = account.provider
                results.extend(items)
            except Exception as e:
                logger.error(f"{action} failed on {account.provider} for user {user_id}: {e}")
                errors.append({'provider': account.provider, 'error': str(e)})
            finally:
                adapter.disconnect()
        return results, errors

    async def _resync_quota(self, user_id: int, provider: str, adapter: CloudServiceAdapter):
        try:
            quota = await adapter.get_storage_quota()
            self.store.set_quota(user_id, provider, quota['used'], quota['limit'])
        except Exception as e:
            logger.warning(f"Could not reload {provider} quota for user {user_id}: {e}")

    # ── file operations ──────────────────────────────────────────────────────

    async def list_files(self, user_id: int) -> Dict:
        """
        List root files across all linked accounts.

        Returns:
            Dict with merged 'files' and per-provider 'errors'
        """
        async def collect(adapter):
            files, page_token = [], None
            for _ in range(self.max_pages):
                page = await adapter.list_files(page_token=page_token)
                files.extend(page.get('files', []))
                page_token = page.get('next_page_token')
                if not page_token:
                    break
            else:
                if page_token:
                    logger.warning(f"{adapter.provider}: listing truncated after {self.max_pages} pages")
            return files

        files, errors = await self._fan_out(user_id, 'List files', collect)
        logger.info(f"Listed {len(files)} files for user {user_id} ({len(errors)} provider errors)")
        return {'files': files, 'errors': errors}

    async def search_files(self, user_id: int, query: Optional[str]) -> Dict:
        """Search file names across all linked accounts; same shape as list_files()."""
        query = (query or '').strip()
        if not query:
            raise ValidationError("Search query required")

        async def search(adapter):
            return await adapter.search_files(query)

        results, errors = await self._fan_out(user_id, 'Search', search)
        logger.info(f"Search '{query}' for user {user_id}: {len(results)} results")
        return {'files': results, 'errors': errors}

    async def upload_file(self, user_id: int, local_path: str, name: str,
                          mime_type: Optional[str] = None, size: Optional[int] = None) -> Dict:
        """
        Upload a file to the linked account with the most free space.

        The chosen account's ledger grows by the file size.

        Returns:
            Dict with 'file' record, 'file_id' and 'provider'
        """
        name = clean_file_name(name)
        if size is None:
            size = os.path.getsize(local_path)

        target = choose_target(self.store.get_accounts(user_id), size)
        logger.info(f"Uploading {name} ({size} bytes) for user {user_id} to {target.provider}")

        adapter = self._adapter(target)
        try:
            record = await self._call(target.provider, adapter.upload_file(local_path, name, mime_type))
        finally:
            adapter.disconnect()

        self.store.add_storage_used(user_id, target.provider, size)
        return {'file': record, 'file_id': record.get('id'), 'provider': target.provider}

    async def download_file(self, user_id: int, provider: str, file_id: str,
                            output_dir: str) -> Tuple[str, Dict]:
        """
        Download a file from one provider into output_dir.

        Google Workspace files are exported, and the returned record carries
        the export MIME type and extension.

        Returns:
            Tuple of (local_file_path, file record)
        """
        account = self._require_account(user_id, provider)
        adapter = self._adapter(account)
        try:
            record = await self._call(provider, adapter.get_file_metadata(file_id))
            if record.get('is_folder'):
                raise ValidationError(f"'{record.get('name')}' is a folder")
            output_path = os.path.join(output_dir, 'content')
            path = await self._call(
                provider, adapter.download_file(file_id, output_path, mime_type=record.get('mime_type'))
            )
            record = adapter.downloaded_record(record)
        finally:
            adapter.disconnect()
        return path, record

    async def delete_file(self, user_id: int, provider: str, file_id: str) -> Dict:
        """
        Delete a file from one provider and shrink that account's ledger.

        Folder records carry no size, so deleting a folder reloads the
        account's usage from the provider quota instead.

        Returns:
            Record of the deleted file
        """
        account = self._require_account(user_id, provider)
        adapter = self._adapter(account)
        try:
            record = await self._call(provider, adapter.get_file_metadata(file_id))
            await self._call(provider, adapter.delete_file(file_id))
            if record.get('is_folder'):
                await self._resync_quota(user_id, provider, adapter)
        finally:
            adapter.disconnect()

        size = record.get('size') or 0
        if size:
            self.store.add_storage_used(user_id, provider, -size)
        logger.info(f"Deleted {provider} file {file_id} ({size} bytes) for user {user_id}")
        return record

    # ── usage ledger ─────────────────────────────────────────────────────────

    def storage_stats(self, user_id: int) -> Dict:
        """
        Usage per linked account from the local ledger, plus totals.

        Accounts without a known limit report available/percentage as None.
        """
        stats = []
        for account in self.store.get_accounts(user_id):
            limit = account.storage_limit
            stats.append({
                'provider': account.provider,
                'used': account.storage_used,
                'limit': limit,
                'available': account.available,
                'percentage': round(account.storage_used / limit * 100, 2) if limit else None,
            })

        total_used = sum(s['used'] for s in stats)
        limits_known = bool(stats) and all(s['limit'] is not None for s in stats)
        total_limit = sum(s['limit'] for s in stats) if limits_known else None
        return {
            'stats': stats,
            'totals': {
                'used': total_used,
                'limit': total_limit,
                'available': total_limit - total_used if total_limit is not None else None,
                'percentage': round(total_used / total_limit * 100, 2) if total_limit else None,
            }
        }

    async def refresh_quotas(self, user_id: int) -> Dict:
        """Replace the ledger with the usage each provider reports."""
        errors = []
        for account in self.store.get_accounts(user_id):
            adapter = self._adapter(account)
            try:
                quota = await adapter.get_storage_quota()
                self.store.set_quota(user_id, account.provider, quota['used'], quota['limit'])
            except Exception as e:
                logger.error(f"Quota refresh failed on {account.provider} for user {user_id}: {e}")
                errors.append({'provider': account.provider, 'error': str(e)})
            finally:
                adapter.disconnect()

        result = self.storage_stats(user_id)
        result['errors'] = errors
        return result

    # ── linked accounts ──────────────────────────────────────────────────────

    def linked_accounts(self, user_id: int) -> List[Dict]:
        return [a.to_public_dict() for a in self.store.get_accounts(user_id)]

    async def connect_account(self, user_id: int, provider: str, access_token: str,
                              refresh_token: Optional[str] = None,
                              token_expiry: Optional[str] = None) -> Dict:
        """
        Link (or re-link) a provider account and pull its quota.

        A quota failure keeps the link and is reported in 'quota_error'.
        """
        if not isinstance(provider, str) or provider not in PROVIDERS:
            raise ValidationError(f"Unknown provider '{provider}'. Available: {', '.join(PROVIDERS)}")
        if not isinstance(access_token, str) or not access_token.strip():
            raise ValidationError("access_token is required")
        for label, value in (('refresh_token', refresh_token), ('token_expiry', token_expiry)):
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"{label} must be a string")

        account = self.store.upsert_account(
            user_id, provider, access_token,
            refresh_token=refresh_token, token_expiry=token_expiry
        )

        quota_error = None
        adapter = self._adapter(account)
        try:
            quota = await adapter.get_storage_quota()
            self.store.set_quota(user_id, provider, quota['used'], quota['limit'])
        except Exception as e:
            logger.warning(f"Linked {provider} for user {user_id} but quota lookup failed: {e}")
            quota_error = str(e)
        finally:
            adapter.disconnect()

        result = self.store.get_account(user_id, provider).to_public_dict()
        result['quota_error'] = quota_error
        return result

    def disconnect_account(self, user_id: int, provider: str) -> None:
        if not self.store.remove_account(user_id, provider):
            raise AccountNotConnectedError(provider)
