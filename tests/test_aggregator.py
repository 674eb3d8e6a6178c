"""
Tests for the storage aggregator: fan-out, placement and ledger upkeep.
"""

import asyncio

import pytest

from cloudhub.aggregator import choose_target, clean_file_name
from cloudhub.account_store import LinkedAccount
from cloudhub.errors import (
    AccountNotConnectedError,
    InsufficientStorageError,
    NoConnectedAccountsError,
    ProviderError,
    ValidationError,
)


def _account(provider, used=0, limit=None):
    return LinkedAccount(user_id=1, provider=provider, access_token='t',
                         storage_used=used, storage_limit=limit)


class TestPlacement:

    def test_picks_most_available(self):
        accounts = [
            _account('google', used=900, limit=1000),
            _account('dropbox', used=100, limit=1000),
            _account('onedrive', used=0, limit=500),
        ]
        assert choose_target(accounts).provider == 'dropbox'

    def test_tie_goes_to_first_linked(self):
        accounts = [_account('onedrive', used=0, limit=100), _account('google', used=0, limit=100)]
        assert choose_target(accounts).provider == 'onedrive'

    def test_unknown_limit_counts_as_unlimited(self):
        accounts = [_account('google', used=0, limit=10 ** 12), _account('dropbox', used=10 ** 13)]
        assert choose_target(accounts, size=10 ** 11).provider == 'dropbox'

    def test_no_accounts(self):
        with pytest.raises(NoConnectedAccountsError):
            choose_target([])

    def test_file_larger_than_any_free_space(self):
        accounts = [_account('google', used=90, limit=100), _account('dropbox', used=50, limit=100)]
        with pytest.raises(InsufficientStorageError) as exc_info:
            choose_target(accounts, size=51)
        assert exc_info.value.status_code == 507
        assert choose_target(accounts, size=50).provider == 'dropbox'

    def test_clean_file_name(self):
        assert clean_file_name('../../etc/passwd') == 'passwd'
        assert clean_file_name('C:\\Users\\me\\report.pdf') == 'report.pdf'
        with pytest.raises(ValidationError):
            clean_file_name('dir/')


class TestListAndSearch:

    def test_list_merges_providers(self, aggregator, user, link, clouds):
        link('google')
        link('dropbox')
        clouds['google'].add('a.txt', b'aaa')
        clouds['dropbox'].add('b.txt', b'bb')
        clouds['onedrive'].add('not-linked.txt')

        result = asyncio.run(aggregator.list_files(user['id']))

        assert result['errors'] == []
        assert sorted((f['provider'], f['name']) for f in result['files']) == [
            ('dropbox', 'b.txt'), ('google', 'a.txt')
        ]
        google_file = next(f for f in result['files'] if f['provider'] == 'google')
        assert google_file['size'] == 3
        assert set(google_file) >= {'id', 'name', 'size', 'mime_type', 'created', 'modified', 'is_folder'}

    def test_list_follows_pages(self, aggregator, user, link, clouds):
        link('google')
        for i in range(5):
            clouds['google'].add(f'f{i}.txt')
        clouds['google'].page_size = 2

        result = asyncio.run(aggregator.list_files(user['id']))
        assert len(result['files']) == 5

    def test_list_stops_at_page_limit(self, aggregator, user, link, clouds):
        link('google')
        for i in range(5):
            clouds['google'].add(f'f{i}.txt')
        clouds['google'].page_size = 1
        aggregator.max_pages = 3

        result = asyncio.run(aggregator.list_files(user['id']))
        assert len(result['files']) == 3

    def test_failing_provider_reported(self, aggregator, user, link, clouds):
        link('google')
        link('onedrive')
        clouds['google'].fail = 'token expired'
        clouds['onedrive'].add('ok.txt')

        result = asyncio.run(aggregator.list_files(user['id']))

        assert [f['name'] for f in result['files']] == ['ok.txt']
        assert result['errors'] == [{'provider': 'google', 'error': 'token expired'}]

    def test_no_accounts_lists_nothing(self, aggregator, user):
        assert asyncio.run(aggregator.list_files(user['id'])) == {'files': [], 'errors': []}

    def test_search(self, aggregator, user, link, clouds):
        link('google')
        link('dropbox')
        clouds['google'].add('Report 2024.pdf')
        clouds['google'].add('holiday.jpg')
        clouds['dropbox'].add('report-draft.docx')

        result = asyncio.run(aggregator.search_files(user['id'], 'report'))

        assert sorted(r['name'] for r in result['files']) == ['Report 2024.pdf', 'report-draft.docx']

    def test_search_requires_query(self, aggregator, user):
        with pytest.raises(ValidationError, match='Search query required'):
            asyncio.run(aggregator.search_files(user['id'], '   '))


class TestUpload:

    def test_upload_goes_to_most_available_and_updates_ledger(
            self, aggregator, store, user, link, clouds, tmp_path):
        link('google', used=900, limit=1000)
        link('dropbox', used=0, limit=1000)
        path = tmp_path / 'notes.txt'
        path.write_bytes(b'hello world')

        result = asyncio.run(aggregator.upload_file(user['id'], str(path), 'notes.txt', 'text/plain'))

        assert result['provider'] == 'dropbox'
        assert result['file']['name'] == 'notes.txt'
        assert result['file_id'] in clouds['dropbox'].files
        assert store.get_account(user['id'], 'dropbox').storage_used == 11
        assert store.get_account(user['id'], 'google').storage_used == 900

    def test_upload_without_accounts(self, aggregator, user, tmp_path):
        path = tmp_path / 'x.bin'
        path.write_bytes(b'x')
        with pytest.raises(NoConnectedAccountsError):
            asyncio.run(aggregator.upload_file(user['id'], str(path), 'x.bin'))

    def test_upload_too_large(self, aggregator, user, link, tmp_path):
        link('google', used=95, limit=100)
        path = tmp_path / 'big.bin'
        path.write_bytes(b'x' * 10)
        with pytest.raises(InsufficientStorageError):
            asyncio.run(aggregator.upload_file(user['id'], str(path), 'big.bin'))

    def test_provider_failure_leaves_ledger(self, aggregator, store, user, link, clouds, tmp_path):
        link('google', used=0, limit=100)
        clouds['google'].fail = 'quota exceeded'
        path = tmp_path / 'a.txt'
        path.write_bytes(b'abc')

        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(aggregator.upload_file(user['id'], str(path), 'a.txt'))

        assert exc_info.value.provider == 'google'
        assert exc_info.value.status_code == 502
        assert store.get_account(user['id'], 'google').storage_used == 0


class TestDownloadAndDelete:

    def test_download(self, aggregator, user, link, clouds, tmp_path):
        link('onedrive')
        file_id = clouds['onedrive'].add('doc.pdf', b'%PDF-1.4', 'application/pdf')

        path, record = asyncio.run(aggregator.download_file(user['id'], 'onedrive', file_id, str(tmp_path)))

        assert record['name'] == 'doc.pdf'
        with open(path, 'rb') as f:
            assert f.read() == b'%PDF-1.4'
        assert clouds['onedrive'].downloads == [(file_id, 'application/pdf')]

    def test_download_folder_rejected(self, aggregator, user, link, clouds, tmp_path):
        link('google')
        folder_id = clouds['google'].add('Photos', is_folder=True)
        with pytest.raises(ValidationError, match='is a folder'):
            asyncio.run(aggregator.download_file(user['id'], 'google', folder_id, str(tmp_path)))

    def test_provider_must_be_connected(self, aggregator, user, tmp_path):
        with pytest.raises(AccountNotConnectedError):
            asyncio.run(aggregator.download_file(user['id'], 'dropbox', 'x', str(tmp_path)))

    def test_provider_must_be_known(self, aggregator, user):
        with pytest.raises(ValidationError, match='Unknown provider'):
            asyncio.run(aggregator.delete_file(user['id'], 'box', 'x'))
        with pytest.raises(ValidationError, match='provider is required'):
            asyncio.run(aggregator.delete_file(user['id'], None, 'x'))

    def test_delete_shrinks_ledger(self, aggregator, store, user, link, clouds):
        link('dropbox', used=1000, limit=5000)
        file_id = clouds['dropbox'].add('old.zip', b'z' * 400)

        record = asyncio.run(aggregator.delete_file(user['id'], 'dropbox', file_id))

        assert record['name'] == 'old.zip'
        assert file_id not in clouds['dropbox'].files
        assert store.get_account(user['id'], 'dropbox').storage_used == 600

    def test_delete_folder_reloads_quota(self, aggregator, store, user, link, clouds):
        link('onedrive', used=9000, limit=10000)
        folder_id = clouds['onedrive'].add('Old photos', is_folder=True)
        clouds['onedrive'].used, clouds['onedrive'].limit = 4000, 10000

        record = asyncio.run(aggregator.delete_file(user['id'], 'onedrive', folder_id))

        assert record['is_folder'] is True
        account = store.get_account(user['id'], 'onedrive')
        assert (account.storage_used, account.storage_limit) == (4000, 10000)

    def test_delete_missing_file_is_provider_error(self, aggregator, user, link):
        link('google')
        with pytest.raises(ProviderError):
            asyncio.run(aggregator.delete_file(user['id'], 'google', 'nope'))


class TestStats:

    def test_stats_and_totals(self, aggregator, user, link):
        link('google', used=250, limit=1000)
        link('dropbox', used=500, limit=1000)

        result = aggregator.storage_stats(user['id'])

        assert result['stats'][0] == {
            'provider': 'google', 'used': 250, 'limit': 1000, 'available': 750, 'percentage': 25.0
        }
        assert result['totals'] == {'used': 750, 'limit': 2000, 'available': 1250, 'percentage': 37.5}

    def test_unknown_limit(self, aggregator, user, link):
        link('google', used=250, limit=1000)
        link('onedrive', used=10)

        result = aggregator.storage_stats(user['id'])

        onedrive = result['stats'][1]
        assert onedrive['available'] is None
        assert onedrive['percentage'] is None
        assert result['totals']['used'] == 260
        assert result['totals']['limit'] is None

    def test_no_accounts(self, aggregator, user):
        result = aggregator.storage_stats(user['id'])
        assert result['stats'] == []
        assert result['totals']['used'] == 0
        assert result['totals']['limit'] is None

    def test_refresh_quotas(self, aggregator, store, user, link, clouds):
        link('google', used=1, limit=2)
        link('dropbox', used=7, limit=9)
        clouds['google'].used, clouds['google'].limit = 4000, 15000
        clouds['dropbox'].fail = 'network down'

        result = asyncio.run(aggregator.refresh_quotas(user['id']))

        google = store.get_account(user['id'], 'google')
        assert (google.storage_used, google.storage_limit) == (4000, 15000)
        dropbox = store.get_account(user['id'], 'dropbox')
        assert (dropbox.storage_used, dropbox.storage_limit) == (7, 9)
        assert result['errors'] == [{'provider': 'dropbox', 'error': 'network down'}]
        assert result['stats'][0]['used'] == 4000


class TestAccounts:

    def test_connect_pulls_quota(self, aggregator, store, user, clouds):
        clouds['google'].used, clouds['google'].limit = 123, 1000

        result = asyncio.run(aggregator.connect_account(user['id'], 'google', 'tok', refresh_token='ref'))

        assert result['provider'] == 'google'
        assert result['storage_used'] == 123
        assert result['storage_limit'] == 1000
        assert result['quota_error'] is None
        assert store.get_account(user['id'], 'google').access_token == 'tok'

    def test_connect_keeps_link_when_quota_fails(self, aggregator, store, user, clouds):
        clouds['onedrive'].fail = 'graph unavailable'

        result = asyncio.run(aggregator.connect_account(user['id'], 'onedrive', 'tok'))

        assert result['quota_error'] == 'graph unavailable'
        assert store.get_account(user['id'], 'onedrive') is not None

    def test_connect_validates_input(self, aggregator, user):
        with pytest.raises(ValidationError):
            asyncio.run(aggregator.connect_account(user['id'], 'icloud', 'tok'))
        with pytest.raises(ValidationError):
            asyncio.run(aggregator.connect_account(user['id'], 'google', ''))

    def test_connect_rejects_non_string_values(self, aggregator, store, user):
        with pytest.raises(ValidationError, match='Unknown provider'):
            asyncio.run(aggregator.connect_account(user['id'], 5, 'tok'))
        with pytest.raises(ValidationError, match='access_token'):
            asyncio.run(aggregator.connect_account(user['id'], 'google', 123))
        with pytest.raises(ValidationError, match='refresh_token'):
            asyncio.run(aggregator.connect_account(user['id'], 'google', 'tok', refresh_token=['r']))
        assert store.get_accounts(user['id']) == []

    def test_app_credentials_passed_to_adapters(self, aggregator, user, link, clouds):
        aggregator.config['google_client_id'] = 'client-id'
        aggregator.config['google_client_secret'] = 'client-secret'
        link('google')

        asyncio.run(aggregator.list_files(user['id']))

        creds = clouds['google'].credentials_seen[-1]
        assert creds['client_id'] == 'client-id'
        assert creds['client_secret'] == 'client-secret'
        assert creds['refresh_token'] == 'google-refresh-token'

    def test_disconnect(self, aggregator, user, link):
        link('dropbox')
        aggregator.disconnect_account(user['id'], 'dropbox')
        assert aggregator.linked_accounts(user['id']) == []
        with pytest.raises(AccountNotConnectedError):
            aggregator.disconnect_account(user['id'], 'dropbox')
