"""Pytest configuration and fixtures."""

import pytest

from cloudhub.account_store import AccountStore
from cloudhub.aggregator import StorageAggregator
from cloudhub.cloud_adapters.base import CloudServiceAdapter
from cloudhub.credential_store import TokenCipher
from cloudhub.web_api import create_app

TEST_SECRET = '00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff'


class FakeCloud:
    """In-memory stand-in for one provider's remote drive."""

    def __init__(self, provider, used=0, limit=None):
        self.provider = provider
        self.files = {}
        self.used = used
        self.limit = limit
        self.fail = None
        self.page_size = None
        self.credentials_seen = []
        self.downloads = []
        self._next_id = 1

    def add(self, name, content=b'', mime_type='text/plain', is_folder=False):
        file_id = f'{self.provider}-{self._next_id}'
        self._next_id += 1
        self.files[file_id] = {
            'name': name,
            'content': content,
            'mime_type': mime_type,
            'is_folder': is_folder,
        }
        return file_id


class FakeAdapter(CloudServiceAdapter):
    """Adapter backed by a FakeCloud."""

    def __init__(self, cloud, credentials, timeout=60):
        super().__init__(credentials, timeout)
        self.cloud = cloud
        self.provider = cloud.provider
        cloud.credentials_seen.append(credentials)

    def _check(self):
        if self.cloud.fail:
            raise RuntimeError(self.cloud.fail)

    def _record(self, file_id):
        f = self.cloud.files[file_id]
        return self.make_record(
            id=file_id,
            name=f['name'],
            size=len(f['content']),
            mime_type=f['mime_type'],
            is_folder=f['is_folder'],
        )

    async def authenticate(self):
        self.authenticated = True
        return True

    async def list_files(self, folder_path=None, page_token=None):
        self._check()
        ids = sorted(self.cloud.files)
        if not self.cloud.page_size:
            return {'files': [self._record(i) for i in ids], 'next_page_token': None}
        start = int(page_token or 0)
        end = start + self.cloud.page_size
        return {
            'files': [self._record(i) for i in ids[start:end]],
            'next_page_token': str(end) if end < len(ids) else None,
        }

    async def search_files(self, query, folder_path=None):
        self._check()
        return [self._record(i) for i, f in sorted(self.cloud.files.items())
                if query.lower() in f['name'].lower()]

    async def get_file_metadata(self, file_id):
        self._check()
        return self._record(file_id)

    async def upload_file(self, local_path, name, mime_type=None):
        self._check()
        with open(local_path, 'rb') as f:
            content = f.read()
        file_id = self.cloud.add(name, content, mime_type or 'application/octet-stream')
        self.cloud.used += len(content)
        return self._record(file_id)

    async def download_file(self, file_id, output_path, mime_type=None):
        self._check()
        self.cloud.downloads.append((file_id, mime_type))
        with open(output_path, 'wb') as f:
            f.write(self.cloud.files[file_id]['content'])
        return output_path

    async def delete_file(self, file_id):
        self._check()
        removed = self.cloud.files.pop(file_id)
        self.cloud.used -= len(removed['content'])

    async def get_storage_quota(self):
        self._check()
        return {'used': self.cloud.used, 'limit': self.cloud.limit}


@pytest.fixture
def cipher():
    return TokenCipher(TEST_SECRET)


@pytest.fixture
def store(tmp_path, cipher):
    return AccountStore(db_path=str(tmp_path / 'cloudhub.db'), cipher=cipher)


@pytest.fixture
def user(store):
    return store.create_user(email='alice@example.com', password='s3cret', name='Alice')


@pytest.fixture
def clouds():
    return {
        'google': FakeCloud('google'),
        'dropbox': FakeCloud('dropbox'),
        'onedrive': FakeCloud('onedrive'),
    }


@pytest.fixture
def config():
    return {
        'secret_key': TEST_SECRET,
        'max_upload_mb': 1,
        'provider_timeout_seconds': 5,
        'max_pages_per_provider': 10,
    }


@pytest.fixture
def aggregator(store, clouds, config):
    def factory(provider, credentials, timeout=60):
        return FakeAdapter(clouds[provider], credentials, timeout)

    return StorageAggregator(store, adapter_factory=factory, config=config)


@pytest.fixture
def client(config, store, aggregator):
    app = create_app(config, store, aggregator)
    app.config['TESTING'] = True
    with app.test_client() as test_client:
        yield test_client


@pytest.fixture
def link(store, user):
    """Link a provider account for the test user with a fixed ledger."""
    def _link(provider, used=0, limit=None):
        return store.upsert_account(
            user['id'], provider, f'{provider}-access-token',
            refresh_token=f'{provider}-refresh-token',
            storage_used=used, storage_limit=limit,
        )
    return _link
