"""Test remote key layout and the local directory backend"""

import asyncio

import pytest
from botocore.exceptions import ClientError

from chunkship.remote.client import RemoteObjectNotFound, RemoteStoreError
from chunkship.remote.keys import (
    build_type_prefix,
    chunk_key,
    latest_manifest_key,
    manifest_key,
    version_key
)
from chunkship.remote.local import LocalDirectoryStore
from chunkship.remote.s3 import S3RemoteStore


class TestKeys:
    """Test the fixed remote layout"""

    def test_layout(self):
        h = 'ab' + 'c' * 62

        assert chunk_key('production', '1.0.0', h) == f"production/1.0.0/chunks/ab/{h}"
        assert manifest_key('staging', '2.0') == "staging/2.0/manifest.json"
        assert version_key('staging', '2.0') == "staging/2.0/version.json"
        assert latest_manifest_key('production') == "production/roleplayai_manifest.json"
        assert build_type_prefix('staging') == "staging/"


class TestLocalDirectoryStore:
    """Test the directory-backed store"""

    @pytest.mark.asyncio
    async def test_put_get_exists(self, temp_dir):
        store = LocalDirectoryStore(temp_dir)

        assert not await store.exists('production/1.0/manifest.json')
        await store.put_object('production/1.0/manifest.json', b'{}')

        assert await store.exists('production/1.0/manifest.json')
        assert await store.get_object('production/1.0/manifest.json') == b'{}'
        assert (temp_dir / 'production' / '1.0' / 'manifest.json').read_bytes() == b'{}'

    @pytest.mark.asyncio
    async def test_overwrite(self, temp_dir):
        store = LocalDirectoryStore(temp_dir)
        await store.put_object('k', b'one')
        await store.put_object('k', b'two')

        assert await store.get_object('k') == b'two'

    @pytest.mark.asyncio
    async def test_missing_object(self, temp_dir):
        store = LocalDirectoryStore(temp_dir)

        with pytest.raises(RemoteObjectNotFound) as exc:
            await store.get_object('nope.json')
        assert exc.value.key == 'nope.json'

    @pytest.mark.asyncio
    async def test_key_cannot_escape_root(self, temp_dir):
        store = LocalDirectoryStore(temp_dir / 'remote')

        with pytest.raises(RemoteStoreError):
            await store.put_object('../outside', b'x')

    @pytest.mark.asyncio
    async def test_concurrent_writes_of_same_key(self, temp_dir):
        data = b"x" * (4 * 1024 * 1024)
        store = LocalDirectoryStore(temp_dir)

        await asyncio.gather(*(store.put_object('k/x', data) for _ in range(8)))

        assert await store.get_object('k/x') == data
        assert [p.name for p in (temp_dir / 'k').iterdir()] == ['x']

    @pytest.mark.asyncio
    async def test_common_prefixes(self, temp_dir):
        store = LocalDirectoryStore(temp_dir)
        await store.put_object('production/1.0/manifest.json', b'{}')
        await store.put_object('production/1.1/manifest.json', b'{}')
        await store.put_object('production/roleplayai_manifest.json', b'{}')

        assert await store.list_common_prefixes('production/') == ['production/1.0/', 'production/1.1/']
        assert await store.list_common_prefixes('staging/') == []


class StubS3Client:
    """Stands in for a boto3 client"""

    def __init__(self, error_code=None, status=None):
        self.error_code = error_code
        self.status = status
        self.puts = []

    def _error(self, operation):
        return ClientError(
            {'Error': {'Code': self.error_code}, 'ResponseMetadata': {'HTTPStatusCode': self.status}},
            operation
        )

    def head_object(self, Bucket, Key):
        if self.error_code:
            raise self._error('HeadObject')
        return {}

    def put_object(self, Bucket, Key, Body):
        if self.error_code:
            raise self._error('PutObject')
        self.puts.append(Key)

    def get_object(self, Bucket, Key):
        raise self._error('GetObject')


class TestS3RemoteStore:
    """Test error mapping around boto3"""

    @pytest.mark.asyncio
    async def test_head_404_means_absent(self):
        store = S3RemoteStore('builds', client=StubS3Client('404', 404))
        assert not await store.exists('production/1.0/manifest.json')

    @pytest.mark.asyncio
    async def test_no_such_key(self):
        store = S3RemoteStore('builds', client=StubS3Client('NoSuchKey', 404))

        with pytest.raises(RemoteObjectNotFound):
            await store.get_object('production/roleplayai_manifest.json')

    @pytest.mark.asyncio
    async def test_access_denied_is_explained(self):
        store = S3RemoteStore('builds', endpoint='https://r2.example', client=StubS3Client('AccessDenied', 403))

        with pytest.raises(RemoteStoreError, match='403'):
            await store.put_object('k', b'x')

    @pytest.mark.asyncio
    async def test_put(self):
        client = StubS3Client()
        store = S3RemoteStore('builds', client=client)
        await store.put_object('k', b'x')

        assert client.puts == ['k']
        assert await store.exists('k')
