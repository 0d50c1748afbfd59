"""Pytest configuration and fixtures"""

import pytest
import pytest_asyncio
import asyncio
import tempfile
import shutil
from pathlib import Path

from chunkship.chunking.gear import GearChunker
from chunkship.remote.client import RemoteObjectNotFound, RemoteStoreClient
from chunkship.storage.chunk_store import ChunkStore

# Small bounds so tests exercise many boundaries on little data
SMALL_MIN = 256
SMALL_AVG = 1024
SMALL_MAX = 4096


class FakeRemoteStore(RemoteStoreClient):
    """In-memory remote store with injectable failures"""

    def __init__(self):
        self.objects = {}
        self.put_calls = []
        self.fail_put_keys = set()
        self.fail_put_matching = None
        self.on_put = None

    async def exists(self, key):
        return key in self.objects

    async def put_object(self, key, data):
        self.put_calls.append(key)
        if self.on_put is not None:
            self.on_put(key)
        if key in self.fail_put_keys or (
            self.fail_put_matching and self.fail_put_matching in key
        ):
            raise ConnectionError(f"Simulated failure writing {key}")
        # Let other tasks run, like a real network call
        await asyncio.sleep(0)
        self.objects[key] = bytes(data)

    async def get_object(self, key):
        if key not in self.objects:
            raise RemoteObjectNotFound(key)
        return self.objects[key]

    async def list_common_prefixes(self, prefix, delimiter="/"):
        found = set()
        for key in self.objects:
            if key.startswith(prefix):
                rest = key[len(prefix):]
                if delimiter in rest:
                    found.add(prefix + rest.split(delimiter, 1)[0] + delimiter)
        return sorted(found)

    def chunk_keys(self):
        return [k for k in self.objects if '/chunks/' in k]


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    tmpdir = tempfile.mkdtemp()
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def small_chunker():
    """Chunker with tiny bounds"""
    return GearChunker(SMALL_MIN, SMALL_AVG, SMALL_MAX)


@pytest_asyncio.fixture
async def chunk_store(temp_dir):
    """Initialized local chunk store"""
    store = ChunkStore(temp_dir / 'chunks')
    await store.initialize()
    return store


@pytest.fixture
def fake_remote():
    """In-memory remote store"""
    return FakeRemoteStore()
