from .client import RemoteStoreClient, RemoteStoreError, RemoteObjectNotFound
from .keys import (
    chunk_key,
    manifest_key,
    version_key,
    latest_manifest_key,
    build_type_prefix
)
from .local import LocalDirectoryStore
from .s3 import S3RemoteStore

__all__ = [
    'RemoteStoreClient',
    'RemoteStoreError',
    'RemoteObjectNotFound',
    'chunk_key',
    'manifest_key',
    'version_key',
    'latest_manifest_key',
    'build_type_prefix',
    'LocalDirectoryStore',
    'S3RemoteStore'
]
