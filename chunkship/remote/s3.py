"""S3-compatible remote store (Cloudflare R2, MinIO, AWS S3)"""

import asyncio
from typing import Dict, List, Optional
import logging

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .client import RemoteObjectNotFound, RemoteStoreClient, RemoteStoreError

logger = logging.getLogger(__name__)

WRITE_PROBE_KEY = "__test_write_permission__"


def _status_code(error: ClientError) -> Optional[int]:
    return error.response.get('ResponseMetadata', {}).get('HTTPStatusCode')


class S3RemoteStore(RemoteStoreClient):
    """
    boto3-backed store
    boto3 is blocking, so every call runs in a worker thread
    """

    def __init__(self, bucket: str, endpoint: Optional[str] = None,
                 access_key_id: Optional[str] = None,
                 secret_access_key: Optional[str] = None,
                 region: str = "auto", client=None):
        self.bucket = bucket
        self.endpoint = endpoint
        self.region = region

        if client is None:
            client = boto3.client(
                's3',
                endpoint_url=endpoint,
                region_name=region,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
                # R2 requires path-style addressing
                config=BotoConfig(s3={'addressing_style': 'path'})
            )
        self.client = client

    def _explain(self, error: ClientError, key: str, action: str) -> RemoteStoreError:
        status = _status_code(error)
        if status == 403:
            return RemoteStoreError(
                f"Access denied (403) {action} {key} in bucket \"{self.bucket}\". "
                f"Verify the credentials have read/write permissions for this bucket "
                f"and that the endpoint is correct: {self.endpoint}"
            )
        if status == 404:
            return RemoteStoreError(
                f"Bucket not found (404): \"{self.bucket}\". "
                f"Verify the bucket name is correct and exists"
            )
        return RemoteStoreError(f"Failed {action} {key}: {error}")

    async def exists(self, key: str) -> bool:
        try:
            await asyncio.to_thread(self.client.head_object, Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if _status_code(e) == 404 or e.response.get('Error', {}).get('Code') in ('404', 'NotFound'):
                return False
            raise self._explain(e, key, "checking") from e
        except BotoCoreError as e:
            raise RemoteStoreError(f"Failed checking {key}: {e}") from e

    async def put_object(self, key: str, data: bytes) -> None:
        try:
            await asyncio.to_thread(
                self.client.put_object, Bucket=self.bucket, Key=key, Body=data
            )
        except ClientError as e:
            logger.error(f"Upload failed for key {key} (bucket {self.bucket}, endpoint {self.endpoint})")
            raise self._explain(e, key, "uploading") from e
        except BotoCoreError as e:
            raise RemoteStoreError(f"Failed uploading {key}: {e}") from e

        logger.debug(f"Uploaded {key} ({len(data)} bytes)")

    async def get_object(self, key: str) -> bytes:
        try:
            response = await asyncio.to_thread(
                self.client.get_object, Bucket=self.bucket, Key=key
            )
            return await asyncio.to_thread(response['Body'].read)
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') in ('NoSuchKey', '404'):
                raise RemoteObjectNotFound(key) from e
            raise self._explain(e, key, "downloading") from e
        except BotoCoreError as e:
            raise RemoteStoreError(f"Failed downloading {key}: {e}") from e

    async def list_common_prefixes(self, prefix: str, delimiter: str = "/") -> List[str]:
        prefixes = []

        def _collect():
            paginator = self.client.get_paginator('list_objects_v2')
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix, Delimiter=delimiter):
                for entry in page.get('CommonPrefixes', []):
                    prefixes.append(entry['Prefix'])

        try:
            await asyncio.to_thread(_collect)
        except ClientError as e:
            raise self._explain(e, prefix, "listing") from e
        except BotoCoreError as e:
            raise RemoteStoreError(f"Failed listing {prefix}: {e}") from e

        return sorted(prefixes)

    async def test_connection(self) -> Dict:
        """
        Check read access (list one key) then write access (put and delete a probe)
        Returns a result dict instead of raising
        """
        try:
            await asyncio.to_thread(self.client.list_objects_v2, Bucket=self.bucket, MaxKeys=1)
        except ClientError as e:
            return {
                'success': False,
                'message': str(self._explain(e, self.bucket, "listing")),
                'http_status_code': _status_code(e)
            }
        except BotoCoreError as e:
            return {'success': False, 'message': f"Connection failed: {e}"}

        try:
            await asyncio.to_thread(
                self.client.put_object, Bucket=self.bucket, Key=WRITE_PROBE_KEY, Body=b"test"
            )
        except ClientError as e:
            if _status_code(e) == 403:
                return {
                    'success': False,
                    'message': f"Bucket \"{self.bucket}\" exists but write access is denied (403)",
                    'http_status_code': 403
                }
            return {'success': False, 'message': str(self._explain(e, WRITE_PROBE_KEY, "uploading"))}

        try:
            await asyncio.to_thread(
                self.client.delete_object, Bucket=self.bucket, Key=WRITE_PROBE_KEY
            )
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Could not delete probe object: {e}")

        return {
            'success': True,
            'message': f"Bucket \"{self.bucket}\" is accessible with read and write permissions"
        }

    def describe(self) -> str:
        return f"s3://{self.bucket} ({self.endpoint or 'aws'})"
