"""Durable byte storage for imported audio and image files.

Backends:
- LocalBlobStore: files below a root directory, served under a URL prefix
- S3BlobStore: objects in an S3 bucket, verified with head_object after upload

Environment variables:
- BLOB_BACKEND (local|s3, default local)
- BLOB_LOCAL_ROOT (default ./uploads)
- BLOB_URL_PREFIX (default /uploads)
- AWS_S3_BUCKET, AWS_REGION
- BLOB_RETRY_ATTEMPTS (default 3)
"""
from __future__ import annotations

import os
import pathlib
import tempfile
from typing import Optional

import boto3
from botocore.exceptions import ClientError
from pydantic import BaseModel
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from modules.utils.logger import get_logger, log_blob_operation

LOG = get_logger()

BLOB_BACKEND = os.getenv('BLOB_BACKEND', 'local')
BLOB_LOCAL_ROOT = os.getenv('BLOB_LOCAL_ROOT', 'uploads')
BLOB_URL_PREFIX = os.getenv('BLOB_URL_PREFIX', '/uploads')
AWS_S3_BUCKET = os.getenv('AWS_S3_BUCKET')
BLOB_RETRY_ATTEMPTS = int(os.getenv('BLOB_RETRY_ATTEMPTS', '3'))


class BlobStoreError(Exception):
    """Raised when bytes cannot be stored, read or removed."""


class BlobReference(BaseModel):
    key: str
    url: str
    backend: str


class BlobStore:
    backend = 'abstract'

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> BlobReference:
        raise NotImplementedError

    def get(self, ref: BlobReference) -> bytes:
        raise NotImplementedError

    def delete(self, ref: BlobReference) -> None:
        raise NotImplementedError

    def exists(self, ref: BlobReference) -> bool:
        raise NotImplementedError

    def check(self) -> str:
        return 'ok'


def _normalize_key(key: str) -> str:
    if not key:
        raise BlobStoreError('Empty blob key')
    key = key.lstrip('/')
    parts = pathlib.PurePosixPath(key).parts
    if '..' in parts or not parts:
        raise BlobStoreError(f'Invalid blob key: {key}')
    return key


class LocalBlobStore(BlobStore):
    backend = 'local'

    def __init__(self, root: str = None, url_prefix: str = None):
        self.root = pathlib.Path(root or BLOB_LOCAL_ROOT).resolve()
        self.url_prefix = (url_prefix if url_prefix is not None else BLOB_URL_PREFIX).rstrip('/')
        self.root.mkdir(parents=True, exist_ok=True)
        LOG.info('LocalBlobStore initialized', extra={'root': str(self.root)})

    def _path(self, key: str) -> pathlib.Path:
        return self.root / _normalize_key(key)

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> BlobReference:
        key = _normalize_key(key)
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # write beside the target then rename so readers never see a partial file
            fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix='.upload-')
            try:
                with os.fdopen(fd, 'wb') as fh:
                    fh.write(data)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.remove(tmp_name)
                raise
        except OSError as e:
            LOG.exception('local_blob_put_failed', exc_info=True)
            raise BlobStoreError(f'Failed to write blob {key}: {e}')
        log_blob_operation('put', key, size_bytes=len(data), backend=self.backend)
        return BlobReference(key=key, url=f'{self.url_prefix}/{key}', backend=self.backend)

    def get(self, ref: BlobReference) -> bytes:
        try:
            return self._path(ref.key).read_bytes()
        except OSError as e:
            raise BlobStoreError(f'Failed to read blob {ref.key}: {e}')

    def delete(self, ref: BlobReference) -> None:
        path = self._path(ref.key)
        try:
            if path.exists():
                path.unlink()
        except OSError as e:
            raise BlobStoreError(f'Failed to delete blob {ref.key}: {e}')
        log_blob_operation('delete', ref.key, backend=self.backend)

    def exists(self, ref: BlobReference) -> bool:
        return self._path(ref.key).is_file()

    def check(self) -> str:
        if os.access(self.root, os.W_OK):
            return 'ok'
        return f'error: {self.root} not writable'


class S3BlobStore(BlobStore):
    backend = 's3'

    def __init__(self, bucket: str = None, url_prefix: str = None):
        self.bucket = bucket or AWS_S3_BUCKET
        if not self.bucket:
            raise BlobStoreError('AWS_S3_BUCKET not configured')
        region = os.getenv('AWS_REGION')
        self.s3 = boto3.client(
            's3',
            region_name=region,
            aws_access_key_id=os.getenv('AWS_ACCESS_KEY_ID'),
            aws_secret_access_key=os.getenv('AWS_SECRET_ACCESS_KEY')
        )
        default_prefix = f'https://{self.bucket}.s3.{region}.amazonaws.com' if region else f'https://{self.bucket}.s3.amazonaws.com'
        self.url_prefix = (url_prefix or os.getenv('BLOB_URL_PREFIX') or default_prefix).rstrip('/')
        LOG.info('S3BlobStore initialized', extra={'bucket': self.bucket})

    @retry(stop=stop_after_attempt(BLOB_RETRY_ATTEMPTS), wait=wait_exponential(multiplier=0.5, max=4), retry=retry_if_exception_type(ClientError), reraise=True)
    def _put_object(self, key: str, data: bytes, content_type: Optional[str]):
        params = {'Bucket': self.bucket, 'Key': key, 'Body': data}
        if content_type:
            params['ContentType'] = content_type
        self.s3.put_object(**params)
        # an upload only counts once the object is visible
        self.s3.head_object(Bucket=self.bucket, Key=key)

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> BlobReference:
        key = _normalize_key(key)
        try:
            self._put_object(key, data, content_type)
        except ClientError as e:
            LOG.exception('s3_put_failed', exc_info=True)
            raise BlobStoreError(f'Failed to upload s3://{self.bucket}/{key}: {e}')
        log_blob_operation('put', key, size_bytes=len(data), backend=self.backend)
        return BlobReference(key=key, url=f'{self.url_prefix}/{key}', backend=self.backend)

    def get(self, ref: BlobReference) -> bytes:
        try:
            resp = self.s3.get_object(Bucket=self.bucket, Key=ref.key)
        except ClientError as e:
            raise BlobStoreError(f'Failed to read s3://{self.bucket}/{ref.key}: {e}')
        body = resp['Body']
        return body.read() if hasattr(body, 'read') else body

    def delete(self, ref: BlobReference) -> None:
        try:
            self.s3.delete_object(Bucket=self.bucket, Key=ref.key)
        except ClientError as e:
            raise BlobStoreError(f'Failed to delete s3://{self.bucket}/{ref.key}: {e}')
        log_blob_operation('delete', ref.key, backend=self.backend)

    def exists(self, ref: BlobReference) -> bool:
        try:
            self.s3.head_object(Bucket=self.bucket, Key=ref.key)
            return True
        except ClientError:
            return False

    def check(self) -> str:
        try:
            self.s3.head_bucket(Bucket=self.bucket)
            return 'ok'
        except Exception as e:
            return f'error: {str(e)}'


def get_blob_store(backend: str = None) -> BlobStore:
    backend = (backend or os.getenv('BLOB_BACKEND', BLOB_BACKEND)).lower()
    if backend == 's3':
        return S3BlobStore()
    if backend == 'local':
        return LocalBlobStore(root=os.getenv('BLOB_LOCAL_ROOT', BLOB_LOCAL_ROOT))
    raise BlobStoreError(f'Unknown BLOB_BACKEND: {backend}')
