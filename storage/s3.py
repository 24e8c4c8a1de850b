"""
BlobDB S3 Backend
=================
BlobBackend over an S3 bucket via boto3.

Mapping:
  get     -> GetObject      (NoSuchKey / 404 / NotFound -> None)
  put     -> PutObject      (ServerSideEncryption=AES256 when encrypt)
  delete  -> DeleteObject   (S3 deletes of missing keys already succeed)
  list    -> ListObjectsV2  (ContinuationToken is the cursor)

Retries and timeouts belong to the boto3 client configuration; pass a
preconfigured client to override the defaults below.
"""

import logging
from typing import Any, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from storage.backend import BackendError, BlobBackend, ListingPage


logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}
DEFAULT_PAGE_SIZE = 1000


def _is_not_found(err: Exception) -> bool:
    if isinstance(err, ClientError):
        code = err.response.get("Error", {}).get("Code", "")
        return code in _NOT_FOUND_CODES
    return False


def make_client(region: Optional[str] = None,
                endpoint_url: Optional[str] = None,
                timeout_seconds: float = 30.0) -> Any:
    """Build a boto3 S3 client with bounded timeouts and standard retries."""
    session = boto3.Session(region_name=region)
    return session.client(
        "s3",
        region_name=region,
        endpoint_url=endpoint_url,
        config=BotoConfig(
            connect_timeout=timeout_seconds,
            read_timeout=timeout_seconds,
            retries={"max_attempts": 5, "mode": "standard"},
        ),
    )


class S3Backend(BlobBackend):

    def __init__(self, bucket: str, client: Any = None,
                 page_size: int = DEFAULT_PAGE_SIZE):
        self.bucket = bucket
        self.page_size = page_size
        self._s3 = client if client is not None else make_client()

    def get(self, key: str) -> Optional[bytes]:
        try:
            resp = self._s3.get_object(Bucket=self.bucket, Key=key)
            return resp["Body"].read()
        except (ClientError, BotoCoreError) as e:
            if _is_not_found(e):
                return None
            raise BackendError("get", key, str(e)) from e

    def put(self, key: str, data: bytes, content_type: str,
            encrypt: bool = False) -> None:
        kwargs = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
            "ContentLength": len(data),
            "ContentType": content_type,
        }
        if encrypt:
            kwargs["ServerSideEncryption"] = "AES256"
        try:
            self._s3.put_object(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise BackendError("put", key, str(e)) from e

    def delete(self, key: str) -> None:
        try:
            self._s3.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            if _is_not_found(e):
                return
            raise BackendError("delete", key, str(e)) from e

    def list_page(self, prefix: str,
                  cursor: Optional[str] = None) -> ListingPage:
        kwargs = {
            "Bucket": self.bucket,
            "Prefix": prefix,
            "MaxKeys": self.page_size,
        }
        if cursor is not None:
            kwargs["ContinuationToken"] = cursor
        try:
            resp = self._s3.list_objects_v2(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise BackendError("list", prefix, str(e)) from e

        keys = [obj["Key"] for obj in resp.get("Contents", [])]
        next_cursor = resp.get("NextContinuationToken") if resp.get("IsTruncated") else None
        logger.debug("listed %d keys under %s (truncated=%s)",
                     len(keys), prefix, next_cursor is not None)
        return ListingPage(keys=keys, next_cursor=next_cursor)
