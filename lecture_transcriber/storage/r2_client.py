"""Cloudflare R2 blob store (S3 API through boto3).

Lecture audio is uploaded by the web application under an opaque key. The
pipeline only reads that key and writes raw provider responses beside it.
"""

from __future__ import annotations

import logging
import os
from typing import Any

import boto3
from botocore.exceptions import ClientError

from lecture_transcriber.utils.errors import BlobAccessError

logger = logging.getLogger(__name__)


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "Unknown")


class R2Client:
    """Blob store backed by an R2 bucket.

    Reads configuration from environment variables:
        R2_ENDPOINT, R2_BUCKET, R2_ACCESS_KEY_ID, R2_SECRET_ACCESS_KEY

    Args:
        s3_client: Pre-built boto3 S3 client; built from the endpoint and
            credentials when omitted.
    """

    def __init__(
        self,
        endpoint_url: str | None = None,
        bucket: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        s3_client: Any | None = None,
    ) -> None:
        self.endpoint_url = endpoint_url or os.environ.get("R2_ENDPOINT", "")
        self.bucket = bucket or os.environ.get("R2_BUCKET", "")
        if not self.endpoint_url:
            raise BlobAccessError("R2_ENDPOINT is required")
        if not self.bucket:
            raise BlobAccessError("R2_BUCKET is required")

        self._s3 = s3_client or boto3.client(
            "s3",
            endpoint_url=self.endpoint_url,
            aws_access_key_id=access_key_id or os.environ.get("R2_ACCESS_KEY_ID", ""),
            aws_secret_access_key=secret_access_key
            or os.environ.get("R2_SECRET_ACCESS_KEY", ""),
            region_name="auto",
        )

    def download(self, key: str) -> bytes:
        """Read an object's bytes.

        botocore connection errors propagate unchanged so the caller may
        retry them.

        Raises:
            BlobAccessError: If the bucket refuses the read (missing key,
                access denied).
        """
        try:
            obj = self._s3.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            raise BlobAccessError(
                f"Unable to download audio file '{key}': {_error_code(exc)}",
                key=key,
            ) from exc
        body = obj["Body"]
        try:
            return body.read()
        finally:
            body.close()

    def upload(self, key: str, data: bytes, content_type: str = "") -> str:
        """Write an object and return its key.

        Raises:
            BlobAccessError: If the bucket refuses the write.
        """
        extra = {"ContentType": content_type} if content_type else {}
        try:
            self._s3.put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        except ClientError as exc:
            raise BlobAccessError(
                f"Unable to upload object '{key}' to bucket "
                f"'{self.bucket}': {_error_code(exc)}",
                key=key,
            ) from exc
        logger.debug("Stored %d bytes at %s", len(data), key)
        return key
