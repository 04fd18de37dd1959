"""Object storage client for uploaded media (S3-compatible).

Uploaded files are addressed by URL. The client maps URLs back to
object keys and provides upload(), fetch() and delete() using boto3
against an S3-compatible endpoint.
"""

from __future__ import annotations

import logging
import os
from urllib.parse import unquote, urlparse

import boto3
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from quickscribe.utils.errors import AudioFetchError, PipelineError, StorageError

logger = logging.getLogger(__name__)

_RETRYABLE_ERROR_CODES = frozenset(
    {
        "InternalError",
        "RequestTimeout",
        "ServiceUnavailable",
        "SlowDown",
        "Throttling",
        "ThrottlingException",
    }
)
_TRANSIENT_BOTO_ERRORS = (
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)


def is_retryable_storage_error(exc: BaseException) -> bool:
    """Whether a storage failure is transient (network, throttling, 5xx).

    Client errors are wrapped in AudioFetchError/StorageError, so the
    original botocore exception is looked up on __cause__.
    """
    cause = exc.__cause__ if isinstance(exc, PipelineError) else exc
    if isinstance(cause, ClientError):
        status = cause.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        code = cause.response.get("Error", {}).get("Code", "")
        return status >= 500 or code in _RETRYABLE_ERROR_CODES
    return isinstance(cause, _TRANSIENT_BOTO_ERRORS)


class BlobClient:
    """S3-compatible client for uploaded media blobs.

    Reads configuration from environment variables when not passed:
        BLOB_ENDPOINT, BLOB_BUCKET, BLOB_ACCESS_KEY_ID,
        BLOB_SECRET_ACCESS_KEY, BLOB_PUBLIC_BASE_URL

    Blob URLs are "{public_base_url}/{key}". Without a public base URL,
    path-style URLs "{endpoint}/{bucket}/{key}" are produced.
    """

    def __init__(
        self,
        endpoint_url: str | None = None,
        bucket: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        public_base_url: str | None = None,
    ) -> None:
        self.endpoint_url = endpoint_url or os.environ.get("BLOB_ENDPOINT", "")
        self.bucket = bucket or os.environ.get("BLOB_BUCKET", "")
        self.access_key_id = access_key_id or os.environ.get(
            "BLOB_ACCESS_KEY_ID", ""
        )
        self.secret_access_key = secret_access_key or os.environ.get(
            "BLOB_SECRET_ACCESS_KEY", ""
        )

        if not self.endpoint_url:
            raise StorageError("BLOB_ENDPOINT is required", operation="init")
        if not self.bucket:
            raise StorageError("BLOB_BUCKET is required", operation="init")

        base = public_base_url or os.environ.get("BLOB_PUBLIC_BASE_URL", "")
        if not base:
            base = f"{self.endpoint_url.rstrip('/')}/{self.bucket}"
        self.public_base_url = base.rstrip("/")

        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint_url,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
            region_name="auto",
        )

    def url_for(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"

    def key_from_url(self, url: str) -> str:
        """Extract the object key from a blob URL.

        Raises:
            StorageError: If the URL does not point into this bucket.
        """
        if url.startswith(self.public_base_url + "/"):
            key = url[len(self.public_base_url) + 1 :]
        else:
            path = urlparse(url).path.lstrip("/")
            prefix = f"{self.bucket}/"
            key = path[len(prefix) :] if path.startswith(prefix) else path

        key = unquote(key.split("?", 1)[0])
        if not key:
            raise StorageError(
                f"Cannot determine object key from URL: {url}", operation="key"
            )
        return key

    def upload(self, key: str, data: bytes, content_type: str = "") -> str:
        """Store an object and return its URL.

        Raises:
            StorageError: If the object cannot be stored.
        """
        try:
            kwargs: dict = {"Bucket": self.bucket, "Key": key, "Body": data}
            if content_type:
                kwargs["ContentType"] = content_type
            self._client.put_object(**kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(
                f"Failed to upload blob '{key}': {_error_code(exc)}",
                operation="upload",
            ) from exc
        return self.url_for(key)

    def fetch(self, url: str) -> bytes:
        """Retrieve a blob by URL.

        Raises:
            AudioFetchError: If the object cannot be retrieved.
        """
        key = self.key_from_url(url)
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as exc:
            raise AudioFetchError(
                f"Failed to download file from storage: {_error_code(exc)}",
                key=key,
            ) from exc

    def delete(self, url: str) -> None:
        """Delete a blob by URL.

        Raises:
            StorageError: If the object cannot be deleted.
        """
        key = self.key_from_url(url)
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(
                f"Failed to delete blob '{key}': {_error_code(exc)}",
                operation="delete",
            ) from exc
        logger.info("Deleted blob %s", key)


def _error_code(exc: Exception) -> str:
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code", "Unknown")
    return type(exc).__name__
