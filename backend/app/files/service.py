"""Image storage service for chat attachments.

Uploads raw image bytes to an S3-compatible bucket (MinIO in development)
and returns a publicly resolvable URL. Objects are stored as
``{bucket}/{owner_id}_{uuid}.{ext}``; the chat core only ever sees the
returned URL string.
"""
import logging
import uuid
from typing import Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from app.config import AppConfig
from app.errors import StorageError

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = "jpg"

_CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
}


def extension_from_filename(filename: Optional[str]) -> str:
    """Lower-cased text after the last dot, or ``jpg`` if there is none."""
    if not filename or "." not in filename:
        return DEFAULT_EXTENSION
    ext = filename.rsplit(".", 1)[-1].strip().lower()
    return ext if ext.isalnum() else DEFAULT_EXTENSION


class ImageStorageService:
    """Uploads chat images to object storage."""

    def __init__(
        self,
        bucket: str,
        public_url: str,
        endpoint_url: Optional[str] = None,
        region: str = "us-east-1",
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
    ) -> None:
        self.bucket = bucket
        self.public_url = public_url.rstrip("/")
        self._endpoint_url = endpoint_url
        self._region = region
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._client = None
        self._bucket_ready = False

    @classmethod
    def from_config(cls, config: AppConfig) -> "ImageStorageService":
        return cls(
            bucket=config.storage.image_bucket,
            public_url=config.storage.public_url,
            endpoint_url=config.storage.endpoint_url,
            region=config.storage.region,
            access_key_id=config.secrets.storage.access_key_id,
            secret_access_key=config.secrets.storage.secret_access_key,
        )

    def _get_client(self):
        """Create the S3 client on first use (path-style for MinIO)."""
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self._endpoint_url,
                region_name=self._region,
                aws_access_key_id=self._access_key_id,
                aws_secret_access_key=self._secret_access_key,
                config=BotoConfig(s3={"addressing_style": "path"}),
            )
        return self._client

    def _ensure_bucket(self, client) -> None:
        if self._bucket_ready:
            return
        try:
            client.head_bucket(Bucket=self.bucket)
            logger.debug("Bucket '%s' exists", self.bucket)
        except ClientError as e:
            logger.warning("Bucket '%s' not accessible (%s), creating it", self.bucket, e)
            client.create_bucket(Bucket=self.bucket)
            logger.info("Created bucket '%s'", self.bucket)
        self._bucket_ready = True

    def upload_image(self, data: bytes, extension: str, owner_id: str) -> str:
        """Store *data* and return its public URL.

        Raises:
            StorageError: If the bucket cannot be created or the upload fails.
        """
        extension = (extension or DEFAULT_EXTENSION).lstrip(".").lower()
        key = f"{owner_id}_{uuid.uuid4()}.{extension}"
        content_type = _CONTENT_TYPES.get(extension, "application/octet-stream")

        client = self._get_client()
        try:
            self._ensure_bucket(client)
            client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to upload {key} to bucket {self.bucket}: {e}")
            raise StorageError(f"Image upload failed: {e}") from e

        url = f"{self.public_url}/{self.bucket}/{key}"
        logger.info(f"Uploaded image {key} ({len(data)} bytes)")
        return url
