"""Storage service for chat image uploads using S3-compatible storage (DigitalOcean Spaces)."""
import logging
import mimetypes
import uuid
from datetime import datetime, timezone
from typing import BinaryIO

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from gitchat.settings import settings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class StorageService:
    """Service for managing image uploads to S3-compatible storage."""

    def __init__(self, client=None):
        """Initialize the S3 client."""
        if client is None:
            if not settings.file_storage_enabled:
                raise StorageError("File storage is not configured")
            client = boto3.client(
                "s3",
                endpoint_url=settings.storage_endpoint,
                aws_access_key_id=settings.storage_access_key,
                aws_secret_access_key=settings.storage_secret_key,
                region_name=settings.storage_region,
            )
        self.client = client
        self.bucket = settings.storage_bucket
        self.public_url = settings.storage_public_url

    def _generate_storage_key(self, conversation_id: int, filename: str) -> str:
        """Generate a unique storage key for a file.

        Format: chat-images/{conversation_id}/{yyyy/mm}/{uuid}_{filename}
        """
        date_path = datetime.now(timezone.utc).strftime("%Y/%m")
        unique_id = uuid.uuid4().hex[:8]
        safe_filename = "".join(c for c in filename.replace(" ", "-") if c.isalnum() or c in "._-")
        return f"chat-images/{conversation_id}/{date_path}/{unique_id}_{safe_filename}"

    def upload_image(
        self,
        file: BinaryIO,
        filename: str,
        content_type: str | None,
        conversation_id: int,
    ) -> tuple[str, str, int]:
        """Upload an image to storage.

        Size and MIME checks happen in the message service before this is
        called.

        Args:
            file: File-like object to upload
            filename: Original filename
            content_type: MIME type (will be guessed if not provided)
            conversation_id: Conversation ID for organizing files

        Returns:
            Tuple of (storage_key, public_url, file_size)

        Raises:
            StorageError: If upload fails
        """
        if not content_type:
            content_type, _ = mimetypes.guess_type(filename)
            content_type = content_type or "application/octet-stream"

        storage_key = self._generate_storage_key(conversation_id, filename)

        file.seek(0, 2)
        file_size = file.tell()
        file.seek(0)

        try:
            self.client.upload_fileobj(
                file,
                self.bucket,
                storage_key,
                ExtraArgs={
                    "ContentType": content_type,
                    "ACL": "public-read",
                },
            )
        except NoCredentialsError:
            raise StorageError("Storage credentials not configured")
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to upload file: {e}")

        logger.info("Uploaded %s (%d bytes)", storage_key, file_size)
        return storage_key, self.get_public_url(storage_key), file_size

    def delete_file(self, storage_key: str) -> bool:
        """Delete a file from storage.

        Returns:
            True if deleted, False if the store refused
        """
        try:
            self.client.delete_object(Bucket=self.bucket, Key=storage_key)
            return True
        except (ClientError, BotoCoreError) as e:
            logger.warning("Failed to delete %s: %s", storage_key, e)
            return False

    def get_public_url(self, storage_key: str) -> str:
        """Get the public URL for a file."""
        if self.public_url:
            return f"{self.public_url.rstrip('/')}/{storage_key}"
        # Fallback to DigitalOcean Spaces URL format
        return f"https://{self.bucket}.{settings.storage_region}.digitaloceanspaces.com/{storage_key}"


# Singleton instance - lazy initialization
_storage_service: StorageService | None = None


def get_storage_service() -> StorageService:
    """Get the storage service singleton.

    Raises:
        StorageError: If storage is not configured
    """
    global _storage_service
    if _storage_service is None:
        _storage_service = StorageService()
    return _storage_service
