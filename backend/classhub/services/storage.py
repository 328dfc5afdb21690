"""S3 service for chat media storage."""

import asyncio
import mimetypes
from uuid import uuid4

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from classhub.config import get_settings
from classhub.errors import StorageError

settings = get_settings()


class MediaStorage:
    """Service for uploading chat attachments and voice clips to S3."""

    def __init__(self):
        """Initialize S3 client with credentials from settings."""
        client_kwargs = {"region_name": settings.aws_s3_region}
        if settings.aws_access_key_id and settings.aws_secret_access_key:
            client_kwargs["aws_access_key_id"] = settings.aws_access_key_id
            client_kwargs["aws_secret_access_key"] = settings.aws_secret_access_key
        # Support MinIO / LocalStack by pointing to a custom endpoint
        if settings.aws_s3_endpoint_url:
            client_kwargs["endpoint_url"] = settings.aws_s3_endpoint_url

        self.s3_client = boto3.client("s3", **client_kwargs)
        self.bucket = settings.aws_s3_bucket

    @staticmethod
    def build_key(filename: str | None, content_type: str) -> str:
        """
        Build a collision-free object key under uploads/.

        The extension comes from the original filename when it has one,
        otherwise from the MIME type.
        """
        ext = ""
        if filename and "." in filename:
            ext = filename.rsplit(".", 1)[-1].lower()
        else:
            guessed = mimetypes.guess_extension(content_type.split(";")[0].strip()) or ""
            ext = guessed.lstrip(".")
        return f"uploads/{uuid4()}.{ext}" if ext else f"uploads/{uuid4()}"

    def public_url(self, file_key: str) -> str:
        """Publicly fetchable URL for an object key."""
        if settings.media_public_base_url:
            return f"{settings.media_public_base_url.rstrip('/')}/{file_key}"
        if settings.aws_s3_endpoint_url:
            return f"{settings.aws_s3_endpoint_url.rstrip('/')}/{self.bucket}/{file_key}"
        return f"https://{self.bucket}.s3.{settings.aws_s3_region}.amazonaws.com/{file_key}"

    async def upload(self, data: bytes, filename: str | None, content_type: str) -> str:
        """
        Upload a blob and return its public URL.

        Args:
            data: Raw bytes of the file
            filename: Original filename, used for the extension
            content_type: MIME type stored on the object

        Raises:
            StorageError: If the file is too large or the S3 operation fails
        """
        if len(data) > settings.max_media_size_bytes:
            raise StorageError(
                f"File exceeds the {settings.max_media_size_bytes // (1024 * 1024)}MB upload limit"
            )
        file_key = self.build_key(filename, content_type)
        try:
            await asyncio.to_thread(
                self.s3_client.put_object,
                Bucket=self.bucket,
                Key=file_key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to upload media to S3: {str(e)}") from e
        return self.public_url(file_key)


# Singleton instance
media_storage = MediaStorage()
