### leasesign/utils/s3_utils.py

# Standard library imports
import os
from io import BytesIO
from typing import Optional, Dict

# Third party imports
import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

# Local imports
from leasesign.core.config import settings
from leasesign.utils.logger import get_logger

logger = get_logger(__name__)

CONTENT_TYPES = {
    ".pdf": "application/pdf",
    ".json": "application/json",
    ".html": "text/html; charset=utf-8",
}


class StorageError(Exception):
    """Raised when a blob cannot be written to or read from durable storage."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class S3Utils:
    """Utility class for interacting with s3"""

    def __init__(self):
        """Initialize S3 client with bounded timeouts and retries"""
        self.s3_client = boto3.client(
            's3',
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
            config=Config(
                connect_timeout=settings.s3_connect_timeout_seconds,
                read_timeout=settings.s3_read_timeout_seconds,
                retries={"max_attempts": settings.s3_max_attempts, "mode": "standard"},
            ),
        )
        self.bucket_name = settings.s3_bucket_name

    def upload_bytes(
        self,
        data: bytes,
        key: str,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        """
        Upload a blob to S3

        Args:
            data: Bytes to store
            key: S3 key (path) where the blob will be stored
            content_type: Optional content type, derived from the key extension otherwise
            metadata: Optional object metadata

        Returns:
            str: The key that was written

        Raises:
            StorageError: If S3 rejects the write after retries
        """
        extra_args = {}
        file_extension = os.path.splitext(key)[1]
        if file_extension in CONTENT_TYPES:
            extra_args['ContentType'] = CONTENT_TYPES[file_extension]
        if content_type:
            extra_args['ContentType'] = content_type
        if metadata:
            extra_args['Metadata'] = metadata

        try:
            self.s3_client.upload_fileobj(
                BytesIO(data),
                self.bucket_name,
                key,
                ExtraArgs=extra_args
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Error uploading file to S3", key=key, error_message=str(e))
            raise StorageError("Failed to upload file", {"key": key}) from e
        logger.info("Uploaded file to S3", key=key, size_bytes=len(data))
        return key

    def download_file(self, key: str) -> bytes:
        """
        Download a file from S3

        Raises:
            StorageError: If the object cannot be read
        """
        try:
            response = self.s3_client.get_object(
                Bucket=self.bucket_name,
                Key=key
            )
            return response['Body'].read()
        except (ClientError, BotoCoreError) as e:
            logger.error("Error downloading file from S3", key=key, error_message=str(e))
            raise StorageError("Failed to download file", {"key": key}) from e

    def generate_presigned_url(self, key: str, expiration: int = 3600) -> Optional[str]:
        """
        Generate a presigned URL for temporary access to an S3 object

        Args:
            key: S3 key (path) of the file
            expiration: URL expiration time in seconds (default: 1 hour)

        Returns:
            str: Presigned URL if successful, None otherwise
        """
        try:
            return self.s3_client.generate_presigned_url(
                'get_object',
                Params={
                    'Bucket': self.bucket_name,
                    'Key': key
                },
                ExpiresIn=expiration
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Error generating presigned URL", key=key, error_message=str(e))
            return None

    def delete_file(self, key: str) -> bool:
        """
        Delete a file from S3

        Returns:
            bool: True if deletion was successful, False otherwise
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=key
            )
            return True
        except (ClientError, BotoCoreError) as e:
            logger.warning("Error deleting file from S3", key=key, error_message=str(e))
            return False


s3_utils = S3Utils()
