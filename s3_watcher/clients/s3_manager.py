"""
S3 client manager for uploading watched files and confirming they landed.
"""
import math
import time
from typing import Dict, Any, BinaryIO, Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    EndpointConnectionError,
    HTTPClientError,
    WaiterError,
)
from loguru import logger

from ..exceptions import ObjectTooLarge, TransferError
from ..models.config import S3Config

TOO_LARGE_CODES = {'EntityTooLarge', 'MaxMessageLengthExceeded'}

TRANSIENT_CODES = {
    'InternalError',
    'ServiceUnavailable',
    'SlowDown',
    'RequestTimeout',
    'RequestTimeTooSkewed',
    'Throttling',
    'ThrottlingException',
    'RequestLimitExceeded',
}

WAITER_DELAY = 5


def translate_error(error: Exception) -> TransferError:
    """Map a boto3/botocore/IO error onto the upload error taxonomy."""
    if isinstance(error, TransferError):
        return error

    if isinstance(error, S3UploadFailedError):
        cause = error.__cause__ or error.__context__
        if isinstance(cause, Exception) and not isinstance(cause, S3UploadFailedError):
            return translate_error(cause)
        message = str(error)
        for code in TOO_LARGE_CODES:
            if code in message:
                return ObjectTooLarge(message, code=code)
        return TransferError(message, transient=any(c in message for c in TRANSIENT_CODES))

    if isinstance(error, ClientError):
        code = str(error.response.get('Error', {}).get('Code', ''))
        status = error.response.get('ResponseMetadata', {}).get('HTTPStatusCode') or 0
        if code in TOO_LARGE_CODES:
            return ObjectTooLarge(str(error), code=code)
        transient = code in TRANSIENT_CODES or status >= 500 or (code.isdigit() and int(code) >= 500)
        return TransferError(str(error), transient=transient, code=code)

    if isinstance(error, (EndpointConnectionError, BotoConnectionError, HTTPClientError)):
        return TransferError(str(error), transient=True)

    if isinstance(error, BotoCoreError):
        return TransferError(str(error), transient=False)

    if isinstance(error, OSError):
        return TransferError(f"I/O error: {error}", transient=False)

    return TransferError(str(error), transient=False)


def _reraise(error: TransferError, original: Exception):
    if error is original:
        raise error
    raise error from original


class S3Manager:
    """Manages S3 operations for the target bucket."""

    def __init__(self, config: S3Config, max_retries: int = 3, backoff_factor: float = 1.0):
        """Initialize S3Manager with bucket configuration."""
        self.config = config
        self.max_retries = max(1, max_retries)
        self.backoff_factor = backoff_factor

        self.client = self._create_s3_client(config)

        logger.info(f"S3Manager initialized for bucket: {config.bucket}")

    def _create_s3_client(self, config: S3Config):
        """Create an S3 client from configuration."""
        try:
            client = boto3.client(
                's3',
                endpoint_url=config.endpoint,
                aws_access_key_id=config.access_key,
                aws_secret_access_key=config.secret_key,
                region_name=config.region or 'us-east-1'
            )
            logger.debug(f"Created S3 client for endpoint: {config.endpoint or 'aws'}")
            return client
        except Exception as e:
            logger.error(f"Failed to create S3 client for {config.endpoint}: {e}")
            raise

    def _retry_operation(self, operation, max_retries: Optional[int] = None,
                         backoff_factor: Optional[float] = None):
        """
        Execute an operation with exponential backoff on transient failures.

        Permanent failures (object too large, client errors) are raised at once.

        Returns:
            Tuple of (operation result, attempts used)
        """
        max_retries = self.max_retries if max_retries is None else max(1, max_retries)
        backoff_factor = self.backoff_factor if backoff_factor is None else backoff_factor

        for attempt in range(max_retries):
            try:
                return operation(), attempt + 1
            except Exception as e:
                error = translate_error(e)
                if not error.transient:
                    _reraise(error, e)
                if attempt == max_retries - 1:
                    logger.error(f"Operation failed after {max_retries} attempts: {error}")
                    _reraise(error, e)

                wait_time = backoff_factor * (2 ** attempt)
                logger.warning(f"Operation failed (attempt {attempt + 1}/{max_retries}), "
                               f"retrying in {wait_time}s: {error}")
                time.sleep(wait_time)

    def put_object(self, key: str, body: BinaryIO, max_retries: Optional[int] = None) -> Dict[str, Any]:
        """
        Upload a stream as a single PutObject request.

        Args:
            key: Destination object key
            body: Seekable binary stream, rewound before every attempt

        Returns:
            Dict with the ETag and the number of attempts used

        Raises:
            ObjectTooLarge: If the store rejects the object size
            TransferError: On I/O or transport failure
        """
        bucket = self.config.bucket

        def _put_operation():
            body.seek(0)
            return self.client.put_object(Bucket=bucket, Key=key, Body=body)

        response, attempts = self._retry_operation(_put_operation, max_retries=max_retries)
        logger.debug(f"PutObject completed for key: {key} ({attempts} attempt(s))")
        return {
            'etag': str(response.get('ETag', '')).strip('"'),
            'attempts': attempts
        }

    def multipart_upload(self, key: str, body: BinaryIO, part_size: int, concurrency: int,
                         max_retries: Optional[int] = None) -> Dict[str, Any]:
        """
        Upload a stream in fixed-size parts under one multipart session.

        Args:
            key: Destination object key
            body: Seekable binary stream
            part_size: Size of each part in bytes
            concurrency: Maximum number of parts in flight

        Returns:
            Dict with the number of attempts used
        """
        bucket = self.config.bucket
        # Strategy is already decided; always open a multipart session, even below part_size.
        transfer_config = TransferConfig(
            multipart_threshold=1,
            multipart_chunksize=part_size,
            max_concurrency=concurrency,
            use_threads=concurrency > 1
        )

        def _upload_operation():
            body.seek(0)
            self.client.upload_fileobj(body, bucket, key, Config=transfer_config)

        _, attempts = self._retry_operation(_upload_operation, max_retries=max_retries)
        logger.debug(f"Multipart upload completed for key: {key} ({attempts} attempt(s))")
        return {'attempts': attempts}

    def get_object_metadata(self, key: str) -> Dict[str, Any]:
        """
        Get metadata for an object without downloading the content.

        Args:
            key: Object key in the bucket

        Returns:
            Dict containing object metadata
        """
        response = self.client.head_object(Bucket=self.config.bucket, Key=key)
        return {
            'size': response['ContentLength'],
            'last_modified': response.get('LastModified'),
            'etag': str(response.get('ETag', '')).strip('"'),
            'content_type': response.get('ContentType', 'binary/octet-stream')
        }

    def object_exists(self, key: str, timeout: Optional[float] = None) -> bool:
        """
        Check if an object exists, optionally waiting for it to appear.

        Args:
            key: Object key to check
            timeout: Seconds to wait for the object to become visible;
                None or 0 performs a single check

        Returns:
            bool: True if the object is visible, False otherwise
        """
        if not timeout:
            try:
                self.get_object_metadata(key)
                return True
            except ClientError as e:
                if e.response['Error']['Code'] in ('404', 'NoSuchKey', 'NotFound'):
                    return False
                raise

        delay = min(WAITER_DELAY, timeout)
        max_attempts = max(1, math.ceil(timeout / delay))
        waiter = self.client.get_waiter('object_exists')
        try:
            waiter.wait(
                Bucket=self.config.bucket,
                Key=key,
                WaiterConfig={'Delay': delay, 'MaxAttempts': max_attempts}
            )
            return True
        except WaiterError as e:
            logger.debug(f"Waiter gave up on key {key}: {e}")
            return False

    def test_connection(self) -> bool:
        """
        Test connection to the S3 service.

        Returns:
            bool: True if connection successful, False otherwise
        """
        try:
            self.client.head_bucket(Bucket=self.config.bucket)
            logger.info("S3 connection test successful")
            return True
        except Exception as e:
            logger.error(f"S3 connection test failed: {e}")
            return False
