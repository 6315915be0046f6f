"""Blob storage helpers for uploaded invoice files and exports."""
import logging
import uuid
from typing import Tuple

import boto3
from botocore.config import Config

from shared.config import settings, s3_client, ensure_s3_bucket

logger = logging.getLogger(__name__)


def parse_s3_url(s3_url: str) -> Tuple[str, str]:
    """Split an s3://bucket/key url into (bucket, key)."""
    if not s3_url or not s3_url.startswith('s3://'):
        raise ValueError(f"Not an S3 url: {s3_url}")
    bucket = s3_url.split('/')[2]
    key = '/'.join(s3_url.split('/')[3:])
    return bucket, key


def build_object_key(prefix: str, filename: str) -> str:
    """Build a unique object key that keeps the original filename readable."""
    safe_name = filename.replace('/', '_').replace(' ', '_')
    return f"{prefix}/{uuid.uuid4().hex}-{safe_name}"


def upload_bytes(data: bytes, key: str, content_type: str = "application/octet-stream") -> str:
    """Store bytes in the upload bucket and return the s3:// url."""
    ensure_s3_bucket()
    s3_client.put_object(
        Bucket=settings.s3_bucket,
        Key=key,
        Body=data,
        ContentType=content_type
    )
    logger.info(f"Stored {len(data)} bytes at s3://{settings.s3_bucket}/{key}")
    return f"s3://{settings.s3_bucket}/{key}"


def read_object(s3_url: str) -> bytes:
    """Download an object by its s3:// url."""
    bucket, key = parse_s3_url(s3_url)
    response = s3_client.get_object(Bucket=bucket, Key=key)
    return response['Body'].read()


def get_presigned_url(s3_path: str, expires_in: int = 3600) -> str:
    """Generate presigned URL for S3 object, using localhost endpoint for browser access.

    For MinIO running in docker, the internal hostname is rewritten so the
    url works from outside the compose network.
    """
    if not s3_path or not s3_path.startswith('s3://'):
        return ""

    try:
        bucket, key = parse_s3_url(s3_path)
        endpoint_url = settings.s3_endpoint_url

        client = s3_client
        if endpoint_url and 'minio:9000' in endpoint_url:
            client = boto3.client(
                's3',
                endpoint_url=endpoint_url.replace('minio:9000', 'localhost:9000'),
                aws_access_key_id=settings.s3_access_key,
                aws_secret_access_key=settings.s3_secret_key,
                config=Config(signature_version='s3v4')
            )

        return client.generate_presigned_url(
            'get_object',
            Params={'Bucket': bucket, 'Key': key},
            ExpiresIn=expires_in
        )
    except Exception as e:
        logger.error(f"Error generating presigned URL: {e}")
        return ""
