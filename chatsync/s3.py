"""S3 artifact backend.

All boto3 calls are wrapped with ``asyncio.to_thread()`` to avoid blocking.
"""

from __future__ import annotations

import asyncio

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from .config import RetryConfig, S3Config
from .errors import ArtifactWriteError
from .models import ExtractedRecord
from .retry import with_write_retry
from .writer import ArtifactWriter, artifact_name

logger = structlog.get_logger()


class S3ArtifactWriter(ArtifactWriter):
    """Upload each rendered chat log as ``<prefix>/<sender>/<timestamp>.html``."""

    def __init__(self, config: S3Config, retry: RetryConfig | None = None) -> None:
        self._config = config
        self._client = None  # type: ignore[assignment]
        self._put = with_write_retry(
            retry or RetryConfig(),
            retryable_exceptions=(BotoCoreError, ClientError),
        )(self._put_once)

    async def start(self) -> None:
        """Create the boto3 S3 client."""
        kwargs: dict = {"region_name": self._config.region}
        if self._config.endpoint_url:
            kwargs["endpoint_url"] = self._config.endpoint_url
        self._client = await asyncio.to_thread(boto3.client, "s3", **kwargs)
        logger.info("s3_writer_started", bucket=self._config.bucket)

    async def stop(self) -> None:
        """Clean up the boto3 client."""
        self._client = None
        logger.info("s3_writer_stopped")

    async def write(self, record: ExtractedRecord) -> str:
        """Upload the rendered body.  Returns the ``s3://`` URI."""
        assert self._client is not None, "S3 client not started"
        key = _join_key(self._config.prefix, artifact_name(record))
        body = record.body.encode("utf-8")
        try:
            await self._put(key, body)
        except (BotoCoreError, ClientError) as exc:
            raise ArtifactWriteError(f"cannot upload s3://{self._config.bucket}/{key}: {exc}") from exc
        uri = f"s3://{self._config.bucket}/{key}"
        logger.debug("artifact_uploaded", uri=uri, size=len(body))
        return uri

    async def _put_once(self, key: str, body: bytes) -> None:
        await asyncio.to_thread(
            self._client.put_object,
            Bucket=self._config.bucket,
            Key=key,
            Body=body,
            ContentType="text/html; charset=utf-8",
        )


def _join_key(prefix: str, name: str) -> str:
    prefix = prefix.strip("/")
    return f"{prefix}/{name}" if prefix else name
