"""Sync configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings

_SEQUENCE_RANGE = re.compile(r"([1-9]\d*|\*)(:([1-9]\d*|\*))?")


class ImapConfig(BaseSettings):
    """IMAP server connection settings."""

    model_config = {"env_prefix": "IMAP_"}

    host: str = Field(description="IMAP server hostname")
    port: int = Field(default=993, description="IMAP server port")
    use_ssl: bool = Field(default=True, description="Use SSL/TLS connection")
    username: str = Field(description="IMAP login username")
    password: SecretStr = Field(description="IMAP login password")
    mailbox: str = Field(default="[Gmail]/Chats", description="Mailbox holding the chat logs")
    timeout_seconds: float = Field(
        default=30.0,
        description="Socket timeout for IMAP commands, including logout",
    )


class SyncConfig(BaseSettings):
    """Fetch range, concurrency and output settings for a run."""

    model_config = {"env_prefix": "SYNC_"}

    sequence_range: str = Field(
        default="1:*",
        description="IMAP sequence range to fetch, e.g. 10:20 or 1:*",
    )
    fetch_batch_size: int = Field(
        default=50,
        gt=0,
        description="Messages requested per FETCH round trip",
    )
    max_concurrency: int = Field(
        default=16,
        gt=0,
        description="Maximum messages extracted and written at the same time",
    )
    task_timeout_seconds: float | None = Field(
        default=60.0,
        description="Per-message extract+write timeout (None disables it)",
    )
    max_body_bytes: int = Field(
        default=10 * 1024 * 1024,
        gt=0,
        description="Largest rendered body accepted, in bytes",
    )
    output_dir: Path = Field(
        default=Path("."),
        description="Root directory for filesystem artifacts",
    )
    artifact_backend: Literal["filesystem", "s3"] = Field(
        default="filesystem",
        description="Where artifacts are written",
    )

    @field_validator("sequence_range")
    @classmethod
    def _check_sequence_range(cls, value: str) -> str:
        value = value.strip()
        if not _SEQUENCE_RANGE.fullmatch(value):
            raise ValueError(f"expected N, N:M, N:* or *, got {value!r}")
        return value


class S3Config(BaseSettings):
    """S3 settings for the optional artifact backend."""

    model_config = {"env_prefix": "S3_"}

    bucket: str = Field(default="", description="S3 bucket name")
    prefix: str = Field(default="chat-logs", description="S3 key prefix for artifacts")
    region: str = Field(default="us-east-1", description="AWS region")
    endpoint_url: str | None = Field(
        default=None,
        description="Custom S3 endpoint URL (e.g. for MinIO)",
    )


class RetryConfig(BaseSettings):
    """Retry / backoff settings for artifact writes, driven by Tenacity."""

    model_config = {"env_prefix": "WRITE_RETRY_"}

    max_attempts: int = Field(default=3, gt=0, description="Maximum attempts per artifact write")
    initial_wait_seconds: float = Field(default=0.1, description="Initial backoff wait in seconds")
    max_wait_seconds: float = Field(default=2.0, description="Maximum backoff wait in seconds")
    multiplier: float = Field(default=2.0, description="Exponential backoff multiplier")


class LoggingConfig(BaseSettings):
    """Log renderer and level for the process."""

    model_config = {"env_prefix": "LOG_"}

    json_output: bool = Field(default=True, description="Emit JSON lines instead of console output")
    level: str = Field(default="INFO", description="Root log level name")


class ChatSyncConfig(BaseSettings):
    """Root configuration for a sync run.

    Nested configs are populated from their own env-var prefixes.
    """

    imap: ImapConfig = Field(default_factory=ImapConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    s3: S3Config = Field(default_factory=S3Config)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def _check_backend(self) -> ChatSyncConfig:
        if self.sync.artifact_backend == "s3" and not self.s3.bucket:
            raise ValueError("S3_BUCKET must be set when SYNC_ARTIFACT_BACKEND=s3")
        return self
