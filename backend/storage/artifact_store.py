# storage/artifact_store.py
# ============================================================================
# RESCISAO CHECKOUT SERVICE — ARTIFACT STORE
# ============================================================================
# Rendered PDFs keyed by processor session id. Local directory by default,
# S3 bucket when ARTIFACT_BACKEND=s3.
# ============================================================================

import asyncio
import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import boto3
import structlog
from botocore.exceptions import ClientError

from pipeline.errors import NotFoundError
from pipeline.locks import KeyedLocks

logger = structlog.get_logger(component="artifact_store")

# Processor ids are alphanumerics plus '-' and '_' (MercadoPago preference ids
# look like "123456-abcd-...", Stripe sessions like "cs_test_...")
_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_\-]{0,199}$")


def validate_session_id(session_id: str) -> str:
    """Reject anything that could escape the artifact directory or bucket prefix."""
    if not isinstance(session_id, str) or not _SESSION_ID_RE.match(session_id):
        raise NotFoundError(str(session_id))
    return session_id


class IArtifactStore(ABC):
    """Session id -> immutable document bytes"""

    @abstractmethod
    async def exists(self, session_id: str) -> bool:
        pass

    @abstractmethod
    async def write(self, session_id: str, data: bytes) -> None:
        """Idempotent: a second write for the same session overwrites."""
        pass

    @abstractmethod
    async def read(self, session_id: str) -> bytes:
        """Raises NotFoundError when nothing was written for the session."""
        pass

    @abstractmethod
    async def delete_after_read(self, session_id: str) -> bool:
        pass


class LocalArtifactStore(IArtifactStore):
    """
    Artifacts as ``<directory>/<session_id>.pdf``.

    Writes go to a temp file in the same directory and are moved into place
    with ``os.replace``, so ``exists`` never observes a half-written file.
    """

    def __init__(self, directory: str | Path, suffix: str = ".pdf"):
        self.directory = Path(directory)
        self.suffix = suffix
        self._locks = KeyedLocks()
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, session_id: str) -> Path:
        return self.directory / f"{validate_session_id(session_id)}{self.suffix}"

    async def exists(self, session_id: str) -> bool:
        try:
            path = self.path_for(session_id)
        except NotFoundError:
            return False
        return path.is_file()

    async def write(self, session_id: str, data: bytes) -> None:
        path = self.path_for(session_id)
        async with self._locks.hold(session_id):
            await asyncio.to_thread(self._write_atomic, path, data)
        logger.info("artifact_written", session_id=session_id, size=len(data))

    def _write_atomic(self, path: Path, data: bytes) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=self.suffix)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    async def read(self, session_id: str) -> bytes:
        path = self.path_for(session_id)
        async with self._locks.hold(session_id):
            try:
                return await asyncio.to_thread(path.read_bytes)
            except FileNotFoundError:
                raise NotFoundError(session_id)

    async def delete_after_read(self, session_id: str) -> bool:
        path = self.path_for(session_id)
        async with self._locks.hold(session_id):
            try:
                path.unlink()
            except FileNotFoundError:
                return False
        logger.info("artifact_deleted", session_id=session_id)
        return True


class S3ArtifactStore(IArtifactStore):
    """Same contract on ``s3://<bucket>/<prefix><session_id>.pdf``."""

    def __init__(
        self,
        bucket: str,
        prefix: str = "artifacts/",
        region: str = "us-east-1",
        client=None,
        timeout: float = 10.0,
    ):
        self.bucket = bucket
        self.prefix = prefix
        self.timeout = timeout
        self._client = client or boto3.client("s3", region_name=region)

    def key_for(self, session_id: str) -> str:
        return f"{self.prefix}{validate_session_id(session_id)}.pdf"

    async def _call(self, fn, **kwargs):
        return await asyncio.wait_for(asyncio.to_thread(fn, **kwargs), timeout=self.timeout)

    @staticmethod
    def _is_missing(error: ClientError) -> bool:
        code = error.response.get("Error", {}).get("Code", "")
        return code in ("404", "NoSuchKey", "NotFound")

    async def exists(self, session_id: str) -> bool:
        try:
            key = self.key_for(session_id)
        except NotFoundError:
            return False
        try:
            await self._call(self._client.head_object, Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if self._is_missing(e):
                return False
            raise

    async def write(self, session_id: str, data: bytes) -> None:
        await self._call(
            self._client.put_object,
            Bucket=self.bucket,
            Key=self.key_for(session_id),
            Body=data,
            ContentType="application/pdf",
        )
        logger.info("artifact_written", session_id=session_id, size=len(data), backend="s3")

    async def read(self, session_id: str) -> bytes:
        try:
            response = await self._call(
                self._client.get_object,
                Bucket=self.bucket,
                Key=self.key_for(session_id),
            )
        except ClientError as e:
            if self._is_missing(e):
                raise NotFoundError(session_id)
            raise
        return await asyncio.to_thread(response["Body"].read)

    async def delete_after_read(self, session_id: str) -> bool:
        if not await self.exists(session_id):
            return False
        await self._call(
            self._client.delete_object,
            Bucket=self.bucket,
            Key=self.key_for(session_id),
        )
        logger.info("artifact_deleted", session_id=session_id, backend="s3")
        return True


def build_artifact_store(config) -> IArtifactStore:
    if config.artifact_backend == "s3":
        return S3ArtifactStore(
            bucket=config.s3_bucket,
            prefix=config.s3_prefix,
            region=config.aws_region,
        )
    return LocalArtifactStore(config.artifact_dir)
