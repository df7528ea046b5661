"""Storage service adapter for a file upload/download façade.

Binds an ``S3Client`` to one bucket and exposes the handful of operations
a façade needs. Failures are captured into ``FileOpResponse`` instead of
being raised.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, BinaryIO, Callable

import httpx

from s3wire.client import S3Client
from s3wire.config import AppConfig
from s3wire.errors import S3Error, S3WireError
from s3wire.models import Part
from s3wire.multipart import DEFAULT_CONTENT_TYPE, object_headers

logger = logging.getLogger(__name__)


@dataclass
class FileOpResponse:
    """Uniform result of a storage service operation."""

    success: bool
    status: int | None = None
    code: str | None = None
    message: str | None = None
    url: str | None = None
    upload_id: str | None = None
    object_key: str | None = None
    etag: str | None = None
    request_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def parse_etags(etags: str) -> list[Part]:
    """Turn a comma-separated ETag list into parts numbered 1..N."""
    if not etags:
        return []
    return [Part(i, etag.strip()) for i, etag in enumerate(etags.split(","), start=1)]


def _failure(exc: Exception, object_key: str, upload_id: str | None = None) -> FileOpResponse:
    if isinstance(exc, S3Error):
        return FileOpResponse(
            success=False,
            status=exc.http_status or 500,
            code=exc.code,
            message=exc.message or str(exc),
            upload_id=upload_id,
            object_key=object_key,
            request_id=exc.request_id,
        )
    return FileOpResponse(
        success=False,
        status=500,
        code="500",
        message=str(exc),
        upload_id=upload_id,
        object_key=object_key,
    )


class StorageService:
    """Object storage operations on a single bucket.

    Args:
        client: Client used for uploads, deletes and internal URLs.
        bucket: Bucket every key lives in.
        presign_client: Client whose endpoint is reachable by end users;
            presigned URLs for ``preview`` are signed against it. Defaults
            to ``client``.
    """

    def __init__(self, client: S3Client, bucket: str, presign_client: S3Client | None = None) -> None:
        self.client = client
        self.bucket = bucket
        self.presign_client = presign_client or client

    @classmethod
    def from_config(cls, config: AppConfig) -> StorageService:
        """Build the service from an AppConfig, with a second client for the
        public endpoint when one is configured."""
        client = S3Client(config.client)
        presign_client = None
        if config.service.public_endpoint:
            presign_client = S3Client(
                config.client.model_copy(update={"endpoint": config.service.public_endpoint})
            )
        return cls(client, config.service.bucket, presign_client)

    def close(self) -> None:
        self.client.close()
        if self.presign_client is not self.client:
            self.presign_client.close()

    def _run(
        self,
        op: str,
        object_key: str,
        call: Callable[[], FileOpResponse],
        upload_id: str | None = None,
    ) -> FileOpResponse:
        try:
            response = call()
        except (S3WireError, httpx.HTTPError) as exc:
            logger.error(
                "%s of %s failed: %s",
                op,
                object_key,
                exc,
                extra={"bucket": self.bucket, "object": object_key},
            )
            response = _failure(exc, object_key, upload_id)
        logger.info("%s object. response: %s", op, response)
        return response

    def put(self, stream: BinaryIO, key: str, size: int) -> FileOpResponse:
        """Upload ``size`` bytes from ``stream``; -1 means unknown length."""

        def call() -> FileOpResponse:
            part_size = 0 if size >= 0 else 5 * 1024 * 1024
            result = self.client.put_object(self.bucket, key, stream, size, part_size)
            return FileOpResponse(True, 200, "200", "", "", "", key, result.etag, None)

        return self._run("PUT", key, call)

    def init(self, key: str) -> str:
        """Initiate a multipart upload of ``key`` and return its upload id.

        Unlike the other operations this raises on failure, as there is no
        upload id to report.
        """
        upload_id = self.client.create_multipart_upload(
            self.bucket, key, object_headers(DEFAULT_CONTENT_TYPE)
        )
        logger.info("init uploadId: %s", upload_id)
        return upload_id

    def part(
        self, stream: BinaryIO, key: str, upload_id: str, part_number: int, size: int
    ) -> FileOpResponse:
        def call() -> FileOpResponse:
            etag = self.client.upload_part(self.bucket, key, stream, size, upload_id, part_number)
            return FileOpResponse(True, 200, "200", "", "", upload_id, key, etag)

        return self._run("Upload part", key, call, upload_id)

    def complete(
        self, upload_id: str, key: str, size: int | None = None, md5: str | None = None, etags: str = ""
    ) -> FileOpResponse:
        """Complete an upload from the comma-separated ETags of its parts, in order.

        ``size`` and ``md5`` are accepted for interface compatibility and
        not checked.
        """

        def call() -> FileOpResponse:
            result = self.client.complete_multipart_upload(self.bucket, key, upload_id, parse_etags(etags))
            return FileOpResponse(True, 200, "200", "", "", upload_id, key, result.etag)

        return self._run("CompleteMultipartUpload", key, call, upload_id)

    def _preview(self, client: S3Client, key: str, exp_time: int) -> FileOpResponse:
        def call() -> FileOpResponse:
            expires = int(exp_time - time.time())
            url = client.presigned_get_object(self.bucket, key, expires)
            return FileOpResponse(True, url=url, object_key=key)

        return self._run("Preview", key, call)

    def preview(self, key: str, exp_time: int) -> FileOpResponse:
        """Return a presigned GET URL for end users, valid until epoch second ``exp_time``."""
        return self._preview(self.presign_client, key, exp_time)

    def preview_internal(self, key: str, exp_time: int) -> FileOpResponse:
        """Like ``preview`` but signed against the internal endpoint."""
        return self._preview(self.client, key, exp_time)

    def download(self, key: str, file_name: str, exp_time: int) -> FileOpResponse:
        return self.preview(key, exp_time)

    def download_internal(self, key: str, file_name: str, exp_time: int) -> FileOpResponse:
        return self.preview_internal(key, exp_time)

    def delete(self, key: str) -> FileOpResponse:
        def call() -> FileOpResponse:
            self.client.remove_object(self.bucket, key)
            return FileOpResponse(True, 200, "200", "", "", "", key)

        return self._run("Delete", key, call)
