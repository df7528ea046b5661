"""Multipart upload: part sizing, the upload session and put_object.

An upload that fails part-way is aborted exactly once before the error
propagates, so the service never keeps parts of a failed upload.
"""

from __future__ import annotations

import io
import logging
import math
import mimetypes
import os
from typing import TYPE_CHECKING, Any, BinaryIO, Iterator, Mapping

import httpx

from s3wire.errors import InvalidArgument, S3WireError
from s3wire.listing import UploadsIterator
from s3wire.models import ObjectWriteResult, Part
from s3wire.validation import (
    MAX_MULTIPART_COUNT,
    MAX_OBJECT_SIZE,
    MIN_PART_SIZE,
    check_data_type,
    validate_part_size,
)

if TYPE_CHECKING:
    from s3wire.client import S3Client

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Request headers passed through as-is; anything else in ``metadata`` is
# sent as user metadata.
_STANDARD_HEADERS = {
    "cache-control",
    "content-disposition",
    "content-encoding",
    "content-language",
    "content-type",
    "expires",
}


def read_exact(stream: BinaryIO, size: int) -> bytes:
    """Read ``size`` bytes from ``stream``, fewer only at end of stream."""
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def calc_part_info(object_size: int, part_size: int) -> tuple[int, int]:
    """Return ``(part_size, part_count)`` for an upload.

    An ``object_size`` of -1 means unknown; the part count is then -1 and
    ``part_size`` must be given. A ``part_size`` of 0 picks the smallest
    multiple of 5 MiB that fits the object in 10000 parts.

    Raises:
        InvalidArgument: On a missing or out-of-range size.
    """
    if part_size > 0:
        validate_part_size(part_size)

    if object_size < 0:
        if part_size <= 0:
            raise InvalidArgument("valid part size must be provided when object size is unknown")
        return part_size, -1

    if object_size > MAX_OBJECT_SIZE:
        raise InvalidArgument(f"object size {object_size} is not supported; maximum allowed 5TiB")

    if part_size <= 0:
        psize = math.ceil(object_size / MAX_MULTIPART_COUNT)
        part_size = math.ceil(psize / MIN_PART_SIZE) * MIN_PART_SIZE

    if part_size > object_size:
        part_size = object_size

    part_count = math.ceil(object_size / part_size) if part_size > 0 else 1
    if part_count > MAX_MULTIPART_COUNT:
        raise InvalidArgument(
            f"object size {object_size} and part size {part_size} make more than "
            f"{MAX_MULTIPART_COUNT} parts for upload"
        )
    return part_size, part_count


def object_headers(
    content_type: str | None = None,
    metadata: Mapping[str, str] | None = None,
    headers: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Merge user metadata, extra headers and the content type of a new object."""
    result: dict[str, str] = {}
    for key, value in (metadata or {}).items():
        lower = key.lower()
        if lower.startswith("x-amz-") or lower in _STANDARD_HEADERS:
            result[key] = value
        else:
            result[f"x-amz-meta-{key}"] = value
    result.update(headers or {})
    if content_type and not any(k.lower() == "content-type" for k in result):
        result["Content-Type"] = content_type
    return result


class MultipartSession:
    """One multipart upload, initiated on enter.

    Parts are numbered in upload order starting at 1. Leaving the ``with``
    block on an exception before ``complete()`` succeeded aborts the upload;
    a failing abort is logged and the original exception propagates.

    Usage::

        with MultipartSession(client, "bucket", "key") as session:
            session.upload_part(chunk, len(chunk))
            result = session.complete()
    """

    def __init__(
        self,
        client: S3Client,
        bucket: str,
        object_name: str,
        headers: Mapping[str, str] | None = None,
        region: str | None = None,
    ) -> None:
        self._client = client
        self.bucket = bucket
        self.object_name = object_name
        self._headers = headers
        self._region = region
        self.upload_id: str | None = None
        self.parts: list[Part] = []
        self._completed = False

    def __enter__(self) -> MultipartSession:
        self.upload_id = self._client.create_multipart_upload(
            self.bucket, self.object_name, self._headers, self._region
        )
        logger.debug(
            "Initiated multipart upload %s of %s/%s",
            self.upload_id,
            self.bucket,
            self.object_name,
            extra={"bucket": self.bucket, "object": self.object_name},
        )
        return self

    def upload_part(self, data: Any, length: int) -> Part:
        etag = self._client.upload_part(
            self.bucket,
            self.object_name,
            data,
            length,
            self.upload_id,  # type: ignore[arg-type]
            len(self.parts) + 1,
        )
        part = Part(len(self.parts) + 1, etag, length)
        self.parts.append(part)
        return part

    def upload_part_copy(self, headers: Mapping[str, str]) -> Part:
        etag = self._client.upload_part_copy(
            self.bucket,
            self.object_name,
            self.upload_id,  # type: ignore[arg-type]
            len(self.parts) + 1,
            headers,
        )
        part = Part(len(self.parts) + 1, etag)
        self.parts.append(part)
        return part

    def complete(self) -> ObjectWriteResult:
        result = self._client.complete_multipart_upload(
            self.bucket,
            self.object_name,
            self.upload_id,  # type: ignore[arg-type]
            self.parts,
            region=self._region,
        )
        self._completed = True
        return result

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None or self.upload_id is None or self._completed:
            return False
        try:
            self._client.abort_multipart_upload(self.bucket, self.object_name, self.upload_id)
        except (S3WireError, httpx.HTTPError):
            logger.warning(
                "Failed to abort multipart upload %s of %s/%s",
                self.upload_id,
                self.bucket,
                self.object_name,
                exc_info=True,
            )
        return False


class _PartReader:
    """Splits a stream into upload parts.

    With a known length the last part takes the remainder. With an unknown
    length each read asks for one byte more than a part; getting it means
    another part follows, and the extra byte is carried into the next part.
    """

    def __init__(self, stream: BinaryIO, length: int, part_size: int, part_count: int) -> None:
        self._stream = stream
        self._length = length
        self._part_size = part_size
        self._part_count = part_count
        self._carry = b""

    def _read(self, size: int) -> bytes:
        data = self._carry + read_exact(self._stream, size - len(self._carry))
        self._carry = b""
        return data

    def __iter__(self) -> Iterator[tuple[int, bytes, bool]]:
        part_number = 1
        uploaded = 0
        while True:
            if self._part_count > 0:
                is_last = part_number == self._part_count
                size = self._length - uploaded if is_last else self._part_size
                data = self._read(size)
                if len(data) < size:
                    raise InvalidArgument(
                        f"insufficient data; expected {self._length} bytes, got {uploaded + len(data)}"
                    )
            else:
                data = self._read(self._part_size + 1)
                is_last = len(data) <= self._part_size
                if not is_last:
                    self._carry = data[self._part_size:]
                    data = data[: self._part_size]

            yield part_number, data, is_last
            if is_last:
                return
            uploaded += len(data)
            part_number += 1


def put_object(
    client: S3Client,
    bucket: str,
    object_name: str,
    data: Any,
    length: int = -1,
    part_size: int = 0,
    content_type: str | None = DEFAULT_CONTENT_TYPE,
    metadata: Mapping[str, str] | None = None,
    headers: Mapping[str, str] | None = None,
) -> ObjectWriteResult:
    """Upload ``data`` with a single PUT, or as a multipart upload when it
    spans more than one part."""
    check_data_type(data)
    if isinstance(data, str):
        data = data.encode("utf-8")
    if isinstance(data, (bytes, bytearray, memoryview)):
        if length < 0:
            length = len(data)
        data = io.BytesIO(bytes(data))

    part_size, part_count = calc_part_info(length, part_size)
    request_headers = object_headers(content_type or DEFAULT_CONTENT_TYPE, metadata, headers)

    parts = iter(_PartReader(data, length, part_size, part_count))
    _, chunk, is_last = next(parts)
    if is_last:
        return client._put_object(bucket, object_name, chunk, len(chunk), request_headers)

    with MultipartSession(client, bucket, object_name, request_headers) as session:
        session.upload_part(chunk, len(chunk))
        for _, chunk, _ in parts:
            session.upload_part(chunk, len(chunk))
        return session.complete()


def upload_object(
    client: S3Client,
    bucket: str,
    object_name: str,
    file_path: str,
    content_type: str | None = None,
    part_size: int = 0,
    metadata: Mapping[str, str] | None = None,
    headers: Mapping[str, str] | None = None,
) -> ObjectWriteResult:
    """Upload a local file; the content type is guessed from its name when not given."""
    if not os.path.isfile(file_path):
        raise InvalidArgument(f"{file_path}: not a regular file")
    if content_type is None:
        content_type = mimetypes.guess_type(file_path)[0] or DEFAULT_CONTENT_TYPE
    size = os.path.getsize(file_path)
    with open(file_path, "rb") as fh:
        return put_object(
            client, bucket, object_name, fh, size, part_size, content_type, metadata, headers
        )


def remove_incomplete_upload(client: S3Client, bucket: str, object_name: str) -> None:
    """Abort every incomplete upload of ``object_name``."""
    uploads = UploadsIterator(client, bucket, prefix=object_name, aggregate_part_size=False)
    for result in uploads:
        upload = result.get()
        if upload.object_name == object_name:
            client.abort_multipart_upload(bucket, object_name, upload.upload_id)
