"""Server-side composition of an object from ranges of existing objects."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Mapping

from s3wire.errors import InvalidArgument
from s3wire.models import ObjectWriteResult
from s3wire.multipart import MultipartSession, object_headers
from s3wire.signer import uri_encode
from s3wire.validation import MAX_MULTIPART_COUNT, MAX_OBJECT_SIZE, MAX_PART_SIZE, MIN_PART_SIZE

if TYPE_CHECKING:
    from s3wire.client import S3Client

logger = logging.getLogger(__name__)


class ComposeSource:
    """A source object, or a byte range of one, for ``compose_object``.

    ``offset`` and ``length`` select a range; ``match_etag`` pins the copy
    to a specific object content and defaults to the ETag seen on stat.
    """

    def __init__(
        self,
        bucket: str,
        object_name: str,
        offset: int | None = None,
        length: int | None = None,
        version_id: str | None = None,
        match_etag: str | None = None,
    ) -> None:
        if offset is not None and offset < 0:
            raise InvalidArgument("offset should be zero or greater")
        if length is not None and length <= 0:
            raise InvalidArgument("length should be greater than zero")
        self.bucket = bucket
        self.object_name = object_name
        self.offset = offset
        self.length = length
        self.version_id = version_id
        self.match_etag = match_etag
        self.object_size: int | None = None
        self.headers: dict[str, str] = {}

    def __repr__(self) -> str:
        return f"ComposeSource({self.bucket}/{self.object_name}, offset={self.offset}, length={self.length})"

    def build_headers(self, object_size: int, etag: str | None) -> None:
        """Check the range against the stat result and build the copy headers."""
        if self.offset is not None and self.offset >= object_size:
            raise InvalidArgument(
                f"source {self.bucket}/{self.object_name}: offset {self.offset} "
                f"is beyond object size {object_size}"
            )
        if self.length is not None:
            if self.length > object_size:
                raise InvalidArgument(
                    f"source {self.bucket}/{self.object_name}: length {self.length} "
                    f"is beyond object size {object_size}"
                )
            if (self.offset or 0) + self.length > object_size:
                raise InvalidArgument(
                    f"source {self.bucket}/{self.object_name}: compose size "
                    f"{(self.offset or 0) + self.length} is beyond object size {object_size}"
                )

        copy_source = uri_encode(f"/{self.bucket}/{self.object_name}", encode_slash=False)
        if self.version_id:
            copy_source += f"?versionId={uri_encode(self.version_id)}"
        self.headers = {"x-amz-copy-source": copy_source}
        match_etag = self.match_etag or etag
        if match_etag:
            self.headers["x-amz-copy-source-if-match"] = match_etag
        self.object_size = object_size

    @property
    def size(self) -> int:
        """Number of bytes this source contributes."""
        if self.object_size is None:
            raise InvalidArgument(f"source {self.bucket}/{self.object_name} has not been stat'ed")
        if self.length is not None:
            return self.length
        return self.object_size - (self.offset or 0)


def calc_compose_part_count(client: S3Client, sources: list[ComposeSource]) -> int:
    """Stat every source and return the number of copy parts needed.

    Raises:
        InvalidArgument: If a source other than the last is below 5 MiB, the
            destination exceeds 5 TiB, or more than 10000 parts are needed.
    """
    if not sources:
        raise InvalidArgument("compose sources cannot be empty")

    object_size = 0
    part_count = 0
    for i, src in enumerate(sources, start=1):
        stat = client.stat_object(src.bucket, src.object_name, src.version_id)
        src.build_headers(stat.size, stat.etag)
        size = src.size
        is_last = len(sources) == 1 or i == len(sources)

        if size < MIN_PART_SIZE and not is_last:
            raise InvalidArgument(
                f"source {src.bucket}/{src.object_name}: size {size} must be greater than {MIN_PART_SIZE}"
            )

        object_size += size
        if object_size > MAX_OBJECT_SIZE:
            raise InvalidArgument(f"destination object size must be less than {MAX_OBJECT_SIZE}")

        if size > MAX_PART_SIZE:
            count, last_part_size = divmod(size, MAX_PART_SIZE)
            if last_part_size > 0:
                count += 1
            else:
                last_part_size = MAX_PART_SIZE
            if last_part_size < MIN_PART_SIZE and not is_last:
                raise InvalidArgument(
                    f"source {src.bucket}/{src.object_name}: for multipart split upload of "
                    f"{size}, last part size is less than {MIN_PART_SIZE}"
                )
            part_count += count
        else:
            part_count += 1

        if part_count > MAX_MULTIPART_COUNT:
            raise InvalidArgument(
                f"compose sources create more than allowed multipart count {MAX_MULTIPART_COUNT}"
            )
    return part_count


def compose_object(
    client: S3Client,
    bucket: str,
    object_name: str,
    sources: list[ComposeSource],
    metadata: Mapping[str, str] | None = None,
    headers: Mapping[str, str] | None = None,
) -> ObjectWriteResult:
    """Create an object from sources with one multipart upload of copy parts.

    Ranges use inclusive ends. A source larger than 5 GiB is copied in
    5 GiB ranges. Any failure aborts the upload before propagating.
    """
    part_count = calc_compose_part_count(client, sources)
    logger.info(
        "Composing %s/%s from %d sources in %d parts",
        bucket,
        object_name,
        len(sources),
        part_count,
    )

    with MultipartSession(client, bucket, object_name, object_headers(None, metadata, headers)) as session:
        for src in sources:
            size = src.size
            offset = src.offset or 0

            if size <= MAX_PART_SIZE:
                part_headers = dict(src.headers)
                if src.length is not None or src.offset is not None:
                    part_headers["x-amz-copy-source-range"] = f"bytes={offset}-{offset + size - 1}"
                session.upload_part_copy(part_headers)
                continue

            while size > 0:
                chunk = min(size, MAX_PART_SIZE)
                part_headers = dict(src.headers)
                part_headers["x-amz-copy-source-range"] = f"bytes={offset}-{offset + chunk - 1}"
                session.upload_part_copy(part_headers)
                offset += chunk
                size -= chunk

        return session.complete()
