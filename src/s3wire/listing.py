"""Lazy paginated iterators over S3 listings.

Every iterator yields ``ListResult`` values. A page-fetch failure is
yielded once as an error result and ends the iteration; the iterator
protocol itself never raises anything but ``StopIteration``.
"""

from __future__ import annotations

import json
import logging
import xml.etree.ElementTree as ET
from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar

import httpx

from s3wire.errors import ResponseFormatError, S3WireError
from s3wire.models import ListPage, Object, Part, Upload
from s3wire.xml_utils import findbool, findtext, parse_xml, url_decode

if TYPE_CHECKING:
    from s3wire.client import S3Client

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_KEYS = 1000

# Errors a page fetch can fail with; anything else is a bug and propagates.
_FETCH_ERRORS = (S3WireError, httpx.HTTPError)


class ListResult(Generic[T]):
    """Either a listed item or the error that ended the listing."""

    __slots__ = ("item", "error")

    def __init__(self, item: T | None = None, error: BaseException | None = None) -> None:
        self.item = item
        self.error = error

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def get(self) -> T:
        """Return the item, or raise the captured error."""
        if self.error is not None:
            raise self.error
        return self.item  # type: ignore[return-value]

    def __repr__(self) -> str:
        if self.error is not None:
            return f"ListResult(error={self.error!r})"
        return f"ListResult(item={self.item!r})"


class PageIterator(Generic[T]):
    """Pull-based cursor over a sequence of listing pages.

    State: the current page, the cursor index into its items and a done
    flag. Subclasses implement ``_fetch`` (one request) and may override
    ``_page_items``.
    """

    def __init__(self) -> None:
        self._page: ListPage | None = None
        self._items: list = []
        self._index = 0
        self._done = False

    def __iter__(self) -> PageIterator[T]:
        return self

    def __next__(self) -> ListResult[T]:
        while not self._done:
            if self._index < len(self._items):
                item = self._items[self._index]
                self._index += 1
                return ListResult(item)

            if self._page is not None and not self._page.is_truncated:
                break

            try:
                self._page = self._fetch(self._page)
            except _FETCH_ERRORS as exc:
                logger.debug("Listing stopped on error: %s", exc)
                self._done = True
                return ListResult(error=exc)
            self._items = self._page_items(self._page)
            self._index = 0

        self._done = True
        raise StopIteration

    def _page_items(self, page: ListPage) -> list:
        return page.items

    def _fetch(self, previous: ListPage | None) -> ListPage:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Page parsing
# ---------------------------------------------------------------------------


def _truncated(root: ET.Element, next_marker: str | None) -> bool:
    # A truncated page without a marker cannot be continued.
    return findbool(root, "IsTruncated") and bool(next_marker)


def parse_objects_page(root: ET.Element, bucket: str, use_api_v1: bool = False) -> ListPage:
    """Parse a ListBucketResult (v1 or v2) document."""
    encoding_type = findtext(root, "EncodingType")
    objects = [Object.from_xml(e, bucket, encoding_type) for e in root.findall("Contents")]
    prefixes = [Object.from_prefix(e, bucket, encoding_type) for e in root.findall("CommonPrefixes")]

    if use_api_v1:
        next_marker = url_decode(findtext(root, "NextMarker"), encoding_type)
        if not next_marker:
            # Without a delimiter the service omits NextMarker; resume after
            # the last key seen.
            last = objects[-1] if objects else (prefixes[-1] if prefixes else None)
            next_marker = last.object_name if last else None
    else:
        next_marker = findtext(root, "NextContinuationToken")

    return ListPage(
        items=objects,
        prefixes=prefixes,
        is_truncated=_truncated(root, next_marker),
        next_marker=next_marker,
    )


def parse_versions_page(root: ET.Element, bucket: str) -> ListPage:
    """Parse a ListVersionsResult document."""
    encoding_type = findtext(root, "EncodingType")
    next_key_marker = url_decode(findtext(root, "NextKeyMarker"), encoding_type)
    return ListPage(
        items=[Object.from_xml(e, bucket, encoding_type) for e in root.findall("Version")],
        delete_markers=[
            Object.from_xml(e, bucket, encoding_type, is_delete_marker=True)
            for e in root.findall("DeleteMarker")
        ],
        prefixes=[Object.from_prefix(e, bucket, encoding_type) for e in root.findall("CommonPrefixes")],
        is_truncated=_truncated(root, next_key_marker),
        next_marker=next_key_marker,
        next_id_marker=findtext(root, "NextVersionIdMarker"),
    )


def parse_uploads_page(root: ET.Element, bucket: str) -> ListPage:
    """Parse a ListMultipartUploadsResult document."""
    encoding_type = findtext(root, "EncodingType")
    next_key_marker = url_decode(findtext(root, "NextKeyMarker"), encoding_type)
    return ListPage(
        items=[Upload.from_xml(e, bucket, encoding_type) for e in root.findall("Upload")],
        prefixes=[Object.from_prefix(e, bucket, encoding_type) for e in root.findall("CommonPrefixes")],
        is_truncated=_truncated(root, next_key_marker),
        next_marker=next_key_marker,
        next_id_marker=findtext(root, "NextUploadIdMarker"),
    )


def parse_parts_page(root: ET.Element) -> ListPage:
    """Parse a ListPartsResult document."""
    next_part_number_marker = findtext(root, "NextPartNumberMarker")
    return ListPage(
        items=[Part.from_xml(e) for e in root.findall("Part")],
        is_truncated=_truncated(root, next_part_number_marker),
        next_marker=next_part_number_marker,
    )


def _parse_page(response: httpx.Response, parse: Callable[..., ListPage], *args: Any) -> ListPage:
    """Parse one listing response; a malformed field is a ResponseFormatError."""
    content_type = response.headers.get("content-type")
    root = parse_xml(response.content, response.status_code, content_type)
    try:
        return parse(root, *args)
    except ValueError as exc:
        raise ResponseFormatError(
            response.status_code, content_type, response.text, reason=f"malformed listing: {exc}"
        ) from exc


def _common_query(
    delimiter: str | None, use_url_encoding_type: bool, max_keys: int, prefix: str | None
) -> dict[str, Any]:
    query: dict[str, Any] = {"delimiter": delimiter or ""}
    if use_url_encoding_type:
        query["encoding-type"] = "url"
    query["max-keys"] = str(max_keys if max_keys > 0 else DEFAULT_MAX_KEYS)
    query["prefix"] = prefix or ""
    return query


# ---------------------------------------------------------------------------
# Iterators
# ---------------------------------------------------------------------------


class _ObjectListing(PageIterator[Object]):
    """Shared state of the object, version and prefix listings."""

    def __init__(
        self,
        client: S3Client,
        bucket: str,
        prefix: str | None = None,
        delimiter: str | None = None,
        use_url_encoding_type: bool = True,
        max_keys: int = DEFAULT_MAX_KEYS,
    ) -> None:
        super().__init__()
        self._client = client
        self._bucket = bucket
        self._prefix = prefix
        self._delimiter = delimiter
        self._use_url_encoding_type = use_url_encoding_type
        self._max_keys = max_keys

    def _page_items(self, page: ListPage) -> list:
        return page.items + page.delete_markers + page.prefixes

    def _get(self, query: dict[str, Any]) -> httpx.Response:
        return self._client._execute("GET", self._bucket, query=query)


class ObjectsV2Iterator(_ObjectListing):
    """ListObjectsV2 pages, continued by continuation token."""

    def __init__(
        self,
        client: S3Client,
        bucket: str,
        prefix: str | None = None,
        delimiter: str | None = None,
        use_url_encoding_type: bool = True,
        max_keys: int = DEFAULT_MAX_KEYS,
        start_after: str | None = None,
        fetch_owner: bool = False,
        include_user_meta: bool = False,
    ) -> None:
        super().__init__(client, bucket, prefix, delimiter, use_url_encoding_type, max_keys)
        self._start_after = start_after
        self._fetch_owner = fetch_owner
        self._include_user_meta = include_user_meta

    def _fetch(self, previous: ListPage | None) -> ListPage:
        query = _common_query(self._delimiter, self._use_url_encoding_type, self._max_keys, self._prefix)
        query["list-type"] = "2"
        if previous is not None and previous.next_marker:
            query["continuation-token"] = previous.next_marker
        if self._fetch_owner:
            query["fetch-owner"] = "true"
        if self._start_after:
            query["start-after"] = self._start_after
        if self._include_user_meta:
            query["metadata"] = "true"
        return _parse_page(self._get(query), parse_objects_page, self._bucket)


class ObjectsV1Iterator(_ObjectListing):
    """ListObjects (v1) pages, continued by marker."""

    def __init__(
        self,
        client: S3Client,
        bucket: str,
        prefix: str | None = None,
        delimiter: str | None = None,
        use_url_encoding_type: bool = True,
        max_keys: int = DEFAULT_MAX_KEYS,
        marker: str | None = None,
    ) -> None:
        super().__init__(client, bucket, prefix, delimiter, use_url_encoding_type, max_keys)
        self._marker = marker

    def _fetch(self, previous: ListPage | None) -> ListPage:
        query = _common_query(self._delimiter, self._use_url_encoding_type, self._max_keys, self._prefix)
        marker = previous.next_marker if previous is not None else self._marker
        if marker:
            query["marker"] = marker
        return _parse_page(self._get(query), parse_objects_page, self._bucket, True)


class VersionsIterator(_ObjectListing):
    """ListObjectVersions pages, continued by key and version id markers."""

    def __init__(
        self,
        client: S3Client,
        bucket: str,
        prefix: str | None = None,
        delimiter: str | None = None,
        use_url_encoding_type: bool = True,
        max_keys: int = DEFAULT_MAX_KEYS,
        start_after: str | None = None,
    ) -> None:
        super().__init__(client, bucket, prefix, delimiter, use_url_encoding_type, max_keys)
        self._start_after = start_after

    def _fetch(self, previous: ListPage | None) -> ListPage:
        query = _common_query(self._delimiter, self._use_url_encoding_type, self._max_keys, self._prefix)
        if previous is not None:
            query["key-marker"] = previous.next_marker
            if previous.next_id_marker:
                query["version-id-marker"] = previous.next_id_marker
        elif self._start_after:
            query["key-marker"] = self._start_after
        query["versions"] = ""
        return _parse_page(self._get(query), parse_versions_page, self._bucket)


class PartsIterator(PageIterator[Part]):
    """ListParts pages of one upload, continued by part number marker."""

    def __init__(
        self, client: S3Client, bucket: str, object_name: str, upload_id: str, max_parts: int | None = None
    ) -> None:
        super().__init__()
        self._client = client
        self._bucket = bucket
        self._object_name = object_name
        self._upload_id = upload_id
        self._max_parts = max_parts

    def _fetch(self, previous: ListPage | None) -> ListPage:
        query: dict[str, Any] = {"uploadId": self._upload_id}
        if self._max_parts:
            query["max-parts"] = str(self._max_parts)
        if previous is not None:
            query["part-number-marker"] = previous.next_marker
        response = self._client._execute("GET", self._bucket, self._object_name, query=query)
        return _parse_page(response, parse_parts_page)


def aggregate_part_size(client: S3Client, upload: Upload) -> int:
    """Sum the sizes of an upload's parts; -1 when listing them fails."""
    total = 0
    for result in PartsIterator(client, upload.bucket, upload.object_name, upload.upload_id):
        if result.is_error:
            return -1
        total += result.get().size
    return total


class UploadsIterator(PageIterator[Upload]):
    """ListMultipartUploads pages, continued by key and upload id markers.

    Keys are always requested URL-encoded. With ``aggregate_part_size``
    each upload's ``size`` is filled from its part listing.
    """

    def __init__(
        self,
        client: S3Client,
        bucket: str,
        prefix: str | None = None,
        delimiter: str | None = None,
        max_uploads: int | None = None,
        aggregate_part_size: bool = True,
    ) -> None:
        super().__init__()
        self._client = client
        self._bucket = bucket
        self._prefix = prefix
        self._delimiter = delimiter
        self._max_uploads = max_uploads
        self._aggregate = aggregate_part_size

    def _fetch(self, previous: ListPage | None) -> ListPage:
        query: dict[str, Any] = {"uploads": "", "delimiter": self._delimiter or ""}
        if previous is not None:
            query["key-marker"] = previous.next_marker
        if self._max_uploads:
            query["max-uploads"] = str(self._max_uploads)
        query["prefix"] = self._prefix or ""
        if previous is not None and previous.next_id_marker:
            query["upload-id-marker"] = previous.next_id_marker
        query["encoding-type"] = "url"

        response = self._client._execute("GET", self._bucket, query=query)
        page = _parse_page(response, parse_uploads_page, self._bucket)
        if self._aggregate:
            for upload in page.items:
                upload.size = aggregate_part_size(self._client, upload)
        return page


# ---------------------------------------------------------------------------
# Bucket notification stream
# ---------------------------------------------------------------------------


class NotificationIterator:
    """Iterator over newline-delimited JSON event records of a live response.

    Blank keep-alive lines are skipped. A malformed record is yielded as an
    error result and ends the stream. Use as a context manager, or call
    ``close()``, to release the connection.
    """

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._lines = response.iter_lines()
        self._closed = False

    def __iter__(self) -> NotificationIterator:
        return self

    def __next__(self) -> ListResult[dict]:
        if self._closed:
            raise StopIteration
        for line in self._lines:
            if not line.strip():
                continue
            try:
                return ListResult(json.loads(line))
            except json.JSONDecodeError:
                self.close()
                return ListResult(
                    error=ResponseFormatError(
                        self._response.status_code,
                        self._response.headers.get("content-type"),
                        line,
                    )
                )
        self.close()
        raise StopIteration

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._response.close()

    def __enter__(self) -> NotificationIterator:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
