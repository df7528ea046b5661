"""Data model types for s3wire.

Request documents derive from ``XmlSerializable`` and render themselves
with ``to_xml()``; response types are dataclasses built from parsed,
namespace-stripped XML elements or response headers.
"""

from __future__ import annotations

import email.utils
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping

from s3wire.errors import InvalidArgument
from s3wire.xml_utils import (
    element,
    findbool,
    findint,
    findtext,
    from_iso8601utc,
    open_root,
    to_iso8601utc,
    url_decode,
)

GOVERNANCE = "GOVERNANCE"
COMPLIANCE = "COMPLIANCE"
DAYS = "Days"
YEARS = "Years"

ENABLED = "Enabled"
SUSPENDED = "Suspended"

SSE_S3 = "AES256"
SSE_KMS = "aws:kms"


def strip_etag(etag: str | None) -> str | None:
    """Remove the surrounding quotes S3 puts on ETag values."""
    if etag is None:
        return None
    return etag.strip().strip('"')


class XmlSerializable:
    """Base class for structured request bodies sent as XML."""

    def to_xml(self) -> str:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Buckets and objects
# ---------------------------------------------------------------------------


@dataclass
class Bucket:
    """A bucket as returned by ListBuckets."""

    name: str
    creation_date: datetime | None = None

    @classmethod
    def from_xml(cls, elem: ET.Element) -> Bucket:
        return cls(
            name=findtext(elem, "Name", ""),
            creation_date=from_iso8601utc(findtext(elem, "CreationDate")),
        )


def parse_list_buckets(root: ET.Element) -> list[Bucket]:
    return [Bucket.from_xml(b) for b in root.findall("Buckets/Bucket")]


@dataclass
class Object:
    """A listed object, object version, delete marker or common prefix.

    Attributes:
        bucket: The bucket name.
        object_name: The object key (or prefix for directory items).
        last_modified: Last modification time, if known.
        etag: ETag with quotes removed.
        size: Size in bytes.
        storage_class: Storage class reported by the service.
        owner_id: Canonical owner id, when fetched.
        owner_name: Owner display name, when fetched.
        version_id: Version id for versioned listings.
        is_latest: Whether this is the latest version.
        is_delete_marker: Whether this is a delete marker.
        is_dir: Whether this item is a common prefix.
        metadata: User metadata returned by ``metadata=true`` listings.
    """

    bucket: str
    object_name: str
    last_modified: datetime | None = None
    etag: str | None = None
    size: int = 0
    storage_class: str | None = None
    owner_id: str | None = None
    owner_name: str | None = None
    version_id: str | None = None
    is_latest: bool = False
    is_delete_marker: bool = False
    is_dir: bool = False
    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_xml(
        cls,
        elem: ET.Element,
        bucket: str,
        encoding_type: str | None = None,
        is_delete_marker: bool = False,
    ) -> Object:
        metadata: dict[str, str] = {}
        user_metadata = elem.find("UserMetadata")
        if user_metadata is not None:
            for child in user_metadata:
                metadata[child.tag] = child.text or ""
        return cls(
            bucket=bucket,
            object_name=url_decode(findtext(elem, "Key", ""), encoding_type) or "",
            last_modified=from_iso8601utc(findtext(elem, "LastModified")),
            etag=strip_etag(findtext(elem, "ETag")),
            size=findint(elem, "Size"),
            storage_class=findtext(elem, "StorageClass"),
            owner_id=findtext(elem, "Owner/ID"),
            owner_name=findtext(elem, "Owner/DisplayName"),
            version_id=findtext(elem, "VersionId"),
            is_latest=findbool(elem, "IsLatest"),
            is_delete_marker=is_delete_marker,
            metadata=metadata,
        )

    @classmethod
    def from_prefix(cls, elem: ET.Element, bucket: str, encoding_type: str | None = None) -> Object:
        return cls(
            bucket=bucket,
            object_name=url_decode(findtext(elem, "Prefix", ""), encoding_type) or "",
            is_dir=True,
        )


@dataclass
class ObjectStat:
    """Object information returned by a HEAD request."""

    bucket: str
    object_name: str
    size: int = 0
    etag: str | None = None
    content_type: str | None = None
    last_modified: datetime | None = None
    version_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_headers(cls, bucket: str, object_name: str, headers: Mapping[str, str]) -> ObjectStat:
        last_modified = headers.get("last-modified")
        metadata = {
            key[len("x-amz-meta-"):]: value
            for key, value in headers.items()
            if key.lower().startswith("x-amz-meta-")
        }
        return cls(
            bucket=bucket,
            object_name=object_name,
            size=int(headers.get("content-length", 0)),
            etag=strip_etag(headers.get("etag")),
            content_type=headers.get("content-type"),
            last_modified=(
                email.utils.parsedate_to_datetime(last_modified) if last_modified else None
            ),
            version_id=headers.get("x-amz-version-id"),
            metadata=metadata,
        )


@dataclass
class ObjectWriteResult:
    """Result of a PUT, complete-multipart or compose operation.

    ``etag`` is None when a completion response matched no known schema.
    """

    bucket: str
    object_name: str
    etag: str | None = None
    version_id: str | None = None
    location: str | None = None


# ---------------------------------------------------------------------------
# Multipart
# ---------------------------------------------------------------------------


@dataclass
class Part:
    """One part of a multipart upload.

    Attributes:
        part_number: 1-based part number.
        etag: ETag returned for the part, quotes removed.
        size: Part size in bytes, when known.
        last_modified: Upload time reported by ListParts.
    """

    part_number: int
    etag: str
    size: int = 0
    last_modified: datetime | None = None

    @classmethod
    def from_xml(cls, elem: ET.Element) -> Part:
        return cls(
            part_number=findint(elem, "PartNumber"),
            etag=strip_etag(findtext(elem, "ETag", "")) or "",
            size=findint(elem, "Size"),
            last_modified=from_iso8601utc(findtext(elem, "LastModified")),
        )


@dataclass
class Upload:
    """An incomplete multipart upload.

    ``size`` is the aggregated size of its uploaded parts, or -1 when the
    parts could not be listed.
    """

    bucket: str
    object_name: str
    upload_id: str
    initiated: datetime | None = None
    storage_class: str | None = None
    size: int = 0

    @classmethod
    def from_xml(cls, elem: ET.Element, bucket: str, encoding_type: str | None = None) -> Upload:
        return cls(
            bucket=bucket,
            object_name=url_decode(findtext(elem, "Key", ""), encoding_type) or "",
            upload_id=findtext(elem, "UploadId", "") or "",
            initiated=from_iso8601utc(findtext(elem, "Initiated")),
            storage_class=findtext(elem, "StorageClass"),
        )


class CompleteMultipartUpload(XmlSerializable):
    """CompleteMultipartUpload request document; parts are rendered in order."""

    def __init__(self, parts: list[Part]) -> None:
        self.parts = parts

    def to_xml(self) -> str:
        parts = open_root("CompleteMultipartUpload")
        for part in self.parts:
            parts.append("<Part>")
            parts.append(element("PartNumber", part.part_number))
            parts.append(element("ETag", part.etag))
            parts.append("</Part>")
        parts.append("</CompleteMultipartUpload>")
        return "\n".join(parts)


def parse_complete_multipart_upload(root: ET.Element) -> dict[str, str | None]:
    return {
        "bucket": findtext(root, "Bucket"),
        "object_name": findtext(root, "Key"),
        "location": findtext(root, "Location"),
        "etag": strip_etag(findtext(root, "ETag")),
    }


# ---------------------------------------------------------------------------
# Listing pages
# ---------------------------------------------------------------------------


@dataclass
class ListPage:
    """One page of a listing response.

    Attributes:
        items: Objects, versions, uploads or parts on this page.
        prefixes: Common prefixes, as directory items.
        delete_markers: Delete markers from a version listing.
        is_truncated: Whether another page follows.
        next_marker: Continuation token, marker, key marker or part number
            marker for the next page.
        next_id_marker: Version id or upload id marker for the next page.
    """

    items: list = field(default_factory=list)
    prefixes: list = field(default_factory=list)
    delete_markers: list = field(default_factory=list)
    is_truncated: bool = False
    next_marker: str | None = None
    next_id_marker: str | None = None


# ---------------------------------------------------------------------------
# Bulk delete
# ---------------------------------------------------------------------------


@dataclass
class DeleteObject:
    """An object to delete, optionally a specific version."""

    name: str
    version_id: str | None = None


class DeleteRequest(XmlSerializable):
    """Delete request document for up to 1000 objects."""

    def __init__(self, objects: list[DeleteObject], quiet: bool = True) -> None:
        self.objects = objects
        self.quiet = quiet

    def to_xml(self) -> str:
        parts = open_root("Delete")
        if self.quiet:
            parts.append(element("Quiet", "true"))
        for obj in self.objects:
            parts.append("<Object>")
            parts.append(element("Key", obj.name))
            if obj.version_id:
                parts.append(element("VersionId", obj.version_id))
            parts.append("</Object>")
        parts.append("</Delete>")
        return "\n".join(parts)


@dataclass
class DeleteError:
    """A per-object failure reported by a bulk delete."""

    code: str
    message: str | None = None
    object_name: str | None = None
    version_id: str | None = None

    @classmethod
    def from_xml(cls, elem: ET.Element) -> DeleteError:
        return cls(
            code=findtext(elem, "Code", "") or "",
            message=findtext(elem, "Message"),
            object_name=findtext(elem, "Key"),
            version_id=findtext(elem, "VersionId"),
        )


def parse_delete_result(root: ET.Element) -> list[DeleteError]:
    return [DeleteError.from_xml(e) for e in root.findall("Error")]


# ---------------------------------------------------------------------------
# Bucket configuration documents
# ---------------------------------------------------------------------------


class CreateBucketConfiguration(XmlSerializable):
    def __init__(self, location: str) -> None:
        self.location = location

    def to_xml(self) -> str:
        parts = open_root("CreateBucketConfiguration")
        parts.append(element("LocationConstraint", self.location))
        parts.append("</CreateBucketConfiguration>")
        return "\n".join(parts)


class VersioningConfiguration(XmlSerializable):
    def __init__(self, status: str) -> None:
        if status not in (ENABLED, SUSPENDED):
            raise InvalidArgument(f"versioning status must be {ENABLED} or {SUSPENDED}")
        self.status = status

    def to_xml(self) -> str:
        parts = open_root("VersioningConfiguration")
        parts.append(element("Status", self.status))
        parts.append("</VersioningConfiguration>")
        return "\n".join(parts)


class ObjectLockConfiguration(XmlSerializable):
    """Default object retention of a bucket.

    With ``mode`` None the document only enables object lock and clears the
    default retention rule.
    """

    def __init__(
        self, mode: str | None = None, duration: int | None = None, unit: str | None = None
    ) -> None:
        if mode is not None:
            if mode not in (GOVERNANCE, COMPLIANCE):
                raise InvalidArgument(f"retention mode must be {GOVERNANCE} or {COMPLIANCE}")
            if unit not in (DAYS, YEARS) or not duration or duration < 1:
                raise InvalidArgument("retention duration must be a positive number of Days or Years")
        self.mode = mode
        self.duration = duration
        self.unit = unit

    def to_xml(self) -> str:
        parts = open_root("ObjectLockConfiguration")
        parts.append(element("ObjectLockEnabled", ENABLED))
        if self.mode:
            parts.append("<Rule><DefaultRetention>")
            parts.append(element("Mode", self.mode))
            parts.append(element(self.unit, self.duration))
            parts.append("</DefaultRetention></Rule>")
        parts.append("</ObjectLockConfiguration>")
        return "\n".join(parts)

    @classmethod
    def from_xml(cls, root: ET.Element) -> ObjectLockConfiguration:
        rule = root.find("Rule/DefaultRetention")
        if rule is None:
            return cls()
        unit = DAYS if rule.find(DAYS) is not None else YEARS
        return cls(findtext(rule, "Mode"), findint(rule, unit), unit)


class Retention(XmlSerializable):
    """Retention setting of a single object version."""

    def __init__(self, mode: str, retain_until_date: datetime) -> None:
        if mode not in (GOVERNANCE, COMPLIANCE):
            raise InvalidArgument(f"retention mode must be {GOVERNANCE} or {COMPLIANCE}")
        self.mode = mode
        self.retain_until_date = retain_until_date

    def to_xml(self) -> str:
        parts = open_root("Retention")
        parts.append(element("Mode", self.mode))
        parts.append(element("RetainUntilDate", to_iso8601utc(self.retain_until_date)))
        parts.append("</Retention>")
        return "\n".join(parts)

    @classmethod
    def from_xml(cls, root: ET.Element) -> Retention:
        until = from_iso8601utc(findtext(root, "RetainUntilDate"))
        return cls(findtext(root, "Mode", "") or "", until)  # type: ignore[arg-type]


class LegalHold(XmlSerializable):
    def __init__(self, status: bool) -> None:
        self.status = status

    def to_xml(self) -> str:
        parts = open_root("LegalHold")
        parts.append(element("Status", "ON" if self.status else "OFF"))
        parts.append("</LegalHold>")
        return "\n".join(parts)

    @classmethod
    def from_xml(cls, root: ET.Element) -> LegalHold:
        return cls(findtext(root, "Status") == "ON")


class Tagging(XmlSerializable):
    """Bucket or object tag set."""

    def __init__(self, tags: Mapping[str, str]) -> None:
        self.tags = dict(tags)

    def to_xml(self) -> str:
        parts = open_root("Tagging")
        parts.append("<TagSet>")
        for key, value in self.tags.items():
            parts.append("<Tag>")
            parts.append(element("Key", key))
            parts.append(element("Value", value))
            parts.append("</Tag>")
        parts.append("</TagSet>")
        parts.append("</Tagging>")
        return "\n".join(parts)

    @classmethod
    def from_xml(cls, root: ET.Element) -> Tagging:
        return cls(
            {
                findtext(tag, "Key", "") or "": findtext(tag, "Value", "") or ""
                for tag in root.findall("TagSet/Tag")
            }
        )


class SSEConfig(XmlSerializable):
    """Default server-side encryption of a bucket."""

    def __init__(self, algorithm: str = SSE_S3, kms_master_key_id: str | None = None) -> None:
        if algorithm not in (SSE_S3, SSE_KMS):
            raise InvalidArgument(f"SSE algorithm must be {SSE_S3} or {SSE_KMS}")
        self.algorithm = algorithm
        self.kms_master_key_id = kms_master_key_id

    def to_xml(self) -> str:
        parts = open_root("ServerSideEncryptionConfiguration")
        parts.append("<Rule><ApplyServerSideEncryptionByDefault>")
        parts.append(element("SSEAlgorithm", self.algorithm))
        if self.kms_master_key_id:
            parts.append(element("KMSMasterKeyID", self.kms_master_key_id))
        parts.append("</ApplyServerSideEncryptionByDefault></Rule>")
        parts.append("</ServerSideEncryptionConfiguration>")
        return "\n".join(parts)

    @classmethod
    def from_xml(cls, root: ET.Element) -> SSEConfig:
        rule = root.find("Rule/ApplyServerSideEncryptionByDefault")
        if rule is None:
            return cls()
        return cls(findtext(rule, "SSEAlgorithm", SSE_S3) or SSE_S3, findtext(rule, "KMSMasterKeyID"))


class SelectRequest(XmlSerializable):
    """SelectObjectContent request.

    Serialization options are nested mappings rendered as elements, e.g.
    ``{"CSV": {"FileHeaderInfo": "USE"}}``.
    """

    def __init__(
        self,
        expression: str,
        input_serialization: Mapping[str, Mapping[str, str]],
        output_serialization: Mapping[str, Mapping[str, str]],
        compression_type: str = "NONE",
        request_progress: bool = False,
    ) -> None:
        self.expression = expression
        self.input_serialization = input_serialization
        self.output_serialization = output_serialization
        self.compression_type = compression_type
        self.request_progress = request_progress

    @staticmethod
    def _render_format(parts: list[str], formats: Mapping[str, Mapping[str, str]]) -> None:
        for name, options in formats.items():
            parts.append(f"<{name}>")
            for key, value in options.items():
                parts.append(element(key, value))
            parts.append(f"</{name}>")

    def to_xml(self) -> str:
        parts = open_root("SelectObjectContentRequest")
        parts.append(element("Expression", self.expression))
        parts.append(element("ExpressionType", "SQL"))
        parts.append("<InputSerialization>")
        parts.append(element("CompressionType", self.compression_type))
        self._render_format(parts, self.input_serialization)
        parts.append("</InputSerialization>")
        parts.append("<OutputSerialization>")
        self._render_format(parts, self.output_serialization)
        parts.append("</OutputSerialization>")
        if self.request_progress:
            parts.append("<RequestProgress>")
            parts.append(element("Enabled", "true"))
            parts.append("</RequestProgress>")
        parts.append("</SelectObjectContentRequest>")
        return "\n".join(parts)
