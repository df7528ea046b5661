"""Shared pytest fixtures for s3wire tests.

``FakeS3`` is an in-memory S3 service reached through
``httpx.MockTransport``; it speaks enough of the wire protocol (path-style
addressing, XML documents, multipart uploads, paginated listings) for the
client to be exercised end to end without a network.
"""

import hashlib
import re
import xml.etree.ElementTree as ET
from collections.abc import Callable
from urllib.parse import unquote

import httpx
import pytest

from s3wire.client import S3Client
from s3wire.config import ClientConfig
from s3wire.region import RegionCache

NS = "http://s3.amazonaws.com/doc/2006-03-01/"
LAST_MODIFIED = "2024-01-02T03:04:05.000Z"


def xml_response(status: int, body: str, headers: dict[str, str] | None = None) -> httpx.Response:
    all_headers = {"Content-Type": "application/xml", "x-amz-request-id": "REQ123"}
    all_headers.update(headers or {})
    return httpx.Response(status, headers=all_headers, content=body.encode("utf-8"))


def error_response(status: int, code: str, message: str = "", resource: str = "") -> httpx.Response:
    body = (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f"<Error><Code>{code}</Code><Message>{message}</Message>"
        f"<Resource>{resource}</Resource><RequestId>REQ123</RequestId></Error>"
    )
    return xml_response(status, body)


def _etag(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def _strip_ns(root: ET.Element) -> ET.Element:
    for elem in root.iter():
        if elem.tag.startswith("{"):
            elem.tag = elem.tag.split("}", 1)[1]
    return root


class FakeS3:
    """In-memory S3 service.

    Attributes:
        buckets: bucket -> key -> object bytes.
        uploads: upload id -> {"bucket", "key", "parts": {number: bytes}}.
        requests: Every request received, in order.
        fail_next: Responses returned, first in first out, before normal
            handling.
        hooks: Callables run on every request; the first one returning a
            response short-circuits normal handling.
    """

    def __init__(self) -> None:
        self.buckets: dict[str, dict[str, bytes]] = {}
        self.content_types: dict[tuple[str, str], str] = {}
        self.uploads: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.fail_next: list[httpx.Response] = []
        self.hooks: list[Callable[[httpx.Request], httpx.Response | None]] = []
        self.delete_errors: dict[str, str] = {}
        self.tags: dict[tuple[str, str], dict[str, str]] = {}
        self._next_upload = 0

    # -- Dispatch ------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        if self.fail_next:
            return self.fail_next.pop(0)
        for hook in self.hooks:
            result = hook(request)
            if result is not None:
                return result

        path = unquote(request.url.raw_path.split(b"?")[0].decode())
        parts = path.lstrip("/").split("/", 1)
        bucket = parts[0] or None
        key = parts[1] if len(parts) > 1 and parts[1] else None
        params = request.url.params
        method = request.method

        if bucket is None:
            return self._list_buckets()
        if key is None:
            return self._bucket_op(method, bucket, params, request)
        return self._object_op(method, bucket, key, params, request)

    # -- Buckets -------------------------------------------------------------

    def _list_buckets(self) -> httpx.Response:
        items = "".join(
            f"<Bucket><Name>{name}</Name><CreationDate>{LAST_MODIFIED}</CreationDate></Bucket>"
            for name in sorted(self.buckets)
        )
        return xml_response(
            200,
            f'<ListAllMyBucketsResult xmlns="{NS}"><Owner><ID>o</ID></Owner>'
            f"<Buckets>{items}</Buckets></ListAllMyBucketsResult>",
        )

    def _bucket_op(self, method: str, bucket: str, params: httpx.QueryParams, request: httpx.Request):
        if method == "PUT" and not params:
            if bucket in self.buckets:
                return error_response(409, "BucketAlreadyOwnedByYou", "exists", f"/{bucket}")
            self.buckets[bucket] = {}
            return httpx.Response(200)

        if bucket not in self.buckets:
            if method == "HEAD":
                return httpx.Response(404)
            return error_response(404, "NoSuchBucket", "The specified bucket does not exist", f"/{bucket}")

        if method == "HEAD":
            return httpx.Response(200)
        if method == "DELETE" and not params:
            del self.buckets[bucket]
            return httpx.Response(204)
        if method == "GET" and "location" in params:
            return xml_response(200, f'<LocationConstraint xmlns="{NS}"></LocationConstraint>')
        if method == "POST" and "delete" in params:
            return self._delete_objects(bucket, request)
        if method == "GET" and "uploads" in params:
            return self._list_uploads(bucket, params)
        if method == "GET" and params.get("list-type") == "2":
            return self._list_objects(bucket, params, v2=True)
        if method == "GET":
            return self._list_objects(bucket, params, v2=False)
        return error_response(501, "NotImplemented", "not implemented")

    def _list_objects(self, bucket: str, params: httpx.QueryParams, v2: bool) -> httpx.Response:
        prefix = params.get("prefix", "")
        delimiter = params.get("delimiter", "")
        max_keys = int(params.get("max-keys", "1000"))
        url_encode = params.get("encoding-type") == "url"
        if v2:
            start = params.get("continuation-token") or params.get("start-after") or ""
        else:
            start = params.get("marker", "")

        entries: list[tuple[str, bool]] = []
        seen_prefixes: set[str] = set()
        for name in sorted(self.buckets[bucket]):
            if not name.startswith(prefix) or (start and name <= start):
                continue
            if delimiter:
                rest = name[len(prefix):]
                if delimiter in rest:
                    common = prefix + rest.split(delimiter, 1)[0] + delimiter
                    if common not in seen_prefixes and not (start and common <= start):
                        seen_prefixes.add(common)
                        entries.append((common, True))
                    continue
            entries.append((name, False))

        page = entries[:max_keys]
        truncated = len(entries) > max_keys

        def enc(value: str) -> str:
            return value.replace("%", "%25").replace(" ", "%20") if url_encode else value

        body = [f'<ListBucketResult xmlns="{NS}"><Name>{bucket}</Name>']
        if url_encode:
            body.append("<EncodingType>url</EncodingType>")
        body.append(f"<IsTruncated>{'true' if truncated else 'false'}</IsTruncated>")
        if truncated and v2:
            body.append(f"<NextContinuationToken>{page[-1][0]}</NextContinuationToken>")
        for name, is_prefix in page:
            if is_prefix:
                body.append(f"<CommonPrefixes><Prefix>{enc(name)}</Prefix></CommonPrefixes>")
            else:
                data = self.buckets[bucket][name]
                body.append(
                    f"<Contents><Key>{enc(name)}</Key><LastModified>{LAST_MODIFIED}</LastModified>"
                    f'<ETag>"{_etag(data)}"</ETag><Size>{len(data)}</Size>'
                    "<StorageClass>STANDARD</StorageClass></Contents>"
                )
        body.append("</ListBucketResult>")
        return xml_response(200, "".join(body))

    def _delete_objects(self, bucket: str, request: httpx.Request) -> httpx.Response:
        root = _strip_ns(ET.fromstring(request.content))
        errors = []
        for obj in root.findall("Object"):
            key = obj.findtext("Key")
            if key in self.delete_errors:
                errors.append(
                    f"<Error><Key>{key}</Key><Code>{self.delete_errors[key]}</Code>"
                    "<Message>denied</Message></Error>"
                )
                continue
            self.buckets[bucket].pop(key, None)
        return xml_response(200, f'<DeleteResult xmlns="{NS}">{"".join(errors)}</DeleteResult>')

    def _list_uploads(self, bucket: str, params: httpx.QueryParams) -> httpx.Response:
        prefix = params.get("prefix", "")
        body = [f'<ListMultipartUploadsResult xmlns="{NS}"><Bucket>{bucket}</Bucket>']
        body.append("<EncodingType>url</EncodingType><IsTruncated>false</IsTruncated>")
        for upload_id, upload in self.uploads.items():
            if upload["bucket"] == bucket and upload["key"].startswith(prefix):
                body.append(
                    f"<Upload><Key>{upload['key']}</Key><UploadId>{upload_id}</UploadId>"
                    f"<Initiated>{LAST_MODIFIED}</Initiated></Upload>"
                )
        body.append("</ListMultipartUploadsResult>")
        return xml_response(200, "".join(body))

    # -- Objects -------------------------------------------------------------

    def _object_op(
        self, method: str, bucket: str, key: str, params: httpx.QueryParams, request: httpx.Request
    ):
        if bucket not in self.buckets:
            if method == "HEAD":
                return httpx.Response(404)
            return error_response(404, "NoSuchBucket", "The specified bucket does not exist", f"/{bucket}")

        if method == "POST" and "uploads" in params:
            self._next_upload += 1
            upload_id = f"upload-{self._next_upload}"
            self.uploads[upload_id] = {"bucket": bucket, "key": key, "parts": {}}
            self.content_types[(bucket, key)] = request.headers.get("content-type", "")
            return xml_response(
                200,
                f'<InitiateMultipartUploadResult xmlns="{NS}"><Bucket>{bucket}</Bucket>'
                f"<Key>{key}</Key><UploadId>{upload_id}</UploadId></InitiateMultipartUploadResult>",
            )

        if "uploadId" in params:
            return self._upload_op(method, bucket, key, params, request)

        objects = self.buckets[bucket]
        if "tagging" in params:
            return self._tagging_op(method, bucket, key, request)
        if set(params.keys()) - {"versionId"}:
            return error_response(501, "NotImplemented", "not implemented")
        if method == "PUT":
            objects[key] = request.content
            self.content_types[(bucket, key)] = request.headers.get("content-type", "")
            return httpx.Response(200, headers={"ETag": f'"{_etag(request.content)}"'})

        if key not in objects:
            if method == "HEAD":
                return httpx.Response(404)
            if method == "DELETE":
                return httpx.Response(204)
            return error_response(404, "NoSuchKey", "The specified key does not exist.", f"/{bucket}/{key}")

        data = objects[key]
        headers = {
            "ETag": f'"{_etag(data)}"',
            "Content-Type": self.content_types.get((bucket, key)) or "application/octet-stream",
            "Last-Modified": "Tue, 02 Jan 2024 03:04:05 GMT",
        }
        if method == "HEAD":
            headers["Content-Length"] = str(len(data))
            return httpx.Response(200, headers=headers)
        if method == "GET":
            match = re.match(r"bytes=(\d+)-(\d*)", request.headers.get("range", ""))
            if match:
                start = int(match.group(1))
                end = int(match.group(2)) if match.group(2) else len(data) - 1
                return httpx.Response(206, headers=headers, content=data[start : end + 1])
            return httpx.Response(200, headers=headers, content=data)
        if method == "DELETE":
            del objects[key]
            return httpx.Response(204)
        return error_response(501, "NotImplemented", "not implemented")

    def _tagging_op(self, method: str, bucket: str, key: str, request: httpx.Request):
        if key not in self.buckets[bucket]:
            return error_response(404, "NoSuchKey", "The specified key does not exist.", f"/{bucket}/{key}")
        if method == "PUT":
            root = _strip_ns(ET.fromstring(request.content))
            self.tags[(bucket, key)] = {
                t.findtext("Key"): t.findtext("Value") for t in root.findall("TagSet/Tag")
            }
            return httpx.Response(200)
        if method == "DELETE":
            self.tags.pop((bucket, key), None)
            return httpx.Response(204)
        tags = self.tags.get((bucket, key))
        if not tags:
            return error_response(404, "NoSuchTagSet", "The TagSet does not exist")
        items = "".join(f"<Tag><Key>{k}</Key><Value>{v}</Value></Tag>" for k, v in tags.items())
        return xml_response(200, f'<Tagging xmlns="{NS}"><TagSet>{items}</TagSet></Tagging>')

    def _upload_op(
        self, method: str, bucket: str, key: str, params: httpx.QueryParams, request: httpx.Request
    ):
        upload_id = params["uploadId"]
        upload = self.uploads.get(upload_id)
        if upload is None:
            return error_response(404, "NoSuchUpload", "The specified upload does not exist.")

        if method == "PUT":
            number = int(params["partNumber"])
            source = request.headers.get("x-amz-copy-source")
            if source is None:
                data = request.content
                upload["parts"][number] = data
                return httpx.Response(200, headers={"ETag": f'"{_etag(data)}"'})
            src_bucket, src_key = unquote(source).lstrip("/").split("/", 1)
            data = self.buckets[src_bucket][src_key]
            match = re.match(r"bytes=(\d+)-(\d+)", request.headers.get("x-amz-copy-source-range", ""))
            if match:
                data = data[int(match.group(1)) : int(match.group(2)) + 1]
            upload["parts"][number] = data
            return xml_response(
                200,
                f'<CopyPartResult xmlns="{NS}"><LastModified>{LAST_MODIFIED}</LastModified>'
                f'<ETag>"{_etag(data)}"</ETag></CopyPartResult>',
            )

        if method == "POST":
            root = _strip_ns(ET.fromstring(request.content))
            numbers = [int(p.findtext("PartNumber")) for p in root.findall("Part")]
            data = b"".join(upload["parts"][n] for n in numbers)
            self.buckets[bucket][key] = data
            del self.uploads[upload_id]
            etag = f"{_etag(data)}-{len(numbers)}"
            return xml_response(
                200,
                f'<CompleteMultipartUploadResult xmlns="{NS}"><Location>http://fake/{bucket}/{key}</Location>'
                f'<Bucket>{bucket}</Bucket><Key>{key}</Key><ETag>"{etag}"</ETag>'
                "</CompleteMultipartUploadResult>",
                {"x-amz-version-id": "v1"},
            )

        if method == "DELETE":
            del self.uploads[upload_id]
            return httpx.Response(204)

        if method == "GET":
            body = [f'<ListPartsResult xmlns="{NS}"><Bucket>{bucket}</Bucket><Key>{key}</Key>']
            body.append("<IsTruncated>false</IsTruncated>")
            for number, data in sorted(upload["parts"].items()):
                body.append(
                    f"<Part><PartNumber>{number}</PartNumber><ETag>\"{_etag(data)}\"</ETag>"
                    f"<Size>{len(data)}</Size><LastModified>{LAST_MODIFIED}</LastModified></Part>"
                )
            body.append("</ListPartsResult>")
            return xml_response(200, "".join(body))
        return error_response(501, "NotImplemented", "not implemented")

    # -- Helpers for assertions ----------------------------------------------

    def requests_matching(self, method: str, param: str | None = None) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == method and (param is None or param in r.url.params)
        ]


def make_client(handler, endpoint: str = "http://localhost:9000", **kwargs) -> S3Client:
    config = ClientConfig(
        endpoint=endpoint,
        access_key=kwargs.pop("access_key", "AKIAEXAMPLE"),
        secret_key=kwargs.pop("secret_key", "secretkeyexample"),
        transport=httpx.MockTransport(handler),
        **kwargs,
    )
    return S3Client(config, region_cache=RegionCache())


@pytest.fixture
def fake_s3() -> FakeS3:
    return FakeS3()


@pytest.fixture
def client(fake_s3: FakeS3):
    """An S3Client bound to a fresh FakeS3 with bucket ``data`` created."""
    fake_s3.buckets["data"] = {}
    with make_client(fake_s3.handler) as s3:
        yield s3
