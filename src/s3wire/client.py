"""S3Client: addressing, signing, execution and the single-step S3 operations.

Multi-step protocols (multipart upload, compose, listing) live in their
own modules and are reached through the methods below.
"""

from __future__ import annotations

import logging
import os
import platform
import re
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator, Mapping, TextIO
from urllib.parse import SplitResult, urlunsplit

import httpx

import s3wire.metrics as _metrics
from s3wire import compose, multipart
from s3wire.config import ClientConfig
from s3wire.errors import (
    ConfigurationError,
    ErrorCode,
    InternalError,
    InvalidArgument,
    PolicyTooLargeError,
    ResponseFormatError,
    S3Error,
    S3WireError,
    ServerError,
)
from s3wire.listing import (
    DEFAULT_MAX_KEYS,
    ListResult,
    NotificationIterator,
    ObjectsV1Iterator,
    ObjectsV2Iterator,
    PageIterator,
    PartsIterator,
    UploadsIterator,
    VersionsIterator,
)
from s3wire.models import (
    ENABLED,
    SUSPENDED,
    Bucket,
    CompleteMultipartUpload,
    CreateBucketConfiguration,
    DeleteError,
    DeleteObject,
    DeleteRequest,
    LegalHold,
    ObjectLockConfiguration,
    ObjectStat,
    ObjectWriteResult,
    Part,
    Retention,
    SelectRequest,
    SSEConfig,
    Tagging,
    VersioningConfiguration,
    XmlSerializable,
    parse_complete_multipart_upload,
    parse_delete_result,
    parse_list_buckets,
    strip_etag,
)
from s3wire.region import US_EAST_1, RegionCache, RegionResolver, default_region_cache
from s3wire.signer import DEFAULT_EXPIRES, content_hashes, presign_v4, sign_v4_s3, to_amz_date
from s3wire.urls import BaseURL, QueryParams
from s3wire.validation import (
    check_data_type,
    validate_expires,
    validate_part_number,
    validate_part_numbers,
)
from s3wire.xml_utils import findtext, parse_error_or_result, parse_xml

__version__ = "0.1.0"

logger = logging.getLogger(__name__)

# Connection retries for idempotent verbs; PUT and POST are never retried.
DEFAULT_RETRIES = 3

MAX_BUCKET_POLICY_SIZE = 12 * 1024
REMOVE_OBJECTS_BATCH = 1000

_START_HTTP = "---------START-HTTP---------\n"
_END_HTTP = "----------END-HTTP----------\n"

_NOT_FOUND_CODES = {
    "tagging": "NoSuchTagSet",
    "lifecycle": "NoSuchLifecycleConfiguration",
    "object-lock": "ObjectLockConfigurationNotFoundError",
    "retention": "NoSuchObjectLockConfiguration",
    "legal-hold": "NoSuchObjectLockConfiguration",
    "encryption": "ServerSideEncryptionConfigurationNotFoundError",
    "policy": "NoSuchBucketPolicy",
}


def _default_user_agent() -> str:
    return f"s3wire/{__version__} ({platform.system()}; {platform.machine()})"


def _redact(text: str) -> str:
    text = re.sub(r"Signature=([0-9a-f]+)", "Signature=*REDACTED*", text)
    return re.sub(r"Credential=([^/]+)", "Credential=*REDACTED*", text)


def _merge_content_encoding(value: str | list[str]) -> str:
    values = value if isinstance(value, list) else value.split(",")
    merged: list[str] = []
    for item in values:
        item = item.strip()
        if item and item not in merged:
            merged.append(item)
    return ",".join(merged)


class S3Client:
    """Client for an S3-compatible object storage service.

    A client is safe to share between threads for independent operations;
    the region cache is the only shared mutable state.

    Args:
        config: Endpoint, credentials and transport settings.
        region_cache: Bucket region cache; defaults to the process-wide one.
    """

    def __init__(self, config: ClientConfig, region_cache: RegionCache | None = None) -> None:
        self._config = config
        self._base_url = BaseURL(config.endpoint, config.region, config.virtual_style)
        if self._base_url.is_aws_host:
            self._base_url.accelerate = self._base_url.accelerate or config.accelerate
            self._base_url.dual_stack = self._base_url.dual_stack or config.dual_stack
        self._access_key = config.access_key
        self._secret_key = config.secret_key
        self._region_cache = region_cache if region_cache is not None else default_region_cache
        self._regions = RegionResolver(
            self._base_url,
            self._region_cache,
            has_credentials=not config.anonymous,
            lookup=self._get_bucket_location,
        )
        self._user_agent = _default_user_agent()
        if config.app_name and config.app_version:
            self.set_app_info(config.app_name, config.app_version)
        self._trace_stream: TextIO | None = None

        timeout = httpx.Timeout(
            connect=config.connect_timeout,
            write=config.write_timeout,
            read=config.read_timeout,
            pool=None,
        )
        if config.transport is not None:
            self._http = httpx.Client(transport=config.transport, timeout=timeout)
            self._http_no_retry = self._http
        else:
            self._http = httpx.Client(
                transport=httpx.HTTPTransport(retries=DEFAULT_RETRIES), timeout=timeout
            )
            self._http_no_retry = httpx.Client(
                transport=httpx.HTTPTransport(retries=0), timeout=timeout
            )

    @property
    def base_url(self) -> BaseURL:
        return self._base_url

    @property
    def region_cache(self) -> RegionCache:
        return self._region_cache

    def close(self) -> None:
        """Close the underlying HTTP connection pools."""
        self._http.close()
        if self._http_no_retry is not self._http:
            self._http_no_retry.close()

    def __enter__(self) -> S3Client:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- Mutators --------------------------------------------------------------

    def set_timeout(self, connect: float, write: float, read: float) -> None:
        """Set per-request connect, write and read timeouts in seconds."""
        timeout = httpx.Timeout(connect=connect, write=write, read=read, pool=None)
        self._http.timeout = timeout
        self._http_no_retry.timeout = timeout

    def set_app_info(self, app_name: str, app_version: str) -> None:
        """Append application name and version to the User-Agent."""
        if not app_name or not app_version:
            raise InvalidArgument("application name and version must be non-empty")
        self._user_agent = f"{_default_user_agent()} {app_name}/{app_version}"

    def trace_on(self, stream: TextIO) -> None:
        """Write an HTTP dump of every request and response to ``stream``."""
        if stream is None:
            raise InvalidArgument("trace stream must not be None")
        self._trace_stream = stream

    def trace_off(self) -> None:
        self._trace_stream = None

    def enable_accelerate_endpoint(self) -> None:
        self._base_url.accelerate = True

    def disable_accelerate_endpoint(self) -> None:
        self._base_url.accelerate = False

    def enable_dualstack_endpoint(self) -> None:
        self._base_url.dual_stack = True

    def disable_dualstack_endpoint(self) -> None:
        self._base_url.dual_stack = False

    def enable_virtual_style_endpoint(self) -> None:
        self._base_url.virtual_style = True

    def disable_virtual_style_endpoint(self) -> None:
        self._base_url.virtual_style = False

    # -- Execution engine --------------------------------------------------------

    def _get_region(self, bucket: str | None = None, region: str | None = None) -> str:
        return self._regions.resolve(bucket, region)

    def _get_bucket_location(self, bucket: str) -> str | None:
        # Runs against us-east-1 directly so resolution never recurses.
        response = self._url_open("GET", US_EAST_1, bucket, query={"location": ""})
        root = parse_xml(response.content, response.status_code, response.headers.get("content-type"))
        return root.text

    def _prepare_body(
        self, method: str, body: Any, length: int | None
    ) -> tuple[bytes | None, bool]:
        """Return the body as bytes and whether it may be traced."""
        if isinstance(body, XmlSerializable):
            return body.to_xml().encode("utf-8"), True
        if isinstance(body, str):
            return body.encode("utf-8"), True
        if isinstance(body, (bytes, bytearray, memoryview)):
            return bytes(body), False
        if body is not None and callable(getattr(body, "read", None)):
            if length is None or length < 0:
                return body.read(), False
            data = multipart.read_exact(body, length)
            if len(data) < length:
                raise InvalidArgument(
                    f"insufficient data; expected {length} bytes, got {len(data)}"
                )
            return data, False
        if body is None:
            return (b"" if method in ("PUT", "POST") else None), False
        raise InvalidArgument(f"unsupported request body type {type(body).__name__}")

    def _build_headers(
        self, url: SplitResult, headers: Mapping[str, Any] | None, data: bytes | None
    ) -> dict[str, str]:
        result: dict[str, str] = {}
        content_encoding: list[str] = []
        for name, value in (headers or {}).items():
            if name.lower() == "content-encoding":
                content_encoding.append(_merge_content_encoding(value))
            elif value is not None:
                result[name] = value if isinstance(value, str) else ",".join(value)
        merged = _merge_content_encoding(",".join(content_encoding))
        if merged:
            result["Content-Encoding"] = merged

        result["Host"] = url.netloc
        result["Accept-Encoding"] = "identity"
        result["User-Agent"] = self._user_agent

        sha256, md5 = content_hashes(data, self._base_url.is_https, self._config.anonymous)
        if md5 is not None:
            result["Content-MD5"] = md5
        if sha256 is not None:
            result["x-amz-content-sha256"] = sha256
        return result

    def _trace(self, text: str) -> None:
        if self._trace_stream is not None:
            self._trace_stream.write(text)

    def _trace_request(self, request: httpx.Request, body: bytes | None, traced: bool) -> None:
        if self._trace_stream is None:
            return
        lines = [_START_HTTP, f"{request.method} {request.url.raw_path.decode()} HTTP/1.1\n"]
        for name, value in request.headers.items():
            lines.append(_redact(f"{name}: {value}") + "\n")
        if traced and body:
            lines.append("\n" + body.decode("utf-8", "replace") + "\n")
        self._trace("".join(lines))

    def _trace_response(self, response: httpx.Response) -> None:
        if self._trace_stream is None:
            return
        lines = [f"{response.http_version} {response.status_code}\n"]
        for name, value in response.headers.items():
            lines.append(f"{name}: {value}\n")
        self._trace("".join(lines))

    def _url_open(
        self,
        method: str,
        region: str,
        bucket: str | None = None,
        object_name: str | None = None,
        body: Any = None,
        length: int | None = None,
        headers: Mapping[str, Any] | None = None,
        query: QueryParams | None = None,
        preload_content: bool = True,
    ) -> httpx.Response:
        """Build, sign and send one request; map a non-2xx response to an error.

        A 2xx response is returned as-is. With ``preload_content`` False it
        is a live stream that the caller must close.

        Raises:
            S3Error: For an error document or a mapped bare status.
            ResponseFormatError: For a non-XML or empty error body.
            ServerError: For an unmapped 5xx status.
            InternalError: For any other unmapped status.
            httpx.TransportError: On connection failures.
        """
        url = self._base_url.build(method, region, bucket, object_name, query)
        data, traced = self._prepare_body(method, body, length)
        req_headers = self._build_headers(url, headers, data)
        date = datetime.now(timezone.utc)
        req_headers["x-amz-date"] = to_amz_date(date)

        if not self._config.anonymous:
            req_headers = sign_v4_s3(
                method=method,
                url=url,
                region=region,
                headers=req_headers,
                access_key=self._access_key,  # type: ignore[arg-type]
                secret_key=self._secret_key,  # type: ignore[arg-type]
                content_sha256=req_headers["x-amz-content-sha256"],
                date=date,
            )

        http = self._http_no_retry if method in ("PUT", "POST") else self._http
        request = http.build_request(method, urlunsplit(url), headers=req_headers, content=data)
        self._trace_request(request, data, traced)

        logger.debug(
            "%s %s",
            method,
            url.path,
            extra={"method": method, "bucket": bucket, "object": object_name},
        )
        response = http.send(request, stream=not preload_content)
        self._trace_response(response)

        if _metrics.requests_total is not None:
            _metrics.requests_total.labels(method=method, status=str(response.status_code)).inc()
        if data and _metrics.bytes_sent_total is not None:
            _metrics.bytes_sent_total.inc(len(data))

        if response.is_success:
            if preload_content and response.content and method != "HEAD":
                self._trace("\n" + response.text + "\n")
            self._trace(_END_HTTP)
            return response

        try:
            error_body = response.read()
        finally:
            response.close()

        if error_body and method != "HEAD":
            self._trace(error_body.decode("utf-8", "replace") + "\n")
        self._trace(_END_HTTP)

        error = self._to_error(method, url, bucket, object_name, response, error_body)
        if error.code in (ErrorCode.NO_SUCH_BUCKET.value, ErrorCode.RETRY_HEAD.value) and bucket:
            self._region_cache.remove(bucket)
        if _metrics.request_errors_total is not None:
            _metrics.request_errors_total.labels(code=error.code).inc()
        logger.debug(
            "%s %s failed: %s",
            method,
            url.path,
            error.code,
            extra={"status": response.status_code, "request_id": error.request_id},
        )
        raise error

    def _to_error(
        self,
        method: str,
        url: SplitResult,
        bucket: str | None,
        object_name: str | None,
        response: httpx.Response,
        body: bytes,
    ) -> S3Error:
        status = response.status_code
        content_type = response.headers.get("content-type")

        if method != "HEAD":
            media_types = [t.strip() for t in (content_type or "").split(";")]
            if "application/xml" not in media_types:
                raise ResponseFormatError(status, content_type, body.decode("utf-8", "replace") or None)
            if not body:
                raise ResponseFormatError(status, content_type, None)

        if body:
            return S3Error.from_element(parse_xml(body, status, content_type), http_status=status)

        if status == 307:
            code = ErrorCode.REDIRECT
        elif status == 400:
            # HEAD bucket with a wrong region answers 400 without a body.
            if (
                method == "HEAD"
                and bucket
                and object_name is None
                and self._base_url.is_aws_host
                and self._region_cache.get(bucket) is not None
            ):
                code = ErrorCode.RETRY_HEAD
            else:
                code = ErrorCode.INVALID_URI
        elif status == 404:
            if object_name is not None:
                code = ErrorCode.NO_SUCH_KEY
            elif bucket is not None:
                code = ErrorCode.NO_SUCH_BUCKET
            else:
                code = ErrorCode.RESOURCE_NOT_FOUND
        elif status in (405, 501):
            code = ErrorCode.METHOD_NOT_ALLOWED
        elif status == 409:
            code = ErrorCode.NO_SUCH_BUCKET if bucket is not None else ErrorCode.RESOURCE_CONFLICT
        elif status == 403:
            code = ErrorCode.ACCESS_DENIED
        elif status >= 500:
            raise ServerError(f"server failed with HTTP status code {status}", status)
        else:
            raise InternalError(status)

        return S3Error.from_code(
            code,
            resource=url.path,
            request_id=response.headers.get("x-amz-request-id"),
            host_id=response.headers.get("x-amz-id-2"),
            bucket=bucket,
            object_name=object_name,
            http_status=status,
        )

    def _execute(
        self,
        method: str,
        bucket: str | None = None,
        object_name: str | None = None,
        body: Any = None,
        length: int | None = None,
        headers: Mapping[str, Any] | None = None,
        query: QueryParams | None = None,
        preload_content: bool = True,
        region: str | None = None,
    ) -> httpx.Response:
        """Resolve the bucket region, then run the request."""
        region = self._get_region(bucket, region)
        return self._url_open(
            method,
            region,
            bucket=bucket,
            object_name=object_name,
            body=body,
            length=length,
            headers=headers,
            query=query,
            preload_content=preload_content,
        )

    def _execute_head(
        self,
        bucket: str,
        object_name: str | None = None,
        headers: Mapping[str, Any] | None = None,
        query: QueryParams | None = None,
        region: str | None = None,
    ) -> httpx.Response:
        """Run a HEAD request, re-running it once on a region mismatch."""
        try:
            return self._execute("HEAD", bucket, object_name, headers=headers, query=query, region=region)
        except S3Error as exc:
            if exc.code != ErrorCode.RETRY_HEAD.value:
                raise
        logger.debug("Retrying HEAD of bucket %s after region mismatch", bucket)
        return self._execute("HEAD", bucket, object_name, headers=headers, query=query, region=region)

    def _get_optional(
        self,
        bucket: str,
        subresource: str,
        object_name: str | None = None,
        query: dict[str, str] | None = None,
    ) -> httpx.Response | None:
        """GET a configuration subresource; None when the service reports it absent."""
        params = {subresource: ""}
        params.update(query or {})
        try:
            return self._execute("GET", bucket, object_name, query=params)
        except S3Error as exc:
            if exc.code == _NOT_FOUND_CODES[subresource]:
                return None
            raise

    # -- Buckets -----------------------------------------------------------------

    def make_bucket(self, bucket: str, location: str | None = None, object_lock: bool = False) -> None:
        """Create a bucket, in ``location`` or the client's region."""
        region = self._get_region(None, location)
        headers = {"x-amz-bucket-object-lock-enabled": "true"} if object_lock else None
        body = None if region == US_EAST_1 else CreateBucketConfiguration(region)
        self._url_open("PUT", region, bucket, body=body, headers=headers)
        self._region_cache.set(bucket, region)
        logger.info("Created bucket %s in %s", bucket, region, extra={"bucket": bucket})

    def list_buckets(self) -> list[Bucket]:
        response = self._execute("GET")
        return parse_list_buckets(parse_xml(response.content, response.status_code))

    def bucket_exists(self, bucket: str) -> bool:
        try:
            self._execute_head(bucket)
            return True
        except S3Error as exc:
            if exc.code != ErrorCode.NO_SUCH_BUCKET.value:
                raise
        return False

    def remove_bucket(self, bucket: str) -> None:
        self._execute("DELETE", bucket)
        self._region_cache.remove(bucket)

    # -- Objects -----------------------------------------------------------------

    def stat_object(
        self, bucket: str, object_name: str, version_id: str | None = None
    ) -> ObjectStat:
        query = {"versionId": version_id} if version_id else None
        response = self._execute_head(bucket, object_name, query=query)
        try:
            return ObjectStat.from_headers(bucket, object_name, response.headers)
        except (TypeError, ValueError) as exc:
            raise ResponseFormatError(
                response.status_code,
                response.headers.get("content-type"),
                reason=f"malformed object headers: {exc}",
            ) from exc

    def get_object(
        self,
        bucket: str,
        object_name: str,
        offset: int = 0,
        length: int | None = None,
        version_id: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Return the live streaming response of an object; the caller closes it."""
        if offset < 0 or (length is not None and length <= 0):
            raise InvalidArgument("offset must be non-negative and length positive")
        request_headers = dict(headers or {})
        if offset or length:
            end = str(offset + length - 1) if length else ""
            request_headers["Range"] = f"bytes={offset}-{end}"
        query = {"versionId": version_id} if version_id else None
        return self._execute(
            "GET", bucket, object_name, headers=request_headers, query=query, preload_content=False
        )

    def download_object(
        self, bucket: str, object_name: str, file_path: str, version_id: str | None = None
    ) -> None:
        """Download an object to a file, resuming a previous partial download.

        Data is appended to ``<file_path>.<etag>.part.s3wire`` which is
        renamed over ``file_path`` once complete.
        """
        stat = self.stat_object(bucket, object_name, version_id)
        length = stat.size
        temp_path = f"{file_path}.{stat.etag}.part.s3wire"

        if os.path.exists(temp_path) and not os.path.isfile(temp_path):
            raise InvalidArgument(f"{temp_path}: not a regular file")

        temp_size = os.path.getsize(temp_path) if os.path.exists(temp_path) else 0
        if temp_size > length:
            os.remove(temp_path)
            temp_size = 0

        if os.path.exists(file_path):
            file_size = os.path.getsize(file_path)
            if file_size == length:
                return
            if file_size > length:
                raise InvalidArgument(
                    f"source object '{object_name}' size {length} is smaller than "
                    f"the destination file '{file_path}' size {file_size}"
                )

        response = self.get_object(
            bucket, object_name, offset=temp_size, version_id=version_id
        ) if temp_size < length else None
        written = 0
        try:
            with open(temp_path, "ab") as fh:
                if response is not None:
                    for chunk in response.iter_bytes():
                        fh.write(chunk)
                        written += len(chunk)
        finally:
            if response is not None:
                response.close()

        if written != length - temp_size:
            raise ResponseFormatError(
                200, None, f"{temp_path}: expected {length - temp_size} bytes, written {written}"
            )
        os.replace(temp_path, file_path)

    def get_object_url(self, bucket: str, object_name: str) -> str:
        """Return the unsigned URL of an object."""
        region = self._get_region(bucket)
        return urlunsplit(self._base_url.build("GET", region, bucket, object_name))

    def _put_object(
        self,
        bucket: str,
        object_name: str,
        data: Any,
        length: int,
        headers: Mapping[str, Any] | None = None,
        region: str | None = None,
    ) -> ObjectWriteResult:
        """Upload an object with one PUT request."""
        check_data_type(data)
        response = self._execute(
            "PUT", bucket, object_name, body=data, length=length, headers=headers, region=region
        )
        return ObjectWriteResult(
            bucket=bucket,
            object_name=object_name,
            etag=strip_etag(response.headers.get("etag")),
            version_id=response.headers.get("x-amz-version-id"),
        )

    def put_object(
        self,
        bucket: str,
        object_name: str,
        data: Any,
        length: int = -1,
        part_size: int = 0,
        content_type: str = multipart.DEFAULT_CONTENT_TYPE,
        metadata: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> ObjectWriteResult:
        """Upload data as an object, as multipart when it spans several parts.

        ``length`` -1 means unknown and requires ``part_size``.
        """
        return multipart.put_object(
            self, bucket, object_name, data, length, part_size, content_type, metadata, headers
        )

    def upload_object(
        self,
        bucket: str,
        object_name: str,
        file_path: str,
        content_type: str | None = None,
        part_size: int = 0,
        metadata: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> ObjectWriteResult:
        return multipart.upload_object(
            self, bucket, object_name, file_path, content_type, part_size, metadata, headers
        )

    def compose_object(
        self,
        bucket: str,
        object_name: str,
        sources: list[compose.ComposeSource],
        metadata: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> ObjectWriteResult:
        return compose.compose_object(self, bucket, object_name, sources, metadata, headers)

    def remove_object(
        self,
        bucket: str,
        object_name: str,
        version_id: str | None = None,
        bypass_governance_mode: bool = False,
    ) -> None:
        headers = {"x-amz-bypass-governance-retention": "true"} if bypass_governance_mode else None
        query = {"versionId": version_id} if version_id else None
        self._execute("DELETE", bucket, object_name, headers=headers, query=query)

    def _delete_objects(
        self,
        bucket: str,
        objects: list[DeleteObject],
        quiet: bool = True,
        bypass_governance_mode: bool = False,
    ) -> list[DeleteError]:
        headers = {"x-amz-bypass-governance-retention": "true"} if bypass_governance_mode else None
        response = self._execute(
            "POST", bucket, body=DeleteRequest(objects, quiet), headers=headers, query={"delete": ""}
        )
        result = parse_error_or_result(
            response.content, "DeleteResult", parse_delete_result, response.status_code
        )
        if isinstance(result, S3Error):
            return [DeleteError(result.code, result.message, result.object_name)]
        return result or []

    def remove_objects(
        self,
        bucket: str,
        objects: Iterable[DeleteObject | str],
        bypass_governance_mode: bool = False,
    ) -> Iterator[ListResult[DeleteError]]:
        """Delete objects in batches of 1000, lazily yielding per-object failures.

        A failed batch request is yielded as an error result and ends the
        iteration.
        """
        pending = iter(objects)
        while True:
            batch = []
            for obj in pending:
                batch.append(obj if isinstance(obj, DeleteObject) else DeleteObject(obj))
                if len(batch) == REMOVE_OBJECTS_BATCH:
                    break
            if not batch:
                return
            try:
                errors = self._delete_objects(bucket, batch, True, bypass_governance_mode)
            except (S3WireError, httpx.HTTPError) as exc:
                yield ListResult(error=exc)
                return
            for error in errors:
                yield ListResult(error)

    # -- Listing -----------------------------------------------------------------

    def list_objects(
        self,
        bucket: str,
        prefix: str | None = None,
        recursive: bool = False,
        start_after: str | None = None,
        include_version: bool = False,
        use_api_v1: bool = False,
        use_url_encoding_type: bool = True,
        fetch_owner: bool = False,
        include_user_meta: bool = False,
        max_keys: int = DEFAULT_MAX_KEYS,
    ) -> PageIterator:
        """Lazily list objects; directories appear as ``is_dir`` items unless recursive."""
        delimiter = None if recursive else "/"
        if include_version:
            return VersionsIterator(
                self, bucket, prefix, delimiter, use_url_encoding_type, max_keys, start_after
            )
        if use_api_v1:
            return ObjectsV1Iterator(
                self, bucket, prefix, delimiter, use_url_encoding_type, max_keys, start_after
            )
        return ObjectsV2Iterator(
            self,
            bucket,
            prefix,
            delimiter,
            use_url_encoding_type,
            max_keys,
            start_after,
            fetch_owner,
            include_user_meta,
        )

    def list_incomplete_uploads(
        self,
        bucket: str,
        prefix: str | None = None,
        recursive: bool = False,
        aggregate_part_size: bool = True,
    ) -> UploadsIterator:
        delimiter = None if recursive else "/"
        return UploadsIterator(
            self, bucket, prefix, delimiter, aggregate_part_size=aggregate_part_size
        )

    def list_parts(self, bucket: str, object_name: str, upload_id: str) -> PartsIterator:
        return PartsIterator(self, bucket, object_name, upload_id)

    def remove_incomplete_upload(self, bucket: str, object_name: str) -> None:
        multipart.remove_incomplete_upload(self, bucket, object_name)

    # -- Multipart primitives ----------------------------------------------------

    def create_multipart_upload(
        self,
        bucket: str,
        object_name: str,
        headers: Mapping[str, str] | None = None,
        region: str | None = None,
    ) -> str:
        """Initiate a multipart upload and return its upload id."""
        request_headers = dict(headers or {})
        if not any(name.lower() == "content-type" for name in request_headers):
            request_headers["Content-Type"] = multipart.DEFAULT_CONTENT_TYPE
        response = self._execute(
            "POST", bucket, object_name, headers=request_headers, query={"uploads": ""}, region=region
        )
        root = parse_xml(response.content, response.status_code)
        upload_id = findtext(root, "UploadId")
        if not upload_id:
            raise ResponseFormatError(
                response.status_code, response.headers.get("content-type"), response.text
            )
        return upload_id

    def upload_part(
        self,
        bucket: str,
        object_name: str,
        data: Any,
        length: int,
        upload_id: str,
        part_number: int,
        headers: Mapping[str, str] | None = None,
    ) -> str:
        """Upload one part and return its ETag."""
        check_data_type(data)
        validate_part_number(part_number)
        response = self._execute(
            "PUT",
            bucket,
            object_name,
            body=data,
            length=length,
            headers=headers,
            query={"partNumber": str(part_number), "uploadId": upload_id},
        )
        return strip_etag(response.headers.get("etag")) or ""

    def upload_part_copy(
        self,
        bucket: str,
        object_name: str,
        upload_id: str,
        part_number: int,
        headers: Mapping[str, str],
    ) -> str:
        """Copy a source range into one part and return its ETag."""
        validate_part_number(part_number)
        response = self._execute(
            "PUT",
            bucket,
            object_name,
            headers=headers,
            query={"partNumber": str(part_number), "uploadId": upload_id},
        )
        root = parse_xml(response.content, response.status_code)
        return strip_etag(findtext(root, "ETag")) or ""

    def complete_multipart_upload(
        self,
        bucket: str,
        object_name: str,
        upload_id: str,
        parts: list[Part],
        extra_headers: Mapping[str, str] | None = None,
        extra_query: Mapping[str, str] | None = None,
        region: str | None = None,
    ) -> ObjectWriteResult:
        """Complete an upload from parts numbered exactly 1..N.

        A 200 response may embed an ``<Error>``; that is raised. A body
        matching neither schema still succeeds, without an ETag.
        """
        ordered = sorted(parts, key=lambda p: p.part_number)
        validate_part_numbers([p.part_number for p in ordered])

        query: dict[str, str] = {"uploadId": upload_id}
        query.update(extra_query or {})
        response = self._execute(
            "POST",
            bucket,
            object_name,
            body=CompleteMultipartUpload(ordered),
            headers=extra_headers,
            query=query,
            region=region,
        )
        result = parse_error_or_result(
            response.content,
            "CompleteMultipartUploadResult",
            parse_complete_multipart_upload,
            response.status_code,
        )
        if isinstance(result, S3Error):
            raise result

        version_id = response.headers.get("x-amz-version-id")
        if result is None:
            logger.warning(
                "Unrecognized CompleteMultipartUpload response for %s/%s; no ETag available",
                bucket,
                object_name,
                extra={"bucket": bucket, "object": object_name},
            )
            return ObjectWriteResult(bucket, object_name, None, version_id)

        logger.info(
            "Completed multipart upload %s of %s/%s with %d parts",
            upload_id,
            bucket,
            object_name,
            len(ordered),
        )
        return ObjectWriteResult(
            bucket=result["bucket"] or bucket,
            object_name=result["object_name"] or object_name,
            etag=result["etag"],
            version_id=version_id,
            location=result["location"],
        )

    def abort_multipart_upload(self, bucket: str, object_name: str, upload_id: str) -> None:
        self._execute("DELETE", bucket, object_name, query={"uploadId": upload_id})
        logger.info("Aborted multipart upload %s of %s/%s", upload_id, bucket, object_name)

    # -- Versioning --------------------------------------------------------------

    def enable_versioning(self, bucket: str) -> None:
        self._execute("PUT", bucket, body=VersioningConfiguration(ENABLED), query={"versioning": ""})

    def disable_versioning(self, bucket: str) -> None:
        self._execute("PUT", bucket, body=VersioningConfiguration(SUSPENDED), query={"versioning": ""})

    def is_versioning_enabled(self, bucket: str) -> bool:
        response = self._execute("GET", bucket, query={"versioning": ""})
        return findtext(parse_xml(response.content, response.status_code), "Status") == ENABLED

    # -- Object lock -------------------------------------------------------------

    def set_default_retention(self, bucket: str, mode: str, duration: int, unit: str) -> None:
        config = ObjectLockConfiguration(mode, duration, unit)
        self._execute("PUT", bucket, body=config, query={"object-lock": ""})

    def delete_default_retention(self, bucket: str) -> None:
        self._execute("PUT", bucket, body=ObjectLockConfiguration(), query={"object-lock": ""})

    def get_default_retention(self, bucket: str) -> ObjectLockConfiguration | None:
        response = self._get_optional(bucket, "object-lock")
        if response is None:
            return None
        return ObjectLockConfiguration.from_xml(parse_xml(response.content, response.status_code))

    def set_object_retention(
        self,
        bucket: str,
        object_name: str,
        retention: Retention,
        version_id: str | None = None,
        bypass_governance_mode: bool = False,
    ) -> None:
        query = {"retention": ""}
        if version_id:
            query["versionId"] = version_id
        headers = {"x-amz-bypass-governance-retention": "true"} if bypass_governance_mode else None
        self._execute("PUT", bucket, object_name, body=retention, headers=headers, query=query)

    def get_object_retention(
        self, bucket: str, object_name: str, version_id: str | None = None
    ) -> Retention | None:
        query = {"versionId": version_id} if version_id else None
        response = self._get_optional(bucket, "retention", object_name, query)
        if response is None:
            return None
        return Retention.from_xml(parse_xml(response.content, response.status_code))

    def enable_object_legal_hold(
        self, bucket: str, object_name: str, version_id: str | None = None
    ) -> None:
        self._set_legal_hold(bucket, object_name, True, version_id)

    def disable_object_legal_hold(
        self, bucket: str, object_name: str, version_id: str | None = None
    ) -> None:
        self._set_legal_hold(bucket, object_name, False, version_id)

    def _set_legal_hold(
        self, bucket: str, object_name: str, status: bool, version_id: str | None
    ) -> None:
        query = {"legal-hold": ""}
        if version_id:
            query["versionId"] = version_id
        self._execute("PUT", bucket, object_name, body=LegalHold(status), query=query)

    def is_object_legal_hold_enabled(
        self, bucket: str, object_name: str, version_id: str | None = None
    ) -> bool:
        query = {"versionId": version_id} if version_id else None
        response = self._get_optional(bucket, "legal-hold", object_name, query)
        if response is None:
            return False
        return LegalHold.from_xml(parse_xml(response.content, response.status_code)).status

    # -- Policy ------------------------------------------------------------------

    def get_bucket_policy(self, bucket: str) -> str:
        """Return the bucket policy JSON, or "" when none is set.

        Raises:
            PolicyTooLargeError: If the policy exceeds 12 KiB.
        """
        try:
            response = self._execute("GET", bucket, query={"policy": ""}, preload_content=False)
        except S3Error as exc:
            if exc.code == _NOT_FOUND_CODES["policy"]:
                return ""
            raise

        data = bytearray()
        try:
            for chunk in response.iter_bytes():
                data.extend(chunk)
                if len(data) > MAX_BUCKET_POLICY_SIZE:
                    raise PolicyTooLargeError(bucket, MAX_BUCKET_POLICY_SIZE)
        finally:
            response.close()
        return data.decode("utf-8")

    def set_bucket_policy(self, bucket: str, policy: str) -> None:
        self._execute(
            "PUT",
            bucket,
            body=policy,
            headers={"Content-Type": "application/json"},
            query={"policy": ""},
        )

    def delete_bucket_policy(self, bucket: str) -> None:
        self._execute("DELETE", bucket, query={"policy": ""})

    # -- Lifecycle ---------------------------------------------------------------

    def set_bucket_lifecycle(self, bucket: str, config: str) -> None:
        """Set the lifecycle configuration from a raw XML document."""
        if not config:
            raise InvalidArgument("lifecycle configuration must not be empty")
        self._execute("PUT", bucket, body=config, query={"lifecycle": ""})

    def get_bucket_lifecycle(self, bucket: str) -> str:
        response = self._get_optional(bucket, "lifecycle")
        return "" if response is None else response.text

    def delete_bucket_lifecycle(self, bucket: str) -> None:
        self._execute("DELETE", bucket, query={"lifecycle": ""})

    # -- Notification ------------------------------------------------------------

    def set_bucket_notification(self, bucket: str, config: str) -> None:
        """Set the notification configuration from a raw XML document."""
        self._execute("PUT", bucket, body=config, query={"notification": ""})

    def get_bucket_notification(self, bucket: str) -> str:
        response = self._execute("GET", bucket, query={"notification": ""})
        return response.text

    def delete_bucket_notification(self, bucket: str) -> None:
        self.set_bucket_notification(bucket, "<NotificationConfiguration/>")

    def listen_bucket_notification(
        self,
        bucket: str,
        prefix: str = "",
        suffix: str = "",
        events: Iterable[str] = ("s3:ObjectCreated:*", "s3:ObjectRemoved:*", "s3:ObjectAccessed:*"),
    ) -> NotificationIterator:
        """Stream bucket events; close the returned iterator when done."""
        query: dict[str, Any] = {"prefix": prefix, "suffix": suffix, "events": list(events)}
        response = self._execute("GET", bucket, query=query, preload_content=False)
        return NotificationIterator(response)

    # -- Encryption --------------------------------------------------------------

    def set_bucket_encryption(self, bucket: str, config: SSEConfig) -> None:
        self._execute("PUT", bucket, body=config, query={"encryption": ""})

    def get_bucket_encryption(self, bucket: str) -> SSEConfig | None:
        response = self._get_optional(bucket, "encryption")
        if response is None:
            return None
        return SSEConfig.from_xml(parse_xml(response.content, response.status_code))

    def delete_bucket_encryption(self, bucket: str) -> None:
        try:
            self._execute("DELETE", bucket, query={"encryption": ""})
        except S3Error as exc:
            if exc.code != _NOT_FOUND_CODES["encryption"]:
                raise

    # -- Tags --------------------------------------------------------------------

    def set_bucket_tags(self, bucket: str, tags: Mapping[str, str]) -> None:
        self._execute("PUT", bucket, body=Tagging(tags), query={"tagging": ""})

    def get_bucket_tags(self, bucket: str) -> dict[str, str]:
        response = self._get_optional(bucket, "tagging")
        if response is None:
            return {}
        return Tagging.from_xml(parse_xml(response.content, response.status_code)).tags

    def delete_bucket_tags(self, bucket: str) -> None:
        self._execute("DELETE", bucket, query={"tagging": ""})

    def set_object_tags(
        self,
        bucket: str,
        object_name: str,
        tags: Mapping[str, str],
        version_id: str | None = None,
    ) -> None:
        query = {"tagging": ""}
        if version_id:
            query["versionId"] = version_id
        self._execute("PUT", bucket, object_name, body=Tagging(tags), query=query)

    def get_object_tags(
        self, bucket: str, object_name: str, version_id: str | None = None
    ) -> dict[str, str]:
        query = {"versionId": version_id} if version_id else None
        response = self._get_optional(bucket, "tagging", object_name, query)
        if response is None:
            return {}
        return Tagging.from_xml(parse_xml(response.content, response.status_code)).tags

    def delete_object_tags(
        self, bucket: str, object_name: str, version_id: str | None = None
    ) -> None:
        query = {"tagging": ""}
        if version_id:
            query["versionId"] = version_id
        self._execute("DELETE", bucket, object_name, query=query)

    # -- Select ------------------------------------------------------------------

    def select_object_content(
        self, bucket: str, object_name: str, request: SelectRequest
    ) -> httpx.Response:
        """Run an S3 Select query; returns the live event-stream response."""
        return self._execute(
            "POST",
            bucket,
            object_name,
            body=request,
            query={"select": "", "select-type": "2"},
            preload_content=False,
        )

    # -- Presigned URLs ----------------------------------------------------------

    def get_presigned_url(
        self,
        method: str,
        bucket: str,
        object_name: str,
        expires: int = DEFAULT_EXPIRES,
        version_id: str | None = None,
        extra_query: Mapping[str, str] | None = None,
        request_date: datetime | None = None,
    ) -> str:
        """Return a presigned URL valid for ``expires`` seconds.

        Raises:
            InvalidExpiresRange: If ``expires`` is outside 1..604800.
            ConfigurationError: If the client has no credentials.
        """
        validate_expires(expires)
        if self._config.anonymous:
            raise ConfigurationError("presigned URLs require credentials")

        query: dict[str, str] = dict(extra_query or {})
        if version_id:
            query["versionId"] = version_id
        region = self._get_region(bucket)
        url = self._base_url.build(method, region, bucket, object_name, query or None)
        url = presign_v4(
            method,
            url,
            region,
            self._access_key,  # type: ignore[arg-type]
            self._secret_key,  # type: ignore[arg-type]
            request_date or datetime.now(timezone.utc),
            expires,
        )
        return urlunsplit(url)

    def presigned_get_object(
        self, bucket: str, object_name: str, expires: int = DEFAULT_EXPIRES, version_id: str | None = None
    ) -> str:
        return self.get_presigned_url("GET", bucket, object_name, expires, version_id)

    def presigned_put_object(self, bucket: str, object_name: str, expires: int = DEFAULT_EXPIRES) -> str:
        return self.get_presigned_url("PUT", bucket, object_name, expires)
