"""Error taxonomy for s3wire.

Client-side validation failures (addressing, configuration, arguments) are
raised before any network call and also derive from ``ValueError``.
Service failures are ``S3Error`` instances carrying the S3 error code and
enough request context for diagnosis.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from enum import Enum

import httpx

# Socket, TLS and timeout failures surface unchanged from the transport.
TransportError = httpx.TransportError


class S3WireError(Exception):
    """Base class for every error raised by s3wire itself."""


class AddressingError(S3WireError, ValueError):
    """Invalid bucket name, object name or endpoint."""


class InvalidBucketName(AddressingError):
    """The bucket name does not follow S3 naming rules."""

    def __init__(self, bucket: str, reason: str) -> None:
        super().__init__(f"invalid bucket name '{bucket}': {reason}")
        self.bucket = bucket
        self.reason = reason


class ConfigurationError(S3WireError, ValueError):
    """Conflicting or missing client configuration."""


class InvalidArgument(S3WireError, ValueError):
    """An argument passed to an operation is out of range or malformed."""


class InvalidExpiresRange(InvalidArgument):
    """Presigned URL expiry outside the allowed bounds."""

    def __init__(self, expires: int, minimum: int, maximum: int) -> None:
        super().__init__(
            f"expires must be between {minimum} and {maximum} seconds, got {expires}"
        )
        self.expires = expires


class ResponseFormatError(S3WireError):
    """The service returned a body or headers in an unexpected format.

    Attributes:
        status: HTTP status code of the response.
        content_type: Content-Type header value, if any.
        body: Decoded response body, if any.
    """

    def __init__(
        self,
        status: int,
        content_type: str | None,
        body: str | None = None,
        reason: str = "non-XML response from server",
    ) -> None:
        super().__init__(
            f"{reason}; status: {status}, "
            f"content-type: {content_type!r}, body: {body!r}"
        )
        self.status = status
        self.content_type = content_type
        self.body = body


class ServerError(S3WireError):
    """The service failed with a 5xx status and no error document."""

    def __init__(self, message: str, status: int) -> None:
        super().__init__(message)
        self.status = status


class InternalError(S3WireError):
    """An HTTP status this client does not know how to interpret."""

    def __init__(self, status: int) -> None:
        super().__init__(
            f"unhandled HTTP status code {status}; please report this as a bug "
            "in s3wire"
        )
        self.status = status


class PolicyTooLargeError(S3WireError):
    """The bucket policy returned by the service exceeds the size cap."""

    def __init__(self, bucket: str, limit: int) -> None:
        super().__init__(f"bucket policy of '{bucket}' is larger than {limit} bytes")
        self.bucket = bucket
        self.limit = limit


class ErrorCode(str, Enum):
    """Error kinds synthesized from a bare HTTP status code."""

    REDIRECT = "Redirect"
    RETRY_HEAD = "RetryHead"
    INVALID_URI = "InvalidURI"
    NO_SUCH_KEY = "NoSuchKey"
    NO_SUCH_BUCKET = "NoSuchBucket"
    RESOURCE_NOT_FOUND = "ResourceNotFound"
    ACCESS_DENIED = "AccessDenied"
    RESOURCE_CONFLICT = "ResourceConflict"
    METHOD_NOT_ALLOWED = "MethodNotAllowed"


_SYNTHESIZED_MESSAGES = {
    ErrorCode.REDIRECT: "Temporary redirect",
    ErrorCode.RETRY_HEAD: "Bucket region mismatch, retry HEAD request",
    ErrorCode.INVALID_URI: "Bad request",
    ErrorCode.NO_SUCH_KEY: "Object does not exist",
    ErrorCode.NO_SUCH_BUCKET: "Bucket does not exist",
    ErrorCode.RESOURCE_NOT_FOUND: "Request resource not found",
    ErrorCode.ACCESS_DENIED: "Access denied",
    ErrorCode.RESOURCE_CONFLICT: "Request resource conflicts",
    ErrorCode.METHOD_NOT_ALLOWED: "The specified method is not allowed against this resource",
}


class S3Error(S3WireError):
    """An error response from the S3 service.

    Attributes:
        code: The S3 error code string (e.g. "NoSuchBucket", "AccessDenied").
        message: Human-readable error description.
        resource: The request path that triggered the error.
        request_id: Value of the ``x-amz-request-id`` header or element.
        host_id: Secondary request id (``x-amz-id-2`` / ``HostId``).
        bucket: Bucket the request addressed, if any.
        object_name: Object the request addressed, if any.
        http_status: HTTP status code of the response, if known.
    """

    def __init__(
        self,
        code: str,
        message: str | None = None,
        resource: str | None = None,
        request_id: str | None = None,
        host_id: str | None = None,
        bucket: str | None = None,
        object_name: str | None = None,
        http_status: int | None = None,
    ) -> None:
        super().__init__(
            f"S3 operation failed; code: {code}, message: {message}, "
            f"resource: {resource}, request_id: {request_id}, host_id: {host_id}"
            + (f", bucket_name: {bucket}" if bucket else "")
            + (f", object_name: {object_name}" if object_name else "")
        )
        self.code = code
        self.message = message
        self.resource = resource
        self.request_id = request_id
        self.host_id = host_id
        self.bucket = bucket
        self.object_name = object_name
        self.http_status = http_status

    @classmethod
    def from_element(cls, element: ET.Element, http_status: int | None = None) -> "S3Error":
        """Build an error from a parsed ``<Error>`` element (namespace stripped)."""
        return cls(
            code=element.findtext("Code") or "",
            message=element.findtext("Message"),
            resource=element.findtext("Resource"),
            request_id=element.findtext("RequestId"),
            host_id=element.findtext("HostId"),
            bucket=element.findtext("BucketName"),
            object_name=element.findtext("Key"),
            http_status=http_status,
        )

    @classmethod
    def from_code(
        cls,
        code: ErrorCode,
        resource: str | None = None,
        request_id: str | None = None,
        host_id: str | None = None,
        bucket: str | None = None,
        object_name: str | None = None,
        http_status: int | None = None,
    ) -> "S3Error":
        """Synthesize an error for a response that carried no error document."""
        return cls(
            code=code.value,
            message=_SYNTHESIZED_MESSAGES[code],
            resource=resource,
            request_id=request_id,
            host_id=host_id,
            bucket=bucket,
            object_name=object_name,
            http_status=http_status,
        )
