"""s3wire: a client library for S3-compatible object storage."""

from s3wire.client import S3Client, __version__
from s3wire.compose import ComposeSource
from s3wire.config import AppConfig, ClientConfig, load_config
from s3wire.errors import (
    AddressingError,
    ConfigurationError,
    ErrorCode,
    InternalError,
    InvalidArgument,
    InvalidBucketName,
    InvalidExpiresRange,
    PolicyTooLargeError,
    ResponseFormatError,
    S3Error,
    S3WireError,
    ServerError,
    TransportError,
)
from s3wire.listing import ListResult
from s3wire.models import DeleteObject, Retention, SelectRequest, SSEConfig
from s3wire.multipart import MultipartSession
from s3wire.region import RegionCache
from s3wire.service import FileOpResponse, StorageService

__all__ = [
    "AddressingError",
    "AppConfig",
    "ClientConfig",
    "ComposeSource",
    "ConfigurationError",
    "DeleteObject",
    "ErrorCode",
    "FileOpResponse",
    "InternalError",
    "InvalidArgument",
    "InvalidBucketName",
    "InvalidExpiresRange",
    "ListResult",
    "MultipartSession",
    "PolicyTooLargeError",
    "RegionCache",
    "ResponseFormatError",
    "Retention",
    "S3Client",
    "S3Error",
    "S3WireError",
    "SSEConfig",
    "SelectRequest",
    "ServerError",
    "StorageService",
    "TransportError",
    "__version__",
    "load_config",
]
