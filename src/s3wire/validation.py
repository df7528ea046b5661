"""Client-side S3 input validation for s3wire.

These checks run before a request is built so that malformed input never
reaches the network. Each function raises an ``S3WireError`` subclass on
invalid input.
"""

import re

from s3wire.errors import AddressingError, InvalidArgument, InvalidBucketName, InvalidExpiresRange

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# S3 bucket naming rules enforced by the client:
#   - 3-63 characters
#   - lowercase letters, digits, hyphens, and periods
#   - must start and end with a letter or digit
#   - no consecutive periods ("..") allowed

_BUCKET_RE = re.compile(r"^[a-z0-9][a-z0-9.\-]+[a-z0-9]$")

MIN_PART_SIZE = 5 * 1024 * 1024  # 5 MiB
MAX_PART_SIZE = 5 * 1024 * 1024 * 1024  # 5 GiB
MAX_OBJECT_SIZE = 5 * 1024 * 1024 * 1024 * 1024  # 5 TiB
MAX_MULTIPART_COUNT = 10000

MIN_PRESIGNED_EXPIRES = 1
MAX_PRESIGNED_EXPIRES = 604800  # 7 days in seconds


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_bucket_name(name: str | None) -> None:
    """Validate a bucket name against S3 DNS-compatible naming rules.

    Args:
        name: The candidate bucket name.

    Raises:
        InvalidBucketName: If the name violates any naming rule.
    """
    if name is None:
        raise InvalidBucketName("(null)", "null bucket name")

    if len(name) < 3 or len(name) > 63:
        raise InvalidBucketName(
            name, "bucket name must be at least 3 and no more than 63 characters long"
        )

    if ".." in name:
        raise InvalidBucketName(name, "bucket name cannot contain successive periods")

    if not _BUCKET_RE.match(name):
        raise InvalidBucketName(name, "bucket name does not follow S3 standards")


def validate_object_name(name: str | None) -> None:
    """Validate an object name.

    Object names are split on ``/`` when placed in the URL path; ``.`` and
    ``..`` segments would be collapsed by HTTP stacks and are rejected.

    Raises:
        AddressingError: If the name is empty or has a dot segment.
    """
    if not name:
        raise AddressingError("object name cannot be empty")
    for token in name.split("/"):
        if token in (".", ".."):
            raise AddressingError(
                "object name with '.' or '..' path segment is not supported"
            )


def validate_expires(expires: int) -> None:
    """Validate a presigned URL expiry in seconds.

    Raises:
        InvalidExpiresRange: If ``expires`` is outside 1..604800.
    """
    if expires < MIN_PRESIGNED_EXPIRES or expires > MAX_PRESIGNED_EXPIRES:
        raise InvalidExpiresRange(expires, MIN_PRESIGNED_EXPIRES, MAX_PRESIGNED_EXPIRES)


def validate_part_number(part_number: int) -> None:
    """Validate a multipart part number (1..10000)."""
    if part_number < 1 or part_number > MAX_MULTIPART_COUNT:
        raise InvalidArgument(
            f"part number must be between 1 and {MAX_MULTIPART_COUNT}, got {part_number}"
        )


def validate_part_size(part_size: int) -> None:
    """Validate an explicit multipart part size.

    Raises:
        InvalidArgument: If the size is outside 5 MiB..5 GiB.
    """
    if part_size < MIN_PART_SIZE:
        raise InvalidArgument(f"part size {part_size} is not supported; minimum allowed 5MiB")
    if part_size > MAX_PART_SIZE:
        raise InvalidArgument(f"part size {part_size} is not supported; maximum allowed 5GiB")


def validate_part_numbers(part_numbers: list[int]) -> None:
    """Validate that sorted part numbers are exactly 1..N.

    Raises:
        InvalidArgument: If the list is empty or has a gap or duplicate.
    """
    if not part_numbers:
        raise InvalidArgument("at least one part is required to complete an upload")
    for expected, part_number in enumerate(part_numbers, start=1):
        if part_number != expected:
            raise InvalidArgument(
                f"part numbers must be contiguous from 1; expected {expected}, got {part_number}"
            )


def check_data_type(data: object) -> None:
    """Accept bytes-like, str, or a readable binary stream as object data.

    Raises:
        InvalidArgument: For any other type.
    """
    if isinstance(data, (bytes, bytearray, memoryview, str)):
        return
    if callable(getattr(data, "read", None)):
        return
    raise InvalidArgument("data must be bytes, bytearray, str or a readable binary stream")
