"""AWS Signature Version 4 request signing for s3wire.

Implements the client half of SigV4: content hashing, header-based signing
of outgoing requests and query-string signing for presigned URLs.

References:
    - https://docs.aws.amazon.com/AmazonS3/latest/API/sig-v4-authenticating-requests.html
"""

import base64
import hashlib
import hmac
import re
import urllib.parse
from datetime import datetime
from urllib.parse import SplitResult

from s3wire.validation import validate_expires

# Constants
ALGORITHM = "AWS4-HMAC-SHA256"
KEY_PREFIX = "AWS4"
SCOPE_TERMINATOR = "aws4_request"
SERVICE_NAME = "s3"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
DEFAULT_EXPIRES = 604800  # 7 days in seconds

# Headers that never take part in the signature
_IGNORED_HEADERS = frozenset({"authorization", "user-agent", "accept-encoding"})


# ---------------------------------------------------------------------------
# Time formatting
# ---------------------------------------------------------------------------


def to_amz_date(date: datetime) -> str:
    """Format a UTC datetime as an ``x-amz-date`` value (YYYYMMDDTHHMMSSZ)."""
    return date.strftime("%Y%m%dT%H%M%SZ")


def to_signer_date(date: datetime) -> str:
    """Format a UTC datetime as a credential scope date (YYYYMMDD)."""
    return date.strftime("%Y%m%d")


# ---------------------------------------------------------------------------
# Content hashing
# ---------------------------------------------------------------------------


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def md5_base64(data: bytes) -> str:
    return base64.b64encode(hashlib.md5(data).digest()).decode("ascii")


def content_hashes(
    body: bytes | None, https: bool, anonymous: bool
) -> tuple[str | None, str | None]:
    """Compute the ``x-amz-content-sha256`` and ``Content-MD5`` values.

    Over HTTPS the payload hash is the ``UNSIGNED-PAYLOAD`` sentinel and only
    an MD5 of a present body is sent. Over plain HTTP both hashes are
    computed, over an empty body when there is none. Anonymous requests carry
    no payload hash at all.

    Args:
        body: The request body, or None when the request has no body.
        https: Whether the endpoint is HTTPS.
        anonymous: Whether the client has no credentials.

    Returns:
        A ``(sha256, md5)`` tuple; either element may be None.
    """
    if anonymous:
        return None, md5_base64(body) if body is not None else None

    if https:
        return UNSIGNED_PAYLOAD, md5_base64(body) if body is not None else None

    data = body if body is not None else b""
    return sha256_hex(data), md5_base64(data)


# ---------------------------------------------------------------------------
# Signing
# ---------------------------------------------------------------------------


def derive_signing_key(secret_key: str, date: str, region: str, service: str) -> bytes:
    """Derive the SigV4 signing key via the HMAC-SHA256 chain.

    Args:
        secret_key: The secret access key.
        date: Date string (YYYYMMDD).
        region: AWS region.
        service: AWS service name.

    Returns:
        The 32-byte signing key.
    """
    k_date = hmac.new(
        (KEY_PREFIX + secret_key).encode("utf-8"),
        date.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    k_region = hmac.new(k_date, region.encode("utf-8"), hashlib.sha256).digest()
    k_service = hmac.new(k_region, service.encode("utf-8"), hashlib.sha256).digest()
    k_signing = hmac.new(k_service, SCOPE_TERMINATOR.encode("utf-8"), hashlib.sha256).digest()
    return k_signing


def credential_scope(date: datetime, region: str) -> str:
    return f"{to_signer_date(date)}/{region}/{SERVICE_NAME}/{SCOPE_TERMINATOR}"


def sign_v4_s3(
    method: str,
    url: SplitResult,
    region: str,
    headers: dict[str, str],
    access_key: str,
    secret_key: str,
    content_sha256: str,
    date: datetime,
) -> dict[str, str]:
    """Sign an outgoing request with an ``Authorization`` header.

    ``headers`` must already hold ``Host``, ``x-amz-date`` and
    ``x-amz-content-sha256``. A copy with ``Authorization`` added is
    returned.
    """
    scope = credential_scope(date, region)
    canonical_headers, signed_headers = _build_canonical_headers(headers)
    canonical_request = _build_canonical_request(
        method,
        url.path,
        _build_canonical_query_string(url.query),
        canonical_headers,
        signed_headers,
        content_sha256,
    )
    string_to_sign = _build_string_to_sign(to_amz_date(date), scope, canonical_request)
    signing_key = derive_signing_key(secret_key, to_signer_date(date), region, SERVICE_NAME)
    signature = _compute_signature(signing_key, string_to_sign)

    signed = dict(headers)
    signed["Authorization"] = (
        f"{ALGORITHM} Credential={access_key}/{scope}, "
        f"SignedHeaders={signed_headers}, Signature={signature}"
    )
    return signed


def presign_v4(
    method: str,
    url: SplitResult,
    region: str,
    access_key: str,
    secret_key: str,
    date: datetime,
    expires: int = DEFAULT_EXPIRES,
) -> SplitResult:
    """Return ``url`` with SigV4 query-string authentication appended.

    Only the ``host`` header is signed and the payload hash is
    ``UNSIGNED-PAYLOAD``.

    Raises:
        InvalidExpiresRange: If ``expires`` is outside 1..604800 seconds.
    """
    validate_expires(expires)

    scope = credential_scope(date, region)
    auth_params = [
        ("X-Amz-Algorithm", ALGORITHM),
        ("X-Amz-Credential", f"{access_key}/{scope}"),
        ("X-Amz-Date", to_amz_date(date)),
        ("X-Amz-Expires", str(expires)),
        ("X-Amz-SignedHeaders", "host"),
    ]
    query = url.query
    encoded = "&".join(f"{uri_encode(k)}={uri_encode(v)}" for k, v in auth_params)
    query = f"{query}&{encoded}" if query else encoded

    canonical_request = _build_canonical_request(
        method,
        url.path,
        _build_canonical_query_string(query),
        f"host:{url.netloc}\n",
        "host",
        UNSIGNED_PAYLOAD,
    )
    string_to_sign = _build_string_to_sign(to_amz_date(date), scope, canonical_request)
    signing_key = derive_signing_key(secret_key, to_signer_date(date), region, SERVICE_NAME)
    signature = _compute_signature(signing_key, string_to_sign)

    return url._replace(query=f"{query}&X-Amz-Signature={signature}")


# ---------------------------------------------------------------------------
# Canonical request construction
# ---------------------------------------------------------------------------


def _build_canonical_headers(headers: dict[str, str]) -> tuple[str, str]:
    """Build the canonical headers block and the signed headers list.

    Returns:
        A ``(canonical_headers, signed_headers)`` tuple.
    """
    lower_headers: dict[str, str] = {}
    for name, value in headers.items():
        lower_name = name.lower()
        if lower_name in _IGNORED_HEADERS:
            continue
        if lower_name in lower_headers:
            # Multiple same headers: join with comma
            lower_headers[lower_name] += "," + _trim_header_value(value)
        else:
            lower_headers[lower_name] = _trim_header_value(value)

    sorted_names = sorted(lower_headers)
    canonical_headers = "".join(f"{name}:{lower_headers[name]}\n" for name in sorted_names)
    return canonical_headers, ";".join(sorted_names)


def _build_canonical_request(
    method: str,
    canonical_uri: str,
    canonical_query: str,
    canonical_headers: str,
    signed_headers: str,
    payload_hash: str,
) -> str:
    """Assemble the canonical request string.

    The URI is already percent-encoded by the address builder and is used
    verbatim.
    """
    parts = [
        method,
        canonical_uri or "/",
        canonical_query,
        canonical_headers,
        signed_headers,
        payload_hash,
    ]
    return "\n".join(parts)


def _build_string_to_sign(timestamp: str, scope: str, canonical_request: str) -> str:
    canonical_hash = hashlib.sha256(canonical_request.encode("utf-8")).hexdigest()
    return f"{ALGORITHM}\n{timestamp}\n{scope}\n{canonical_hash}"


def _compute_signature(signing_key: bytes, string_to_sign: str) -> str:
    return hmac.new(signing_key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()


def uri_encode(s: str, encode_slash: bool = True) -> str:
    """S3-compatible URI encoding.

    Characters A-Z, a-z, 0-9, '-', '_', '.', '~' are not encoded.
    All other characters are percent-encoded with uppercase hex.
    Spaces become %20 (not +).

    Args:
        s: The string to encode.
        encode_slash: If True (default), '/' is encoded as %2F.
                     If False, '/' is left as-is.

    Returns:
        The URI-encoded string.
    """
    safe = "-_.~" if encode_slash else "-_.~/"
    return urllib.parse.quote(s, safe=safe)


def _build_canonical_query_string(query_string: str) -> str:
    """Build the canonical query string from an encoded query string.

    Parameters are sorted by name (byte-order), then by value.
    Each name and value is URI-encoded. Parameters with no value
    use empty value (e.g., 'uploads=').

    Args:
        query_string: The query string (without leading '?').

    Returns:
        The canonical query string.
    """
    if not query_string:
        return ""

    params: list[tuple[str, str]] = []
    for pair in query_string.split("&"):
        if not pair:
            continue
        if "=" in pair:
            name, value = pair.split("=", 1)
        else:
            name = pair
            value = ""
        params.append((urllib.parse.unquote(name), urllib.parse.unquote(value)))

    # Sort by name first, then by value (byte-order)
    params.sort()

    return "&".join(f"{uri_encode(name)}={uri_encode(value)}" for name, value in params)


def _trim_header_value(value: str) -> str:
    """Strip a header value and collapse runs of spaces to one."""
    return re.sub(r" +", " ", value.strip())
