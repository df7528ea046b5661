"""Endpoint parsing and request URL construction for s3wire."""

from __future__ import annotations

import ipaddress
import re
from typing import Mapping, Union
from urllib.parse import SplitResult, urlsplit

from s3wire.errors import AddressingError, ConfigurationError
from s3wire.signer import uri_encode
from s3wire.validation import validate_bucket_name, validate_object_name

# Query values are a single string or a list for repeated keys.
QueryParams = Mapping[str, Union[str, list[str]]]

_HOST_LABEL_RE = re.compile(r"^[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?$")

_DEFAULT_PORTS = {"http": 80, "https": 443}


def _is_aws_accelerate_host(host: str) -> bool:
    return host.startswith("s3-accelerate.")


def _is_aws_host(host: str) -> bool:
    return (host.startswith("s3.") or _is_aws_accelerate_host(host)) and (
        host.endswith(".amazonaws.com") or host.endswith(".amazonaws.com.cn")
    )


def _extract_region(host: str) -> str | None:
    """Return the region embedded in an AWS host, if any.

    The region is the second label of a regular host and the third label of
    a dual-stack host, e.g. ``s3.dualstack.ca-central-1.amazonaws.com``.
    """
    tokens = host.split(".")
    token = tokens[1]
    if token == "dualstack":
        token = tokens[2]
    if token == "amazonaws":
        return None
    return token


def _validate_host(host: str) -> None:
    try:
        ipaddress.ip_address(host.strip("[]"))
        return
    except ValueError:
        pass

    if len(host) < 1 or len(host) > 253:
        raise AddressingError(f"invalid hostname '{host}'")
    for label in host.split("."):
        if not _HOST_LABEL_RE.match(label) or len(label) > 63:
            raise AddressingError(f"invalid hostname '{host}'")


def encode_query(query: QueryParams | None) -> str:
    """Percent-encode query parameters in insertion order.

    Flags with an empty value are emitted as ``key=``. The result is
    byte-identical for identical input, which signing relies on.
    """
    if not query:
        return ""
    pairs = []
    for key, value in query.items():
        values = value if isinstance(value, list) else [value]
        for item in values:
            pairs.append(f"{uri_encode(key)}={uri_encode(item)}")
    return "&".join(pairs)


class BaseURL:
    """A parsed S3 endpoint and the addressing rules derived from it.

    Attributes:
        scheme: ``http`` or ``https``.
        host: Host name; AWS hosts are normalized to ``amazonaws.com`` or
            ``amazonaws.com.cn`` so the service prefix can be rebuilt per
            request.
        port: Explicit non-default port, or None.
        region: Region given explicitly or embedded in an AWS host.
        is_aws_host: Whether the endpoint is an Amazon S3 host.
        accelerate: Whether the transfer-acceleration host is used.
        dual_stack: Whether the dual-stack host is used.
        virtual_style: Whether buckets are addressed as subdomains.
    """

    def __init__(
        self,
        endpoint: str,
        region: str | None = None,
        virtual_style: bool | None = None,
    ) -> None:
        if not endpoint:
            raise AddressingError("endpoint must be a non-empty string")

        url = urlsplit(endpoint if "://" in endpoint else f"https://{endpoint}")
        if url.scheme not in _DEFAULT_PORTS:
            raise AddressingError(f"unsupported scheme '{url.scheme}' in endpoint {endpoint}")
        if url.path not in ("", "/") or url.query or url.fragment:
            raise AddressingError(f"no path allowed in endpoint {endpoint}")

        try:
            port = url.port
        except ValueError as exc:
            raise AddressingError("port must be in range of 1 to 65535") from exc
        if port is not None and (port < 1 or port > 65535):
            raise AddressingError("port must be in range of 1 to 65535")

        host = url.hostname or ""
        _validate_host(host)

        self.scheme = url.scheme
        self.port = None if port == _DEFAULT_PORTS[url.scheme] else port
        self.is_aws_host = _is_aws_host(host)
        self.accelerate = False
        self.dual_stack = False
        region_in_url = None
        if self.is_aws_host:
            is_china = host.endswith(".cn")
            self.accelerate = _is_aws_accelerate_host(host)
            self.dual_stack = ".dualstack." in host
            region_in_url = _extract_region(host)
            self.host = "amazonaws.com.cn" if is_china else "amazonaws.com"
            if is_china and not region and not region_in_url:
                raise ConfigurationError(
                    f"region missing in Amazon S3 China endpoint {endpoint}"
                )
            derived_virtual = True
        else:
            self.host = host
            derived_virtual = host.endswith("aliyuncs.com")

        self.region = region or region_in_url
        self.virtual_style = derived_virtual if virtual_style is None else virtual_style

    @property
    def is_https(self) -> bool:
        return self.scheme == "https"

    def _netloc(self, host: str) -> str:
        return f"{host}:{self.port}" if self.port else host

    def build(
        self,
        method: str,
        region: str,
        bucket: str | None = None,
        object_name: str | None = None,
        query: QueryParams | None = None,
    ) -> SplitResult:
        """Build the request URL for a bucket/object.

        Path style is forced for make-bucket requests, location queries, and
        dotted bucket names over HTTPS; otherwise the endpoint's addressing
        style applies.

        Raises:
            AddressingError: On an object without a bucket, an invalid bucket
                or object name, or a dotted bucket on an accelerated host.
        """
        if bucket is None and object_name is not None:
            raise AddressingError(f"null bucket name for object '{object_name}'")

        host = self.host
        path = "/"
        if bucket is not None:
            validate_bucket_name(bucket)

            enforce_path_style = (
                (method == "PUT" and object_name is None and not query)
                or (query is not None and "location" in query)
                or ("." in bucket and self.is_https)
            )

            if self.is_aws_host:
                s3_domain = "s3."
                if self.accelerate:
                    if "." in bucket:
                        raise AddressingError(
                            f"bucket name '{bucket}' with '.' is not allowed for "
                            "accelerated endpoint"
                        )
                    if not enforce_path_style:
                        s3_domain = "s3-accelerate."

                domain = s3_domain + ("dualstack." if self.dual_stack else "")
                if enforce_path_style or not self.accelerate:
                    domain += f"{region}."
                host = domain + host

            if enforce_path_style or not self.virtual_style:
                path = f"/{uri_encode(bucket)}"
            else:
                host = f"{bucket}.{host}"
                path = ""

            if object_name is not None:
                validate_object_name(object_name)
                path = f"{path}/{uri_encode(object_name, encode_slash=False)}"
            elif not path:
                path = "/"
        elif self.is_aws_host:
            host = f"s3.{region}.{host}"

        return SplitResult(
            scheme=self.scheme,
            netloc=self._netloc(host),
            path=path,
            query=encode_query(query),
            fragment="",
        )
