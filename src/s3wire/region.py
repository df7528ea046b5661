"""Bucket region discovery and the process-wide region cache."""

from __future__ import annotations

import logging
import threading
from typing import Callable

import s3wire.metrics as _metrics
from s3wire.errors import ConfigurationError
from s3wire.urls import BaseURL

logger = logging.getLogger(__name__)

US_EAST_1 = "us-east-1"

# Legacy location constraint values and the region they stand for.
_REGION_ALIASES = {"EU": "eu-west-1"}


class RegionCache:
    """Thread-safe bucket name to region mapping.

    Concurrent lookups for the same bucket may both populate the entry;
    the last writer wins and both values are equal.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._regions: dict[str, str] = {}

    def get(self, bucket: str) -> str | None:
        with self._lock:
            return self._regions.get(bucket)

    def set(self, bucket: str, region: str) -> None:
        with self._lock:
            self._regions[bucket] = region

    def remove(self, bucket: str) -> None:
        with self._lock:
            self._regions.pop(bucket, None)

    def clear(self) -> None:
        with self._lock:
            self._regions.clear()


# Shared by every client constructed without an explicit cache.
default_region_cache = RegionCache()


def normalize_location(location: str | None) -> str:
    """Map a ``LocationConstraint`` value to a region id."""
    if not location:
        return US_EAST_1
    return _REGION_ALIASES.get(location, location)


class RegionResolver:
    """Resolves the region a request for a bucket must be signed for.

    Args:
        base_url: The client's parsed endpoint; its ``region`` is the fixed
            region, if any.
        cache: Region cache to consult and populate.
        has_credentials: Whether the client is authenticated.
        lookup: Performs the location query for a bucket against
            ``us-east-1`` and returns the raw ``LocationConstraint`` text.
    """

    def __init__(
        self,
        base_url: BaseURL,
        cache: RegionCache,
        has_credentials: bool,
        lookup: Callable[[str], str | None],
    ) -> None:
        self.base_url = base_url
        self.cache = cache
        self.has_credentials = has_credentials
        self._lookup = lookup

    def resolve(self, bucket: str | None = None, region: str | None = None) -> str:
        """Return the region for ``bucket``.

        Raises:
            ConfigurationError: If ``region`` conflicts with the client's
                fixed region.
        """
        fixed = self.base_url.region
        if region:
            if fixed and fixed != region:
                raise ConfigurationError(f"region must be {fixed}, but passed {region}")
            return region

        if fixed:
            return fixed

        if not self.base_url.is_aws_host or not bucket or not self.has_credentials:
            return US_EAST_1

        cached = self.cache.get(bucket)
        if cached:
            return cached

        if _metrics.region_lookups_total is not None:
            _metrics.region_lookups_total.inc()
        resolved = normalize_location(self._lookup(bucket))
        logger.debug("Resolved region of bucket %s: %s", bucket, resolved)
        self.cache.set(bucket, resolved)
        return resolved
