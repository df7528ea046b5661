"""Tests for bucket region resolution and caching."""

import threading

import pytest

from s3wire.errors import ConfigurationError
from s3wire.region import US_EAST_1, RegionCache, RegionResolver, normalize_location
from s3wire.urls import BaseURL


def _resolver(endpoint="https://s3.amazonaws.com", region=None, credentials=True, location="eu-west-2"):
    calls = []

    def lookup(bucket):
        calls.append(bucket)
        return location

    cache = RegionCache()
    resolver = RegionResolver(BaseURL(endpoint, region), cache, credentials, lookup)
    return resolver, cache, calls


class TestRegionCache:
    """Tests for RegionCache."""

    def test_set_get_remove(self):
        cache = RegionCache()
        assert cache.get("data") is None
        cache.set("data", "eu-west-1")
        assert cache.get("data") == "eu-west-1"
        cache.remove("data")
        assert cache.get("data") is None

    def test_remove_missing_is_noop(self):
        RegionCache().remove("nothing")

    def test_clear(self):
        cache = RegionCache()
        cache.set("a", "x")
        cache.clear()
        assert cache.get("a") is None

    def test_concurrent_population(self):
        """Threads resolving the same buckets all see a consistent region."""
        cache = RegionCache()
        barrier = threading.Barrier(8)
        seen = []

        def populate():
            barrier.wait()
            for i in range(200):
                cache.set(f"bucket-{i}", f"region-{i % 5}")
                seen.append(cache.get(f"bucket-{i}") == f"region-{i % 5}")

        threads = [threading.Thread(target=populate) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(seen) == 8 * 200
        assert all(seen)
        assert all(cache.get(f"bucket-{i}") == f"region-{i % 5}" for i in range(200))


class TestNormalizeLocation:
    """Tests for normalize_location()."""

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty_is_us_east_1(self, value):
        assert normalize_location(value) == US_EAST_1

    def test_eu_alias(self):
        assert normalize_location("EU") == "eu-west-1"

    def test_passthrough(self):
        assert normalize_location("ap-south-1") == "ap-south-1"


class TestRegionResolver:
    """Tests for RegionResolver.resolve()."""

    def test_fixed_region(self):
        resolver, _, calls = _resolver(region="us-west-1")
        assert resolver.resolve("data") == "us-west-1"
        assert calls == []

    def test_explicit_region_conflict(self):
        resolver, _, _ = _resolver(region="us-west-1")
        with pytest.raises(ConfigurationError, match="region must be us-west-1"):
            resolver.resolve("data", "eu-west-1")

    def test_explicit_region_matches_fixed(self):
        resolver, _, _ = _resolver(region="us-west-1")
        assert resolver.resolve("data", "us-west-1") == "us-west-1"

    def test_explicit_region_without_fixed(self):
        resolver, _, calls = _resolver()
        assert resolver.resolve("data", "sa-east-1") == "sa-east-1"
        assert calls == []

    def test_non_aws_host_is_us_east_1(self):
        resolver, _, calls = _resolver(endpoint="http://localhost:9000")
        assert resolver.resolve("data") == US_EAST_1
        assert calls == []

    def test_no_bucket_is_us_east_1(self):
        resolver, _, calls = _resolver()
        assert resolver.resolve() == US_EAST_1
        assert calls == []

    def test_anonymous_is_us_east_1(self):
        resolver, _, calls = _resolver(credentials=False)
        assert resolver.resolve("data") == US_EAST_1
        assert calls == []

    def test_lookup_is_cached(self):
        resolver, cache, calls = _resolver()
        assert resolver.resolve("data") == "eu-west-2"
        assert resolver.resolve("data") == "eu-west-2"
        assert calls == ["data"]
        assert cache.get("data") == "eu-west-2"

    def test_lookup_normalizes(self):
        resolver, _, _ = _resolver(location="EU")
        assert resolver.resolve("data") == "eu-west-1"

    def test_lookup_empty_location(self):
        resolver, _, _ = _resolver(location=None)
        assert resolver.resolve("data") == US_EAST_1
