"""Tests for the downstream client cache."""

import threading
import pytest
from unittest.mock import MagicMock

from outrider.clients import DownstreamClientCache
from outrider.errors import ClusterConnectError, KubeconfigNotFoundError


@pytest.fixture
def resolver():
    resolver = MagicMock()
    resolver.resolve.side_effect = lambda cluster_id, internal_name=None: MagicMock(
        name=f"client-{cluster_id}")
    return resolver


def test_hit_does_not_resolve_again(resolver):
    cache = DownstreamClientCache(resolver)

    first = cache.get("c1")
    second = cache.get("c1")

    assert first is second
    resolver.resolve.assert_called_once_with("c1", None)
    assert "c1" in cache
    assert len(cache) == 1


def test_invalidate_forces_fresh_resolution(resolver):
    cache = DownstreamClientCache(resolver)
    first = cache.get("c1")

    cache.invalidate("c1")
    second = cache.get("c1")

    assert first is not second
    assert resolver.resolve.call_count == 2


def test_invalidate_unknown_cluster_is_noop(resolver):
    cache = DownstreamClientCache(resolver)
    cache.get("c1")

    cache.invalidate("c2")
    cache.invalidate("c1")
    cache.invalidate("c1")

    assert len(cache) == 0


def test_resolution_failure_is_not_cached(resolver):
    resolver.resolve.side_effect = KubeconfigNotFoundError("c1", "secret missing")
    cache = DownstreamClientCache(resolver)

    with pytest.raises(KubeconfigNotFoundError):
        cache.get("c1")

    assert "c1" not in cache


def test_connect_failure_propagates(resolver):
    resolver.resolve.side_effect = ClusterConnectError("c1", "handshake failed")
    cache = DownstreamClientCache(resolver)

    with pytest.raises(ClusterConnectError) as exc_info:
        cache.get("c1")

    assert exc_info.value.cluster_id == "c1"
    assert str(exc_info.value) == "ConnectError for cluster 'c1': handshake failed"


def test_retain_evicts_vanished_clusters(resolver):
    cache = DownstreamClientCache(resolver)
    for cluster_id in ["c1", "c2", "c3"]:
        cache.get(cluster_id)

    cache.retain(["c1", "c3"])

    assert "c1" in cache
    assert "c2" not in cache
    assert "c3" in cache


def test_losing_a_resolve_race_keeps_the_first_client():
    resolver = MagicMock()
    slow, fast = MagicMock(name="slow"), MagicMock(name="fast")
    cache = DownstreamClientCache(resolver)

    def resolve(cluster_id, internal_name=None):
        if resolver.resolve.call_count == 1:
            # Another caller resolves and inserts while this one is still working
            assert cache.get(cluster_id) is fast
            return slow
        return fast

    resolver.resolve.side_effect = resolve

    assert cache.get("c1") is fast
    slow.close.assert_called_once()
    fast.close.assert_not_called()
    assert cache.get("c1") is fast


def test_concurrent_gets_share_one_client(resolver):
    cache = DownstreamClientCache(resolver)
    results = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        results.append(cache.get("c1"))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5)

    assert len(results) == 8
    assert all(r is results[0] for r in results)
    assert len(cache) == 1


def test_clear_closes_clients(resolver):
    cache = DownstreamClientCache(resolver)
    c1 = cache.get("c1")
    c2 = cache.get("c2")

    cache.clear()

    c1.close.assert_called_once()
    c2.close.assert_called_once()
    assert len(cache) == 0


def test_internal_name_is_passed_to_resolver(resolver):
    cache = DownstreamClientCache(resolver)

    cache.get("prod", "c-m-abc123")

    resolver.resolve.assert_called_once_with("prod", "c-m-abc123")
    assert "prod" in cache
