"""Cache of API clients for downstream clusters."""

import logging
import threading
import time
from dataclasses import dataclass

from prometheus_client import Counter

logger = logging.getLogger("outrider.clients")

CLIENT_CACHE_MISSES = Counter(
    'outrider_client_cache_misses_total', 'Total number of downstream client cache misses')
CLIENT_CACHE_EVICTIONS = Counter(
    'outrider_client_cache_evictions_total', 'Total number of downstream clients evicted')


@dataclass
class ClientCacheEntry:
    cluster_id: str
    client: object
    created_at: float


class DownstreamClientCache:
    """
    Maps cluster id to a ready-to-use API client.

    Entries are built on demand through the CredentialResolver and evicted
    when a cluster disappears or a request made with the client fails on
    authentication or transport. Only the map itself is locked: resolving
    happens outside the lock and callers use returned clients independently.
    """

    def __init__(self, resolver):
        self.resolver = resolver
        self._entries = {}
        self._lock = threading.Lock()

    def get(self, cluster_id, internal_name=None):
        with self._lock:
            entry = self._entries.get(cluster_id)
        if entry is not None:
            return entry.client

        CLIENT_CACHE_MISSES.inc()
        logger.debug(f"No cached client for cluster '{cluster_id}', resolving credentials.")
        api_client = self.resolver.resolve(cluster_id, internal_name)

        with self._lock:
            existing = self._entries.get(cluster_id)
            if existing is None:
                self._entries[cluster_id] = ClientCacheEntry(
                    cluster_id, api_client, time.time())
                return api_client

        # Another caller resolved the same cluster first; keep theirs
        api_client.close()
        return existing.client

    def invalidate(self, cluster_id):
        with self._lock:
            entry = self._entries.pop(cluster_id, None)
        if entry is not None:
            CLIENT_CACHE_EVICTIONS.inc()
            logger.info(f"Evicted cached client for cluster '{cluster_id}'.")

    def retain(self, cluster_ids):
        """Evict every entry whose cluster is not in cluster_ids."""
        keep = set(cluster_ids)
        with self._lock:
            stale = [cluster_id for cluster_id in self._entries if cluster_id not in keep]
        for cluster_id in stale:
            logger.info(f"Cluster '{cluster_id}' no longer exists.")
            self.invalidate(cluster_id)

    def clear(self):
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
        for entry in entries:
            entry.client.close()

    def __contains__(self, cluster_id):
        with self._lock:
            return cluster_id in self._entries

    def __len__(self):
        with self._lock:
            return len(self._entries)
