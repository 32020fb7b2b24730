"""Outrider operator - watches secrets and clusters and drives both reconciliation loops."""

import logging
import threading
from kubernetes import watch
from kubernetes.client.rest import ApiException
from typing import Any, Dict

from .constants import (
    CLUSTER_GROUP,
    CLUSTER_PLURAL,
    CLUSTER_VERSION,
    KUBECONFIG_SUFFIX,
    LOCAL_CLUSTER,
    WATCH_TIMEOUT_SECONDS,
)
from .crd import wait_for_cluster_crd
from .models import is_secret_enabled
from .scheduler import RequeueScheduler
from .utils import resource_version

logger = logging.getLogger("outrider")


class Operator:
    """Feeds watch events for secrets and clusters into one scheduler per loop."""

    def __init__(self, v1_api, custom_api, config, secret_reconciler,
                 cluster_reconciler, client_cache):
        self.v1_api = v1_api
        self.custom_api = custom_api
        self.config = config
        self.client_cache = client_cache
        self.secret_scheduler = RequeueScheduler(
            "secret", secret_reconciler.reconcile, workers=config.workers)
        self.cluster_scheduler = RequeueScheduler(
            "cluster", cluster_reconciler.reconcile, workers=config.workers)
        self._shutdown = threading.Event()
        self._threads = []

    def shutdown(self):
        """Signal the operator to shutdown gracefully."""
        logger.info("Shutdown signal received. Stopping operator...")
        self._shutdown.set()
        self.secret_scheduler.shutdown()
        self.cluster_scheduler.shutdown()

    def run(self):
        """Main entry point for the operator. Blocks until shutdown."""
        logger.info("Waiting for Rancher Cluster CRD to become available...")
        if not wait_for_cluster_crd(self.v1_api.api_client, self._shutdown):
            logger.info("Shutdown requested before the Cluster CRD became available.")
            return

        self._threads = [
            threading.Thread(target=self.secret_scheduler.run, name="secret-scheduler"),
            threading.Thread(target=self.cluster_scheduler.run, name="cluster-scheduler"),
            threading.Thread(target=self.watch_secrets, name="secret-watch", daemon=True),
            threading.Thread(target=self.watch_clusters, name="cluster-watch", daemon=True),
        ]
        for thread in self._threads:
            thread.start()

        logger.info("Starting continuous watch...")
        self._shutdown.wait()

        for thread in self._threads:
            thread.join(timeout=WATCH_TIMEOUT_SECONDS * 2)
        self.client_cache.clear()

    def watch_secrets(self):
        """Watch secrets in all namespaces."""
        self._watch("secret", self.handle_secret_event,
                    self.v1_api.list_secret_for_all_namespaces)

    def watch_clusters(self):
        """Watch Rancher provisioning clusters in all namespaces."""
        self._watch("cluster", self.handle_cluster_event,
                    self.custom_api.list_cluster_custom_object,
                    CLUSTER_GROUP, CLUSTER_VERSION, CLUSTER_PLURAL)

    def handle_secret_event(self, event_type, secret):
        namespace = secret.metadata.namespace
        name = secret.metadata.name

        if event_type in ['MODIFIED', 'DELETED'] and self._is_kubeconfig_secret(namespace, name):
            cluster_id = name[:-len(KUBECONFIG_SUFFIX)]
            logger.info(f"Kubeconfig for cluster '{cluster_id}' changed.")
            self.client_cache.invalidate(cluster_id)

        # Check annotation first before processing
        if not is_secret_enabled(secret):
            return

        logger.info(
            f"Handling '{event_type}' event for secret '{name}' in ns '{namespace}'")
        if event_type in ['ADDED', 'MODIFIED']:
            self.secret_scheduler.enqueue((namespace, name))
        elif event_type == 'DELETED':
            logger.info(
                f"Secret '{namespace}/{name}' was deleted. Downstream copies are kept.")

    def handle_cluster_event(self, event_type, cluster):
        metadata = cluster.get('metadata') or {}
        namespace = metadata.get('namespace')
        name = metadata.get('name')
        if not name or name == LOCAL_CLUSTER:
            return

        logger.info(f"Handling '{event_type}' event for cluster '{name}'")
        if event_type in ['ADDED', 'MODIFIED']:
            self.cluster_scheduler.enqueue((namespace, name))
        elif event_type == 'DELETED':
            self.client_cache.invalidate(name)

    def _is_kubeconfig_secret(self, namespace, name):
        return (namespace == self.config.kubeconfig_namespace
                and name.endswith(KUBECONFIG_SUFFIX)
                and len(name) > len(KUBECONFIG_SUFFIX))

    def _watch(self, kind, handle_event, list_func, *args):
        """Stream watch events into handle_event until shutdown, reconnecting on errors."""
        w = watch.Watch()
        last_resource_version = None
        try:
            while not self._shutdown.is_set():
                kwargs = {"timeout_seconds": WATCH_TIMEOUT_SECONDS}
                if last_resource_version:
                    kwargs["resource_version"] = last_resource_version
                try:
                    for event in w.stream(list_func, *args, **kwargs):
                        if self._shutdown.is_set():
                            logger.info(
                                f"Shutdown requested during {kind} watch loop. Exiting...")
                            break

                        # Type assertion: event is always a dict from Kubernetes watch
                        event_dict: Dict[str, Any] = event

                        obj = event_dict.get('object')
                        event_type = event_dict.get('type', 'UNKNOWN')
                        if obj is None or event_type == 'ERROR':
                            continue

                        last_resource_version = resource_version(obj) or last_resource_version
                        handle_event(event_type, obj)
                except ApiException as e:
                    if self._shutdown.is_set():
                        break
                    if e.status == 410:
                        logger.info(f"{kind} watch expired, resyncing from a fresh list.")
                        last_resource_version = None
                        continue
                    logger.warning(f"{kind} watch failed, will reconnect: {e.status} {e.reason}")
                    self._shutdown.wait(1)
                except Exception as e:
                    if self._shutdown.is_set():
                        break
                    logger.warning(
                        f"{kind} watch stream interrupted, will reconnect: {e}")
                    self._shutdown.wait(1)  # Brief pause before reconnecting
        finally:
            w.stop()
            logger.info(f"{kind} watch loop stopped.")
