"""The two reconciliation loops: one triggered by secrets, one by clusters."""

import logging

import urllib3
from kubernetes.client.rest import ApiException

from .scheduler import ReconcileResult, aggregate
from .utils import describe_error

logger = logging.getLogger("outrider.reconcilers")

MANAGER_ERRORS = (ApiException, urllib3.exceptions.HTTPError, OSError)


def _summarize(trigger, outcomes, result):
    failed = [o for o in outcomes if not o.copied]
    if failed:
        details = ", ".join(f"{o.task} ({o.reason.value})" for o in failed)
        logger.warning(
            f"{trigger}: {len(outcomes) - len(failed)}/{len(outcomes)} copies succeeded, "
            f"failed: {details}. Result: {result.value}")
    else:
        logger.info(f"{trigger}: {len(outcomes)} copies succeeded.")


class SecretReconciler:
    """Copies one changed source secret into every ready downstream cluster."""

    def __init__(self, inventory, copy_engine, client_cache):
        self.inventory = inventory
        self.copy_engine = copy_engine
        self.client_cache = client_cache

    def reconcile(self, key):
        namespace, name = key
        try:
            secret = self.inventory.get_secret(namespace, name)
        except MANAGER_ERRORS as e:
            logger.error(f"Could not read secret '{namespace}/{name}': {describe_error(e)}")
            return ReconcileResult.TRANSIENT_FAILURE
        if secret is None:
            logger.info(
                f"Secret '{namespace}/{name}' no longer exists. Downstream copies are kept.")
            return None
        return self.reconcile_secret(secret)

    def reconcile_secret(self, secret):
        if not secret.enabled:
            logger.debug(f"Secret '{secret}' is not enabled, skipping.")
            return None

        try:
            clusters = self.inventory.clusters()
        except MANAGER_ERRORS as e:
            logger.error(f"Could not list clusters for secret '{secret}': {describe_error(e)}")
            return ReconcileResult.TRANSIENT_FAILURE

        self.client_cache.retain(c.id for c in clusters)
        ready = [c for c in clusters if c.ready]
        logger.info(
            f"Copying secret '{secret}' to {len(ready)} ready clusters "
            f"({len(clusters) - len(ready)} not ready).")

        outcomes = [self.copy_engine.copy(secret, cluster) for cluster in ready]
        result = aggregate(outcomes)
        _summarize(f"Secret '{secret}'", outcomes, result)
        return result


class ClusterReconciler:
    """Copies every enabled source secret into one downstream cluster once it is ready."""

    def __init__(self, inventory, copy_engine, client_cache):
        self.inventory = inventory
        self.copy_engine = copy_engine
        self.client_cache = client_cache

    def reconcile(self, key):
        namespace, name = key
        try:
            cluster = self.inventory.get_cluster(namespace, name)
        except MANAGER_ERRORS as e:
            logger.error(f"Could not read cluster '{name}': {describe_error(e)}")
            return ReconcileResult.TRANSIENT_FAILURE
        if cluster is None:
            logger.info(f"Cluster '{name}' no longer exists.")
            self.client_cache.invalidate(name)
            return None
        return self.reconcile_cluster(cluster)

    def reconcile_cluster(self, cluster):
        if cluster.local:
            logger.debug("Skipping local cluster.")
            return None
        if not cluster.ready:
            logger.info(f"Cluster '{cluster}' is not ready yet.")
            return ReconcileResult.NOT_READY

        try:
            secrets = self.inventory.enabled_secrets()
        except MANAGER_ERRORS as e:
            logger.error(
                f"Could not list secrets for cluster '{cluster}': {describe_error(e)}")
            return ReconcileResult.TRANSIENT_FAILURE

        logger.info(f"Cluster '{cluster}' is ready, copying {len(secrets)} enabled secrets.")
        outcomes = [self.copy_engine.copy(secret, cluster) for secret in secrets]
        result = aggregate(outcomes)
        _summarize(f"Cluster '{cluster}'", outcomes, result)
        return result
