"""Inventory of source secrets and downstream clusters in the manager cluster."""

import logging

from kubernetes.client.rest import ApiException

from .constants import CLUSTER_GROUP, CLUSTER_PLURAL, CLUSTER_VERSION
from .models import DownstreamCluster, SourceSecret, is_secret_enabled

logger = logging.getLogger("outrider.inventory")


class Inventory:
    """Lists and reads the manager-side objects both loops derive desired state from."""

    def __init__(self, v1_api, custom_api):
        self.v1 = v1_api
        self.custom = custom_api

    def enabled_secrets(self):
        """Find all secrets with the enabled annotation."""
        secrets = self.v1.list_secret_for_all_namespaces().items
        return [SourceSecret.from_k8s(s) for s in secrets if is_secret_enabled(s)]

    def get_secret(self, namespace, name):
        """Read one secret, or None if it no longer exists."""
        try:
            secret = self.v1.read_namespaced_secret(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        logger.debug(f"Read secret '{namespace}/{name}'")
        return SourceSecret.from_k8s(secret)

    def clusters(self):
        """All downstream clusters, ready or not. The local cluster is excluded."""
        response = self.custom.list_cluster_custom_object(
            CLUSTER_GROUP, CLUSTER_VERSION, CLUSTER_PLURAL)
        clusters = [DownstreamCluster.from_k8s(obj) for obj in response.get("items", [])]
        return [c for c in clusters if not c.local]

    def get_cluster(self, namespace, name):
        """Read one cluster, or None if it no longer exists."""
        try:
            obj = self.custom.get_namespaced_custom_object(
                CLUSTER_GROUP, CLUSTER_VERSION, namespace, CLUSTER_PLURAL, name)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return DownstreamCluster.from_k8s(obj)
