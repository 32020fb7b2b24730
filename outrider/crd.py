"""Waiting for the Rancher provisioning Cluster CRD."""

import logging

import urllib3
from kubernetes import client
from kubernetes.client.rest import ApiException

from .constants import CLUSTER_GROUP, CLUSTER_VERSION, CRD_POLL_INTERVAL, CRD_POLL_MAX_INTERVAL
from .utils import describe_error

logger = logging.getLogger("outrider.crd")


def cluster_crd_available(api_client):
    """Check API discovery for the provisioning.cattle.io/v1 group."""
    groups = client.ApisApi(api_client).get_api_versions().groups or []
    for group in groups:
        if group.name != CLUSTER_GROUP:
            continue
        if any(v.version == CLUSTER_VERSION for v in group.versions or []):
            return True
    return False


def wait_for_cluster_crd(api_client, shutdown_event,
                         interval=CRD_POLL_INTERVAL, max_interval=CRD_POLL_MAX_INTERVAL):
    """
    Block until the Cluster CRD is served, polling with exponential backoff.

    Returns True once available, False if shutdown_event was set first.
    """
    while not shutdown_event.is_set():
        try:
            if cluster_crd_available(api_client):
                logger.info(f"Cluster CRD ({CLUSTER_GROUP}/{CLUSTER_VERSION}) is available.")
                return True
            logger.info(
                f"Cluster CRD ({CLUSTER_GROUP}/{CLUSTER_VERSION}) not yet available, "
                f"waiting {interval} seconds...")
        except (ApiException, urllib3.exceptions.HTTPError) as e:
            logger.warning(
                f"Error checking for Cluster CRD: {describe_error(e)}, "
                f"retrying in {interval} seconds...")
        if shutdown_event.wait(interval):
            break
        interval = min(interval * 2, max_interval)
    return False
