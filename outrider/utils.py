import logging

import urllib3
from kubernetes.client.rest import ApiException

logger = logging.getLogger("outrider")

AUTH_FAILURE_STATUSES = (401, 403)


def get_k8s_api_client():
    """Initialize and return an API client for the manager cluster."""
    from kubernetes import client, config

    # Load kube config
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster kube config.")
    except config.ConfigException:
        logger.info(
            "Could not load in-cluster config. Falling back to local kube config.")
        config.load_kube_config()
    return client.ApiClient()


def is_auth_error(exc):
    """True if the API server rejected our credentials."""
    return isinstance(exc, ApiException) and exc.status in AUTH_FAILURE_STATUSES


def is_transport_error(exc):
    """True if the request never got an HTTP response from the API server."""
    if isinstance(exc, ApiException):
        # The client raises ApiException(status=0) when no response was received
        return not exc.status
    return isinstance(exc, (urllib3.exceptions.HTTPError, OSError))


def describe_error(exc):
    if isinstance(exc, ApiException):
        return f"{exc.status} {exc.reason}"
    return f"{type(exc).__name__}: {exc}"


def resource_version(obj):
    """Return the resourceVersion of a typed model or a custom-object dict."""
    if isinstance(obj, dict):
        return (obj.get("metadata") or {}).get("resourceVersion")
    metadata = getattr(obj, "metadata", None)
    return getattr(metadata, "resource_version", None)
