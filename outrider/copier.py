"""Copies one source secret into one downstream cluster."""

import base64
import logging

import urllib3
from kubernetes import client
from kubernetes.client.rest import ApiException
from prometheus_client import Counter

from .constants import (
    ANNOTATION_PREFIX,
    LABEL_MANAGED_BY,
    LAST_APPLIED_ANNOTATION,
    OPERATOR_NAME,
    SOURCE_ANNOTATION,
)
from .errors import CredentialError
from .models import CopyOutcome, CopyTask, FailureReason
from .utils import describe_error, is_auth_error, is_transport_error

logger = logging.getLogger("outrider.copier")

COPIES_TOTAL = Counter(
    'outrider_copies_total', 'Total number of secrets copied to downstream clusters')
COPY_FAILURES_TOTAL = Counter(
    'outrider_copy_failures_total', 'Total number of failed secret copies')
SECRETS_CREATED = Counter(
    'outrider_secrets_created_total', 'Total number of downstream secrets created')
SECRETS_UPDATED = Counter(
    'outrider_secrets_updated_total', 'Total number of downstream secrets updated')
NAMESPACES_CREATED = Counter(
    'outrider_namespaces_created_total', 'Total number of downstream namespaces created')

API_ERRORS = (ApiException, urllib3.exceptions.HTTPError, OSError)


class CopyEngine:
    """Stateless create-or-update of a source secret in a downstream cluster."""

    def __init__(self, client_cache, config):
        self.client_cache = client_cache
        self.config = config

    def target_namespace(self, secret):
        return secret.target_namespace_override or self.config.default_target_namespace

    def copy(self, secret, cluster):
        """Copy secret into cluster. Never raises; failures come back as the outcome."""
        task = CopyTask(secret, cluster)
        try:
            return self._copy(task)
        except Exception as e:
            logger.error(
                f"Unexpected error copying secret '{secret}' to cluster '{cluster}': {e}",
                exc_info=True)
            return self._failed(task, FailureReason.WRITE_FAILED, describe_error(e))

    def _copy(self, task):
        secret, cluster = task.secret, task.cluster
        namespace = self.target_namespace(secret)

        try:
            api_client = self.client_cache.get(cluster.id, cluster.internal_name)
        except CredentialError as e:
            self.client_cache.invalidate(cluster.id)
            return self._failed(task, FailureReason.CLUSTER_UNREACHABLE, str(e))

        v1 = client.CoreV1Api(api_client)

        try:
            self.ensure_namespace(v1, namespace)
        except API_ERRORS as e:
            return self._api_failure(task, e, FailureReason.NAMESPACE_CREATE_FAILED)

        try:
            action = self.upsert(v1, build_payload(secret, namespace))
        except API_ERRORS as e:
            return self._api_failure(task, e, FailureReason.WRITE_FAILED)

        COPIES_TOTAL.inc()
        logger.info(
            f"Secret '{secret}' {action} in cluster '{cluster}' namespace '{namespace}'.")
        return CopyOutcome(task)

    def ensure_namespace(self, v1, namespace):
        """Create namespace if it does not exist. Returns True if created."""
        try:
            v1.read_namespace(namespace)
            return False
        except ApiException as e:
            if e.status != 404:
                raise

        logger.info(f"Creating namespace '{namespace}'.")
        body = {
            "apiVersion": "v1",
            "kind": "Namespace",
            "metadata": {"name": namespace},
        }
        try:
            v1.create_namespace(body)
        except ApiException as e:
            if e.status == 409:
                logger.debug(f"Namespace '{namespace}' was created concurrently.")
                return False
            raise
        NAMESPACES_CREATED.inc()
        return True

    def upsert(self, v1, body):
        """
        Create the secret, or overwrite an existing one that differs.
        Returns "created", "updated" or "unchanged".
        """
        name = body["metadata"]["name"]
        namespace = body["metadata"]["namespace"]

        try:
            existing = v1.read_namespaced_secret(name, namespace)
        except ApiException as e:
            if e.status != 404:
                raise
            try:
                v1.create_namespaced_secret(namespace, body)
                SECRETS_CREATED.inc()
                return "created"
            except ApiException as e:
                if e.status != 409:
                    raise
                existing = v1.read_namespaced_secret(name, namespace)

        if payload_matches(existing, body):
            return "unchanged"

        body["metadata"]["resourceVersion"] = existing.metadata.resource_version
        v1.replace_namespaced_secret(name, namespace, body)
        SECRETS_UPDATED.inc()
        return "updated"

    def _api_failure(self, task, exc, reason):
        if is_auth_error(exc):
            self.client_cache.invalidate(task.cluster.id)
            reason = FailureReason.UNAUTHORIZED
        elif is_transport_error(exc):
            self.client_cache.invalidate(task.cluster.id)
            reason = FailureReason.CLUSTER_UNREACHABLE
        return self._failed(task, reason, describe_error(exc))

    def _failed(self, task, reason, message):
        COPY_FAILURES_TOTAL.inc()
        logger.error(
            f"Failed to copy secret '{task.secret}' to cluster '{task.cluster}' "
            f"({reason.value}): {message}")
        return CopyOutcome(task, reason, message)


def build_payload(secret, namespace):
    """
    Build the downstream Secret body. Only name, namespace, type, immutable, data, labels
    and annotations are carried over; cluster-local metadata never is.
    """
    labels = dict(secret.labels)
    labels[LABEL_MANAGED_BY] = OPERATOR_NAME

    annotations = {
        key: value
        for key, value in secret.annotations.items()
        if not key.startswith(ANNOTATION_PREFIX) and key != LAST_APPLIED_ANNOTATION
    }
    annotations[SOURCE_ANNOTATION] = str(secret)

    body = {
        "apiVersion": "v1",
        "kind": "Secret",
        "type": secret.type or "Opaque",
        "metadata": {
            "name": secret.name,
            "namespace": namespace,
            "labels": labels,
            "annotations": annotations,
        },
        "data": {
            key: base64.b64encode(value).decode("ascii")
            for key, value in secret.data.items()
        },
    }
    if secret.immutable is not None:
        body["immutable"] = secret.immutable
    return body


def payload_matches(existing, body):
    """True if the downstream secret already holds exactly what body would write."""
    metadata = body["metadata"]
    return (
        (existing.type or "Opaque") == body["type"]
        and bool(existing.immutable) == bool(body.get("immutable"))
        and (existing.data or {}) == body["data"]
        and (existing.metadata.labels or {}) == metadata["labels"]
        and (existing.metadata.annotations or {}) == metadata["annotations"]
    )
