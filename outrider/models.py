"""Data model: source secrets, downstream clusters and copy tasks."""

import base64
import enum
from dataclasses import dataclass, field
from typing import Dict, Optional

from .constants import (
    ENABLED_ANNOTATION,
    KUBECONFIG_SUFFIX,
    LOCAL_CLUSTER,
    NAMESPACE_ANNOTATION,
)


@dataclass(frozen=True)
class SourceSecret:
    """An annotated Secret in the manager cluster."""

    namespace: str
    name: str
    data: Dict[str, bytes] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    type: Optional[str] = None
    immutable: Optional[bool] = None

    @classmethod
    def from_k8s(cls, secret):
        """Build from a kubernetes.client.V1Secret, decoding its base64 data."""
        metadata = secret.metadata
        return cls(
            namespace=metadata.namespace,
            name=metadata.name,
            data={
                key: base64.b64decode(value)
                for key, value in (secret.data or {}).items()
            },
            labels=dict(metadata.labels or {}),
            annotations=dict(metadata.annotations or {}),
            type=secret.type,
            immutable=secret.immutable,
        )

    @property
    def key(self):
        return (self.namespace, self.name)

    @property
    def enabled(self):
        return annotations_enabled(self.annotations)

    @property
    def target_namespace_override(self):
        return self.annotations.get(NAMESPACE_ANNOTATION) or None

    def __str__(self):
        return f"{self.namespace}/{self.name}"


def annotations_enabled(annotations):
    return (annotations or {}).get(ENABLED_ANNOTATION) == "true"


def is_secret_enabled(secret):
    """Check the enabled annotation on a raw V1Secret."""
    return annotations_enabled(secret.metadata.annotations)


@dataclass(frozen=True)
class DownstreamCluster:
    """A Rancher provisioning cluster, as seen from the manager cluster."""

    id: str
    namespace: Optional[str] = None
    ready: bool = False
    # status.clusterName: the management cluster id (c-m-...)
    internal_name: Optional[str] = None

    @classmethod
    def from_k8s(cls, obj):
        """Build from a provisioning.cattle.io/v1 Cluster custom object (a dict)."""
        metadata = obj.get("metadata") or {}
        status = obj.get("status") or {}
        return cls(
            id=metadata.get("name"),
            namespace=metadata.get("namespace"),
            ready=_is_ready(status),
            internal_name=status.get("clusterName") or None,
        )

    @property
    def key(self):
        return (self.namespace, self.id)

    @property
    def local(self):
        return self.id == LOCAL_CLUSTER

    @property
    def kubeconfig_secret_name(self):
        return kubeconfig_secret_name(self.id)

    def __str__(self):
        return self.id


def kubeconfig_secret_name(cluster_id):
    return f"{cluster_id}{KUBECONFIG_SUFFIX}"


def _is_ready(status):
    conditions = status.get("conditions")
    if conditions:
        return any(
            condition.get("type") == "Ready" and condition.get("status") == "True"
            for condition in conditions
        )
    return status.get("ready") is True


class FailureReason(enum.Enum):
    CLUSTER_UNREACHABLE = "ClusterUnreachable"
    NAMESPACE_CREATE_FAILED = "NamespaceCreateFailed"
    WRITE_FAILED = "WriteFailed"
    UNAUTHORIZED = "Unauthorized"


@dataclass(frozen=True)
class CopyTask:
    secret: SourceSecret
    cluster: DownstreamCluster

    def __str__(self):
        return f"{self.secret} -> {self.cluster}"


@dataclass(frozen=True)
class CopyOutcome:
    """Result of one CopyTask: copied, or failed with a reason."""

    task: CopyTask
    reason: Optional[FailureReason] = None
    message: str = ""

    @property
    def copied(self):
        return self.reason is None
