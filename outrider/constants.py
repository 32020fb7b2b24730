"""Annotation keys, resource coordinates and requeue timings used by Outrider."""

OPERATOR_NAME = "outrider"

# Annotations read from source secrets
ANNOTATION_PREFIX = "outrider.geeko.me/"
ENABLED_ANNOTATION = ANNOTATION_PREFIX + "enabled"
NAMESPACE_ANNOTATION = ANNOTATION_PREFIX + "namespace"

# Written on downstream copies
SOURCE_ANNOTATION = ANNOTATION_PREFIX + "source"
LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
LAST_APPLIED_ANNOTATION = "kubectl.kubernetes.io/last-applied-configuration"

# Rancher provisioning clusters
CLUSTER_GROUP = "provisioning.cattle.io"
CLUSTER_VERSION = "v1"
CLUSTER_PLURAL = "clusters"
LOCAL_CLUSTER = "local"
KUBECONFIG_SUFFIX = "-kubeconfig"
KUBECONFIG_DATA_KEY = "value"

# Requeue delays in seconds
RESYNC_INTERVAL = 300
TRANSIENT_RETRY_DELAY = 60
NOT_READY_RETRY_DELAY = 30

# CRD discovery polling in seconds
CRD_POLL_INTERVAL = 10
CRD_POLL_MAX_INTERVAL = 60

WATCH_TIMEOUT_SECONDS = 10
HANDSHAKE_TIMEOUT_SECONDS = 10
