"""Exceptions raised by Outrider."""


class OutriderError(Exception):
    """Base class for Outrider errors."""


class ConfigError(OutriderError):
    """Required configuration is missing or invalid."""


class CredentialError(OutriderError):
    """A downstream cluster's credentials could not be turned into a working client."""

    kind = "CredentialError"

    def __init__(self, cluster_id, message):
        super().__init__(f"{self.kind} for cluster '{cluster_id}': {message}")
        self.cluster_id = cluster_id
        self.message = message


class KubeconfigNotFoundError(CredentialError):
    kind = "NotFound"


class KubeconfigFormatError(CredentialError):
    kind = "InvalidFormat"


class ClusterConnectError(CredentialError):
    kind = "ConnectError"
