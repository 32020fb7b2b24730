"""Cluster credential resolution: cluster id -> working API client."""

import base64
import binascii
import logging

import urllib3
import yaml
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from .constants import HANDSHAKE_TIMEOUT_SECONDS, KUBECONFIG_DATA_KEY, LOCAL_CLUSTER
from .errors import ClusterConnectError, KubeconfigFormatError, KubeconfigNotFoundError
from .models import kubeconfig_secret_name
from .utils import describe_error

logger = logging.getLogger("outrider.credentials")


class CredentialResolver:
    """
    Turns a cluster id into an API client for that downstream cluster.

    Rancher stores each downstream cluster's kubeconfig in a secret named
    `{cluster_id}-kubeconfig` in the manager cluster. The resolver does not
    cache anything; see DownstreamClientCache for that.
    """

    def __init__(self, v1_api, config):
        self.v1 = v1_api
        self.config = config

    def resolve(self, cluster_id, internal_name=None):
        if self.config.testing_mode:
            api_client = self._local_client(cluster_id, internal_name or cluster_id)
        else:
            kubeconfig = self._read_kubeconfig(cluster_id)
            api_client = self._client_from_kubeconfig(cluster_id, kubeconfig)
        self._handshake(cluster_id, api_client)
        return api_client

    def _read_kubeconfig(self, cluster_id):
        namespace = self.config.kubeconfig_namespace
        secret_name = kubeconfig_secret_name(cluster_id)
        logger.debug(
            f"Reading kubeconfig secret '{namespace}/{secret_name}' for cluster '{cluster_id}'")
        try:
            secret = self.v1.read_namespaced_secret(secret_name, namespace)
        except (ApiException, urllib3.exceptions.HTTPError) as e:
            raise KubeconfigNotFoundError(
                cluster_id,
                f"could not read secret '{namespace}/{secret_name}': {describe_error(e)}")

        encoded = (secret.data or {}).get(KUBECONFIG_DATA_KEY)
        if not encoded:
            raise KubeconfigNotFoundError(
                cluster_id,
                f"secret '{namespace}/{secret_name}' has no '{KUBECONFIG_DATA_KEY}' key")

        try:
            return base64.b64decode(encoded).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise KubeconfigFormatError(cluster_id, f"cannot decode kubeconfig: {e}")

    def _client_from_kubeconfig(self, cluster_id, kubeconfig):
        try:
            kubeconfig_dict = yaml.safe_load(kubeconfig)
        except yaml.YAMLError as e:
            raise KubeconfigFormatError(cluster_id, f"kubeconfig is not valid YAML: {e}")
        if not isinstance(kubeconfig_dict, dict):
            raise KubeconfigFormatError(cluster_id, "kubeconfig is not a YAML mapping")

        try:
            return config.new_client_from_config_dict(
                kubeconfig_dict, persist_config=False)
        except (config.ConfigException, AttributeError, KeyError, TypeError, ValueError) as e:
            raise KubeconfigFormatError(
                cluster_id, f"cannot build client configuration: {e}")

    def _local_client(self, cluster_id, proxy_id):
        """
        Testing mode: reuse our own kubeconfig, pointing a Rancher proxy URL
        ending in /local at the downstream cluster instead. Rancher keys that
        proxy by the management cluster id (`c-m-...`), not the provisioning
        cluster's name.
        """
        configuration = client.Configuration()
        try:
            config.load_kube_config(client_configuration=configuration)
        except config.ConfigException as e:
            raise KubeconfigFormatError(cluster_id, f"cannot load local kubeconfig: {e}")

        host = configuration.host.rstrip("/")
        base, _, last = host.rpartition("/")
        if base and last == LOCAL_CLUSTER:
            new_host = f"{base}/{proxy_id}"
            logger.debug(
                f"Testing mode: using {new_host} instead of {configuration.host}")
            configuration.host = new_host
        return client.ApiClient(configuration)

    def _handshake(self, cluster_id, api_client):
        try:
            client.VersionApi(api_client).get_code(
                _request_timeout=HANDSHAKE_TIMEOUT_SECONDS)
        except (ApiException, urllib3.exceptions.HTTPError, OSError) as e:
            api_client.close()
            raise ClusterConnectError(
                cluster_id, f"handshake failed: {describe_error(e)}")
        logger.info(f"Connected to downstream cluster '{cluster_id}'.")
