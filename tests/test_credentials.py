"""Tests for downstream credential resolution."""

import base64
import pytest
import urllib3
from unittest.mock import MagicMock, patch
from kubernetes.client.rest import ApiException
from kubernetes.config import ConfigException

from outrider.config import Config
from outrider.credentials import CredentialResolver
from outrider.errors import ClusterConnectError, KubeconfigFormatError, KubeconfigNotFoundError

KUBECONFIG = """
apiVersion: v1
kind: Config
clusters:
- name: c-m-abc
  cluster:
    server: https://rancher.example.com/k8s/clusters/c-m-abc
contexts:
- name: c-m-abc
  context:
    cluster: c-m-abc
    user: c-m-abc
current-context: c-m-abc
users:
- name: c-m-abc
  user:
    token: kubeconfig-user-abc:secret
"""


def create_kubeconfig_secret(value=KUBECONFIG):
    """Helper function to create a mock kubeconfig secret."""
    secret = MagicMock()
    secret.data = {"value": base64.b64encode(value.encode()).decode()} if value is not None else {}
    return secret


@pytest.fixture
def version_api():
    with patch('outrider.credentials.client.VersionApi') as version_api:
        yield version_api


def test_resolve_builds_client_from_kubeconfig_secret(kube_client, config, version_api):
    kube_client.read_namespaced_secret.return_value = create_kubeconfig_secret()
    resolver = CredentialResolver(kube_client, config)

    with patch('outrider.credentials.config.new_client_from_config_dict') as new_client:
        api_client = resolver.resolve("c-m-abc")

    kube_client.read_namespaced_secret.assert_called_once_with(
        "c-m-abc-kubeconfig", "fleet-default")
    assert api_client is new_client.return_value
    kubeconfig_dict = new_client.call_args[0][0]
    assert kubeconfig_dict["current-context"] == "c-m-abc"
    assert new_client.call_args[1] == {"persist_config": False}
    version_api.assert_called_once_with(api_client)
    version_api.return_value.get_code.assert_called_once()


def test_kubeconfig_namespace_is_configurable(kube_client, version_api):
    kube_client.read_namespaced_secret.return_value = create_kubeconfig_secret()
    config = Config(default_target_namespace="target", kubeconfig_namespace="rancher-clusters")
    resolver = CredentialResolver(kube_client, config)

    with patch('outrider.credentials.config.new_client_from_config_dict'):
        resolver.resolve("c-m-abc")

    kube_client.read_namespaced_secret.assert_called_once_with(
        "c-m-abc-kubeconfig", "rancher-clusters")


def test_missing_secret(kube_client, config):
    kube_client.read_namespaced_secret.side_effect = ApiException(status=404, reason="Not Found")
    resolver = CredentialResolver(kube_client, config)

    with pytest.raises(KubeconfigNotFoundError) as exc_info:
        resolver.resolve("c-m-abc")

    assert exc_info.value.cluster_id == "c-m-abc"
    assert "404" in str(exc_info.value)


def test_manager_unreachable_reports_not_found(kube_client, config):
    kube_client.read_namespaced_secret.side_effect = urllib3.exceptions.MaxRetryError(
        None, "/api/v1", "connection refused")
    resolver = CredentialResolver(kube_client, config)

    with pytest.raises(KubeconfigNotFoundError):
        resolver.resolve("c-m-abc")


def test_secret_without_value_key(kube_client, config):
    kube_client.read_namespaced_secret.return_value = create_kubeconfig_secret(None)
    resolver = CredentialResolver(kube_client, config)

    with pytest.raises(KubeconfigNotFoundError) as exc_info:
        resolver.resolve("c-m-abc")

    assert "'value'" in str(exc_info.value)


def test_value_is_not_base64(kube_client, config):
    secret = MagicMock()
    secret.data = {"value": "not base64!"}
    kube_client.read_namespaced_secret.return_value = secret
    resolver = CredentialResolver(kube_client, config)

    with pytest.raises(KubeconfigFormatError):
        resolver.resolve("c-m-abc")


@pytest.mark.parametrize("value", [
    "clusters: [unclosed",
    "just a string",
    "- a\n- list\n",
])
def test_kubeconfig_is_not_a_yaml_mapping(kube_client, config, value):
    kube_client.read_namespaced_secret.return_value = create_kubeconfig_secret(value)
    resolver = CredentialResolver(kube_client, config)

    with pytest.raises(KubeconfigFormatError) as exc_info:
        resolver.resolve("c-m-abc")

    assert str(exc_info.value).startswith("InvalidFormat for cluster 'c-m-abc'")


def test_kubeconfig_rejected_by_client_loader(kube_client, config):
    kube_client.read_namespaced_secret.return_value = create_kubeconfig_secret()
    resolver = CredentialResolver(kube_client, config)

    with patch('outrider.credentials.config.new_client_from_config_dict') as new_client:
        new_client.side_effect = ConfigException("bad context")
        with pytest.raises(KubeconfigFormatError):
            resolver.resolve("c-m-abc")


@pytest.mark.parametrize("value", [
    "clusters: foo\ncontexts: 5\ncurrent-context: c-m-abc\n",
    "clusters: foo\ncontexts: [{name: c-m-abc, context: {cluster: c-m-abc, user: u}}]\n"
    "current-context: c-m-abc\nusers: []\n",
])
def test_kubeconfig_with_wrong_shape(kube_client, config, version_api, value):
    kube_client.read_namespaced_secret.return_value = create_kubeconfig_secret(value)
    resolver = CredentialResolver(kube_client, config)

    with pytest.raises(KubeconfigFormatError):
        resolver.resolve("c-m-abc")

    version_api.assert_not_called()


def test_failed_handshake_closes_client(kube_client, config, version_api):
    kube_client.read_namespaced_secret.return_value = create_kubeconfig_secret()
    version_api.return_value.get_code.side_effect = urllib3.exceptions.MaxRetryError(
        None, "/version", "timed out")
    resolver = CredentialResolver(kube_client, config)

    with patch('outrider.credentials.config.new_client_from_config_dict') as new_client:
        with pytest.raises(ClusterConnectError) as exc_info:
            resolver.resolve("c-m-abc")

    new_client.return_value.close.assert_called_once()
    assert exc_info.value.cluster_id == "c-m-abc"


def test_rejected_handshake_is_connect_error(kube_client, config, version_api):
    kube_client.read_namespaced_secret.return_value = create_kubeconfig_secret()
    version_api.return_value.get_code.side_effect = ApiException(status=401, reason="Unauthorized")
    resolver = CredentialResolver(kube_client, config)

    with patch('outrider.credentials.config.new_client_from_config_dict'):
        with pytest.raises(ClusterConnectError):
            resolver.resolve("c-m-abc")


def _load_kube_config(host):
    def load(client_configuration=None, **kwargs):
        client_configuration.host = host
    return load


@pytest.mark.parametrize("host,internal_name,expected", [
    ("https://rancher.example.com/k8s/clusters/local", "c-m-abc",
     "https://rancher.example.com/k8s/clusters/c-m-abc"),
    ("https://rancher.example.com/k8s/clusters/local/", "c-m-abc",
     "https://rancher.example.com/k8s/clusters/c-m-abc"),
    ("https://rancher.example.com/k8s/clusters/local", None,
     "https://rancher.example.com/k8s/clusters/prod"),
    ("https://kind-control-plane:6443", "c-m-abc", "https://kind-control-plane:6443"),
])
def test_testing_mode_points_local_kubeconfig_at_cluster(
        kube_client, version_api, host, internal_name, expected):
    config = Config(default_target_namespace="target", testing_mode=True)
    resolver = CredentialResolver(kube_client, config)

    with patch('outrider.credentials.config.load_kube_config',
               side_effect=_load_kube_config(host)), \
            patch('outrider.credentials.client.ApiClient') as api_client_cls:
        api_client = resolver.resolve("prod", internal_name)

    kube_client.read_namespaced_secret.assert_not_called()
    configuration = api_client_cls.call_args[0][0]
    assert configuration.host == expected
    assert api_client is api_client_cls.return_value
