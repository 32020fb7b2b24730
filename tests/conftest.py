import pytest
from unittest.mock import MagicMock, patch
from kubernetes.client.rest import ApiException

from outrider.config import Config


@pytest.fixture
def kube_client():
    """Fixture for a mock manager-cluster CoreV1Api."""
    return MagicMock()


@pytest.fixture
def custom_client():
    """Fixture for a mock manager-cluster CustomObjectsApi."""
    return MagicMock()


@pytest.fixture
def config():
    """Fixture for the operator configuration."""
    return Config(default_target_namespace="cattle-global-data")


@pytest.fixture
def client_cache():
    """Fixture for a mock downstream client cache."""
    return MagicMock()


@pytest.fixture
def downstream_api():
    """Fixture for the downstream CoreV1Api used by the copy engine; starts out empty."""
    with patch('outrider.copier.client.CoreV1Api') as core_v1:
        api = core_v1.return_value
        api.read_namespace.side_effect = ApiException(status=404, reason="Not Found")
        api.read_namespaced_secret.side_effect = ApiException(status=404, reason="Not Found")
        yield api
