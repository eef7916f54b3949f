"""Tests for API client construction and lazy API loading."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from kubernetes.client import ApiClient, Configuration

from ngrok_tunnel_controller.clients import connection_info, load_k8s_api_client
from ngrok_tunnel_controller.clients.k8s_core import K8sCoreClient
from ngrok_tunnel_controller.config import ControllerConfig


class TestLoadK8sApiClient:
    def test_kubeconfig_file(self) -> None:
        with patch("ngrok_tunnel_controller.clients.new_client_from_config") as mock_new:
            mock_new.return_value = MagicMock()
            api_client = load_k8s_api_client("/tmp/kubeconfig")
        mock_new.assert_called_once_with(config_file="/tmp/kubeconfig")
        assert api_client is mock_new.return_value

    def test_in_cluster_when_no_path(self) -> None:
        with (
            patch("ngrok_tunnel_controller.clients.load_incluster_config") as mock_incluster,
            patch("ngrok_tunnel_controller.clients.new_client_from_config") as mock_new,
        ):
            api_client = load_k8s_api_client(None)
        mock_new.assert_not_called()
        configuration = mock_incluster.call_args.kwargs["client_configuration"]
        assert api_client.configuration is configuration


class TestConnectionInfo:
    def test_bearer_token(self) -> None:
        configuration = Configuration(host="https://k8s.example:6443")
        configuration.api_key = {"authorization": "bearer in-cluster-token"}
        configuration.ssl_ca_cert = "/var/run/secrets/kubernetes.io/serviceaccount/ca.crt"

        info = connection_info(ApiClient(configuration=configuration))

        assert info.server == "https://k8s.example:6443"
        assert info.scheme == "bearer"
        assert info.token == "in-cluster-token"
        assert info.ca_path == "/var/run/secrets/kubernetes.io/serviceaccount/ca.crt"
        assert info.insecure is False

    def test_client_certificate(self) -> None:
        configuration = Configuration(host="https://k8s.example:6443")
        configuration.cert_file = "/tmp/client.crt"
        configuration.key_file = "/tmp/client.key"
        configuration.verify_ssl = False

        info = connection_info(ApiClient(configuration=configuration))

        assert info.token is None
        assert info.scheme is None
        assert info.certificate_path == "/tmp/client.crt"
        assert info.private_key_path == "/tmp/client.key"
        assert info.insecure is True


class TestK8sCoreClientInit:
    def test_lazy_api_creation(self) -> None:
        client = K8sCoreClient(ControllerConfig(token="tok"))
        assert client._api is None

    def test_get_api_creates_once(self) -> None:
        client = K8sCoreClient(ControllerConfig(token="tok", kubeconfig="/tmp/kubeconfig"))
        with patch("ngrok_tunnel_controller.clients.k8s_core.load_k8s_api_client") as mock_load:
            mock_load.return_value = MagicMock()
            api1 = client._get_api()
            api2 = client._get_api()
        assert api1 is api2
        mock_load.assert_called_once_with("/tmp/kubeconfig")
