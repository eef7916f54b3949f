"""Client wrappers for the Kubernetes API."""

from __future__ import annotations

import kopf
from kubernetes import client as k8s_client
from kubernetes.config import load_incluster_config, new_client_from_config


def load_k8s_api_client(kubeconfig: str | None = None) -> k8s_client.ApiClient:
    """Create an isolated Kubernetes API client.

    Loads the given kubeconfig file, or the in-cluster service account when no
    path is given. Neither path mutates the SDK's global default configuration.

    Raises:
        kubernetes.config.ConfigException: If no usable configuration is found.
    """
    if kubeconfig:
        return new_client_from_config(config_file=kubeconfig)
    configuration = k8s_client.Configuration()
    load_incluster_config(client_configuration=configuration)
    return k8s_client.ApiClient(configuration=configuration)


def connection_info(api_client: k8s_client.ApiClient) -> kopf.ConnectionInfo:
    """Translate an ApiClient's credentials into kopf connection info.

    The operator's watch streams then use the same cluster, CA and identity as
    the reconcile calls made through the SDK.
    """
    configuration = api_client.configuration
    header = configuration.get_api_key_with_prefix("authorization") or configuration.get_api_key_with_prefix(
        "BearerToken"
    )
    parts = header.split(" ", 1) if header else []
    scheme, token = (parts[0], parts[1]) if len(parts) == 2 else (None, parts[0] if parts else None)
    return kopf.ConnectionInfo(
        server=configuration.host,
        ca_path=configuration.ssl_ca_cert,
        insecure=not configuration.verify_ssl,
        username=configuration.username or None,
        password=configuration.password or None,
        scheme=scheme,
        token=token,
        certificate_path=configuration.cert_file,
        private_key_path=configuration.key_file,
    )
