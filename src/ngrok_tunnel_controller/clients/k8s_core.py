"""Kubernetes Core API wrapper for services and tunnel pods."""

from __future__ import annotations

import asyncio
import threading
from typing import Any

import kopf
import structlog
from kubernetes import client as k8s_client
from kubernetes.client.exceptions import ApiException

from ngrok_tunnel_controller.clients import connection_info, load_k8s_api_client
from ngrok_tunnel_controller.config import ControllerConfig

log = structlog.get_logger()

NOT_FOUND = 404
CONFLICT = 409


def is_not_found(exc: BaseException) -> bool:
    return isinstance(exc, ApiException) and exc.status == NOT_FOUND


def is_already_exists(exc: BaseException) -> bool:
    """True for a 409 whose reason is AlreadyExists (not an update conflict)."""
    if not isinstance(exc, ApiException) or exc.status != CONFLICT:
        return False
    # The HTTP reason phrase is "Conflict" for both cases; the Status body tells them apart.
    return "AlreadyExists" in (exc.body or "") or exc.reason == "AlreadyExists"


class K8sCoreClient:
    """Wrapper around the Kubernetes Core V1 API.

    All request methods are coroutines that run the blocking SDK call in a worker
    thread, so reconciles for different keys can overlap.
    """

    def __init__(self, config: ControllerConfig) -> None:
        self._config = config
        self._api: k8s_client.CoreV1Api | None = None
        self._lock = threading.Lock()

    def _get_api(self) -> k8s_client.CoreV1Api:
        with self._lock:
            if self._api is None:
                api_client = load_k8s_api_client(self._config.kubeconfig)
                self._api = k8s_client.CoreV1Api(api_client)
            return self._api

    async def get_service(self, namespace: str, name: str) -> k8s_client.V1Service | None:
        """Read a Service. Returns None if it does not exist."""
        api = self._get_api()
        try:
            return await asyncio.to_thread(api.read_namespaced_service, name, namespace)
        except ApiException as e:
            if e.status == NOT_FOUND:
                return None
            log.error("failed_to_read_service", namespace=namespace, name=name, status=e.status)
            raise

    async def replace_service(self, service: k8s_client.V1Service) -> k8s_client.V1Service:
        """Write back a Service.

        The object's ``resourceVersion`` makes this an optimistic update; a stale
        object is rejected with 409 Conflict.
        """
        api = self._get_api()
        metadata = service.metadata
        try:
            return await asyncio.to_thread(api.replace_namespaced_service, metadata.name, metadata.namespace, service)
        except ApiException as e:
            log.error(
                "failed_to_update_service",
                namespace=metadata.namespace,
                name=metadata.name,
                status=e.status,
            )
            raise

    async def list_pods(self, namespace: str, label_selector: str) -> list[k8s_client.V1Pod]:
        """List pods in a namespace matching a label selector."""
        api = self._get_api()
        try:
            pod_list = await asyncio.to_thread(api.list_namespaced_pod, namespace, label_selector=label_selector)
        except ApiException as e:
            log.error("failed_to_list_pods", namespace=namespace, selector=label_selector, status=e.status)
            raise
        return list(pod_list.items or [])

    async def create_pod(self, namespace: str, manifest: dict[str, Any]) -> k8s_client.V1Pod:
        """Create a pod from a manifest dict."""
        api = self._get_api()
        try:
            return await asyncio.to_thread(api.create_namespaced_pod, namespace, manifest)
        except ApiException as e:
            # The manifest holds the provider token; only its name is logged.
            log.error(
                "failed_to_create_pod",
                namespace=namespace,
                pod=manifest.get("metadata", {}).get("name"),
                status=e.status,
            )
            raise

    async def delete_pod(self, namespace: str, name: str) -> None:
        api = self._get_api()
        try:
            await asyncio.to_thread(api.delete_namespaced_pod, name, namespace)
        except ApiException as e:
            log.error("failed_to_delete_pod", namespace=namespace, pod=name, status=e.status)
            raise

    async def check_access(self, namespace: str) -> None:
        """Fail fast if the API server is unreachable or pods in ``namespace`` cannot be listed."""
        api = self._get_api()
        try:
            await asyncio.to_thread(api.list_namespaced_pod, namespace, limit=1)
        except ApiException as e:
            log.error("cluster_api_unavailable", namespace=namespace, status=e.status, reason=e.reason)
            raise

    def connection_info(self) -> kopf.ConnectionInfo:
        """Credentials for the operator's watch streams. Loads the API client on first use."""
        return connection_info(self._get_api().api_client)
