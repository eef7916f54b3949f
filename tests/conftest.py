"""Shared test fixtures: controller config and an in-memory cluster."""

from __future__ import annotations

import asyncio
import copy
from datetime import UTC, datetime
from typing import Any

import pytest
from kubernetes import client as k8s_client
from kubernetes.client.exceptions import ApiException

from ngrok_tunnel_controller.config import ControllerConfig
from ngrok_tunnel_controller.models import ServiceKey

TEST_TOKEN = "2abcTESTTOKENxyz"


def make_service(
    namespace: str = "default",
    name: str = "web",
    labels: dict[str, str] | None = None,
    cluster_ip: str | None = "10.0.0.5",
    ports: list[int] | None = None,
    finalizers: list[str] | None = None,
    deleting: bool = False,
    resource_version: str = "1",
) -> k8s_client.V1Service:
    """Build a real V1Service object as the Kubernetes client would return it."""
    return k8s_client.V1Service(
        metadata=k8s_client.V1ObjectMeta(
            namespace=namespace,
            name=name,
            labels={"ngrok": "true"} if labels is None else labels,
            finalizers=finalizers,
            deletion_timestamp=datetime(2024, 1, 1, tzinfo=UTC) if deleting else None,
            resource_version=resource_version,
        ),
        spec=k8s_client.V1ServiceSpec(
            cluster_ip=cluster_ip,
            ports=[k8s_client.V1ServicePort(port=p) for p in ([8080] if ports is None else ports)],
        ),
    )


def api_error(status: int, reason: str, body: str | None = None) -> ApiException:
    exc = ApiException(status=status, reason=reason)
    exc.body = body
    return exc


class FakeCoreClient:
    """In-memory stand-in for K8sCoreClient.

    Services and pods live in dicts; ``calls`` records every mutation in order.
    Each request yields to the event loop once, like a real network round trip.
    """

    def __init__(self) -> None:
        self.services: dict[tuple[str, str], k8s_client.V1Service] = {}
        self.pods: dict[tuple[str, str], dict[str, Any]] = {}
        self.calls: list[tuple[str, Any]] = []
        self.fail_next: dict[str, ApiException] = {}

    def _maybe_fail(self, method: str) -> None:
        if method in self.fail_next:
            raise self.fail_next.pop(method)

    # --- test helpers ---

    def add_service(self, service: k8s_client.V1Service) -> None:
        self.services[(service.metadata.namespace, service.metadata.name)] = service

    def request_delete(self, namespace: str, name: str) -> None:
        """Mimic ``kubectl delete``: mark for deletion while finalizers remain."""
        service = self.services[(namespace, name)]
        if service.metadata.finalizers:
            service.metadata.deletion_timestamp = datetime(2024, 1, 2, tzinfo=UTC)
        else:
            del self.services[(namespace, name)]

    def stored_service(self, namespace: str = "default", name: str = "web") -> k8s_client.V1Service | None:
        return self.services.get((namespace, name))

    def pods_in(self, namespace: str) -> list[dict[str, Any]]:
        return [manifest for (ns, _), manifest in self.pods.items() if ns == namespace]

    @property
    def mutations(self) -> list[str]:
        return [name for name, _ in self.calls]

    # --- K8sCoreClient interface ---

    async def get_service(self, namespace: str, name: str) -> k8s_client.V1Service | None:
        await asyncio.sleep(0)
        self._maybe_fail("get_service")
        service = self.services.get((namespace, name))
        return copy.deepcopy(service) if service is not None else None

    async def replace_service(self, service: k8s_client.V1Service) -> k8s_client.V1Service:
        await asyncio.sleep(0)
        self._maybe_fail("replace_service")
        key = (service.metadata.namespace, service.metadata.name)
        stored = self.services.get(key)
        if stored is None:
            raise api_error(404, "Not Found")
        if stored.metadata.resource_version != service.metadata.resource_version:
            raise api_error(409, "Conflict", '{"reason": "Conflict"}')
        updated = copy.deepcopy(service)
        updated.metadata.resource_version = str(int(stored.metadata.resource_version) + 1)
        self.calls.append(("replace_service", list(updated.metadata.finalizers or [])))
        if updated.metadata.deletion_timestamp is not None and not updated.metadata.finalizers:
            del self.services[key]
        else:
            self.services[key] = updated
        return copy.deepcopy(updated)

    async def list_pods(self, namespace: str, label_selector: str) -> list[k8s_client.V1Pod]:
        await asyncio.sleep(0)
        self._maybe_fail("list_pods")
        wanted = dict(part.split("=", 1) for part in label_selector.split(","))
        matches = []
        for (ns, name), manifest in self.pods.items():
            labels = manifest["metadata"].get("labels", {})
            if ns == namespace and all(labels.get(k) == v for k, v in wanted.items()):
                matches.append(k8s_client.V1Pod(metadata=k8s_client.V1ObjectMeta(name=name, namespace=ns)))
        return matches

    async def create_pod(self, namespace: str, manifest: dict[str, Any]) -> k8s_client.V1Pod:
        await asyncio.sleep(0)
        self._maybe_fail("create_pod")
        name = manifest["metadata"]["name"]
        if (namespace, name) in self.pods:
            raise api_error(409, "Conflict", '{"kind": "Status", "reason": "AlreadyExists"}')
        self.pods[(namespace, name)] = copy.deepcopy(manifest)
        self.calls.append(("create_pod", name))
        return k8s_client.V1Pod(metadata=k8s_client.V1ObjectMeta(name=name, namespace=namespace))

    async def delete_pod(self, namespace: str, name: str) -> None:
        await asyncio.sleep(0)
        self._maybe_fail("delete_pod")
        if (namespace, name) not in self.pods:
            raise api_error(404, "Not Found")
        del self.pods[(namespace, name)]
        self.calls.append(("delete_pod", name))

    async def check_access(self, namespace: str) -> None:
        self._maybe_fail("check_access")


@pytest.fixture
def controller_config() -> ControllerConfig:
    return ControllerConfig(token=TEST_TOKEN)


@pytest.fixture
def fake_cluster() -> FakeCoreClient:
    return FakeCoreClient()


@pytest.fixture
def web_key() -> ServiceKey:
    return ServiceKey(namespace="default", name="web")


@pytest.fixture
def service_factory():
    """Factory fixture for V1Service objects; see ``make_service`` for parameters."""
    return make_service
