"""Tunnel pod lifecycle: idempotent create and label-based delete."""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from kubernetes.client.exceptions import ApiException

from ngrok_tunnel_controller.clients.k8s_core import K8sCoreClient, is_already_exists
from ngrok_tunnel_controller.config import TUNNEL_IMAGE, TUNNEL_NAMESPACE, TUNNEL_RUN_AS_USER
from ngrok_tunnel_controller.models import ServiceKey
from ngrok_tunnel_controller.naming import association_labels, label_selector
from ngrok_tunnel_controller.workload import build_tunnel_pod

log = structlog.get_logger()


class DependentNotFoundError(LookupError):
    """Raised when cleanup is requested but no tunnel pod exists for the owner."""

    def __init__(self, owner: ServiceKey, namespace: str) -> None:
        self.owner = owner
        self.namespace = namespace
        super().__init__(f"can't find dependent tunnel pod for service {owner} in namespace {namespace}")


@dataclass(frozen=True)
class TunnelRemoval:
    """Proof that the owner's tunnel pod was deleted; required to release the finalizer."""

    owner: ServiceKey
    pod_name: str


class TunnelPodManager:
    """Creates and deletes the single tunnel pod belonging to a Service.

    The pod is found again on every call by the owner's association label, so no
    state is kept between calls.
    """

    def __init__(
        self,
        client: K8sCoreClient,
        *,
        namespace: str = TUNNEL_NAMESPACE,
        image: str = TUNNEL_IMAGE,
        run_as_user: int = TUNNEL_RUN_AS_USER,
    ) -> None:
        self._client = client
        self._namespace = namespace
        self._image = image
        self._run_as_user = run_as_user

    @property
    def namespace(self) -> str:
        return self._namespace

    def _selector(self, owner: ServiceKey) -> str:
        return label_selector(association_labels(owner))

    async def ensure_create(self, target: str, owner: ServiceKey, token: str) -> bool:
        """Create the owner's tunnel pod unless one already exists.

        Args:
            target: ``host:port`` the tunnel forwards to.
            owner: Key of the Service being exposed.
            token: ngrok authentication token.

        Returns:
            True if a pod was created by this call, False if one already existed.

        Raises:
            ApiException: For any failure other than AlreadyExists on create.
        """
        pods = await self._client.list_pods(self._namespace, self._selector(owner))
        if pods:
            log.debug("tunnel_pod_exists", owner=str(owner), pod=pods[0].metadata.name)
            return False

        manifest = build_tunnel_pod(
            target,
            owner,
            token,
            namespace=self._namespace,
            image=self._image,
            run_as_user=self._run_as_user,
        )
        try:
            await self._client.create_pod(self._namespace, manifest)
        except ApiException as e:
            if is_already_exists(e):
                # Lost a race with another create for the same owner.
                log.info("tunnel_pod_already_exists", owner=str(owner))
                return False
            raise
        log.info("tunnel_pod_created", owner=str(owner), pod=manifest["metadata"]["name"], target=target)
        return True

    async def delete(self, owner: ServiceKey) -> TunnelRemoval:
        """Delete the owner's tunnel pod.

        Returns:
            A TunnelRemoval naming the deleted pod.

        Raises:
            DependentNotFoundError: If no tunnel pod matches the owner.
            ApiException: If listing or deleting fails.
        """
        pods = await self._client.list_pods(self._namespace, self._selector(owner))
        if not pods:
            raise DependentNotFoundError(owner, self._namespace)

        pod_name = pods[0].metadata.name
        await self._client.delete_pod(self._namespace, pod_name)
        log.info("tunnel_pod_deleted", owner=str(owner), pod=pod_name)
        return TunnelRemoval(owner=owner, pod_name=pod_name)
