"""Service reconciler: decides from label and deletion state what the tunnel pod should be."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, assert_never

import structlog

from ngrok_tunnel_controller.clients.k8s_core import K8sCoreClient
from ngrok_tunnel_controller.config import FINALIZER_NAME, NGROK_LABEL, NGROK_LABEL_VALUE
from ngrok_tunnel_controller.lifecycle import TunnelPodManager, TunnelRemoval
from ngrok_tunnel_controller.models import ReconcileResult, ServiceKey, ServiceSnapshot
from ngrok_tunnel_controller.naming import checked_association
from ngrok_tunnel_controller.workload import service_target

log = structlog.get_logger()


class ServiceState(enum.Enum):
    """Reconcile state derived from ``(labelled?, deleting?, finalizer held?)``."""

    UNLABELED = "unlabeled"
    ACTIVE = "active"
    TERMINATING = "terminating"
    # Deleting, but our finalizer is already gone: cleanup finished on an earlier pass.
    RELEASED = "released"


def classify(service: ServiceSnapshot, finalizer: str = FINALIZER_NAME) -> ServiceState:
    if service.labels.get(NGROK_LABEL) != NGROK_LABEL_VALUE:
        return ServiceState.UNLABELED
    if not service.deleting:
        return ServiceState.ACTIVE
    if finalizer in service.finalizers:
        return ServiceState.TERMINATING
    return ServiceState.RELEASED


@dataclass(frozen=True)
class FinalizerHeld:
    """Proof that the finalizer is persisted on the Service; required to create its tunnel."""

    key: ServiceKey


class Reconciler:
    """Converges one Service at a time.

    Holds no per-Service state: every call re-reads the Service and keeps the
    fetched object local to that call, so calls for different keys may run
    concurrently.
    """

    def __init__(
        self,
        client: K8sCoreClient,
        pods: TunnelPodManager,
        token: str,
        *,
        finalizer: str = FINALIZER_NAME,
    ) -> None:
        self._client = client
        self._pods = pods
        self._token = token
        self._finalizer = finalizer

    async def reconcile(self, key: ServiceKey) -> ReconcileResult:
        """Reconcile the Service identified by ``key``.

        Returns:
            ReconcileResult with ``requeue=True`` after the finalizer is released.

        Raises:
            Any API error, DependentNotFoundError, UnexposableServiceError, or a
            ValueError for an owner whose association value is too long; the
            caller is expected to retry with backoff.
        """
        with structlog.contextvars.bound_contextvars(key=str(key)):
            log.info("reconciling")
            service = await self._client.get_service(key.namespace, key.name)
            if service is None:
                log.debug("service_not_found")
                return ReconcileResult()

            snapshot = ServiceSnapshot.from_k8s(service)
            state = classify(snapshot, self._finalizer)
            match state:
                case ServiceState.UNLABELED:
                    log.debug("service_not_labelled", label=NGROK_LABEL)
                    return ReconcileResult()
                case ServiceState.RELEASED:
                    log.debug("service_already_released")
                    return ReconcileResult()
                case ServiceState.ACTIVE:
                    # Resolved before the finalizer is added so a Service that can never
                    # get a tunnel is never blocked from deletion.
                    target = service_target(snapshot)
                    checked_association(snapshot.key)
                    held = await self._ensure_finalizer(service, snapshot)
                    await self._ensure_tunnel(snapshot, target, held)
                    return ReconcileResult()
                case ServiceState.TERMINATING:
                    removal = await self._pods.delete(snapshot.key)
                    await self._release_finalizer(service, snapshot, removal)
                    return ReconcileResult(requeue=True)
                case _:
                    assert_never(state)

    async def _ensure_finalizer(self, service: Any, snapshot: ServiceSnapshot) -> FinalizerHeld:
        if self._finalizer not in snapshot.finalizers:
            service.metadata.finalizers = [*snapshot.finalizers, self._finalizer]
            await self._client.replace_service(service)
            log.info("finalizer_added", finalizer=self._finalizer)
        return FinalizerHeld(key=snapshot.key)

    async def _ensure_tunnel(self, snapshot: ServiceSnapshot, target: str, held: FinalizerHeld) -> None:
        if held.key != snapshot.key:
            msg = f"finalizer held for {held.key}, not {snapshot.key}"
            raise RuntimeError(msg)
        log.info("ensuring_tunnel", target=target)
        await self._pods.ensure_create(target, snapshot.key, self._token)

    async def _release_finalizer(self, service: Any, snapshot: ServiceSnapshot, removal: TunnelRemoval) -> None:
        if removal.owner != snapshot.key:
            msg = f"tunnel removed for {removal.owner}, not {snapshot.key}"
            raise RuntimeError(msg)
        service.metadata.finalizers = [f for f in snapshot.finalizers if f != self._finalizer]
        await self._client.replace_service(service)
        log.info("finalizer_removed", finalizer=self._finalizer, pod=removal.pod_name)
