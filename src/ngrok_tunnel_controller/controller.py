"""Controller wiring: kopf delivers watch events to the work queue, workers run the reconciler."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

import kopf
import structlog

from ngrok_tunnel_controller.clients.k8s_core import K8sCoreClient
from ngrok_tunnel_controller.config import NGROK_LABEL, ControllerConfig
from ngrok_tunnel_controller.lifecycle import TunnelPodManager
from ngrok_tunnel_controller.models import ServiceKey, scrub_sensitive_values
from ngrok_tunnel_controller.naming import ASSOCIATION_LABEL, owner_from_annotations
from ngrok_tunnel_controller.reconciler import Reconciler
from ngrok_tunnel_controller.workqueue import RateLimitingQueue

log = structlog.get_logger()

WATCH_TIMEOUT_SECONDS = 300


class TunnelController:
    """Runs reconciles for labelled Services until asked to stop.

    kopf lists and watches Services and tunnel pods; every event only enqueues
    the affected Service key. Reconciles for the same key never overlap; up to
    ``config.workers`` distinct keys are reconciled concurrently.
    """

    def __init__(
        self,
        config: ControllerConfig,
        client: K8sCoreClient | None = None,
        queue: RateLimitingQueue | None = None,
    ) -> None:
        self._config = config
        self._client = client or K8sCoreClient(config)
        self._queue = queue or RateLimitingQueue()
        pods = TunnelPodManager(
            self._client,
            namespace=config.tunnel_namespace,
            image=config.image,
            run_as_user=config.run_as_user,
        )
        self.reconciler = Reconciler(self._client, pods, config.token)

    @property
    def queue(self) -> RateLimitingQueue:
        return self._queue

    # --- kopf handlers ---

    async def login(self, **_: Any) -> kopf.ConnectionInfo:
        return await asyncio.to_thread(self._client.connection_info)

    async def on_service_event(self, namespace: str, name: str, **_: Any) -> None:
        self._queue.add(ServiceKey(namespace=namespace, name=name))

    async def on_tunnel_pod_event(self, annotations: Mapping[str, str], **_: Any) -> None:
        """Enqueue the Service a tunnel pod belongs to, so a lost pod is recreated."""
        owner = owner_from_annotations(annotations)
        if owner is not None:
            self._queue.add(owner)

    def in_tunnel_namespace(self, namespace: str | None, **_: Any) -> bool:
        return namespace == self._config.tunnel_namespace

    def registry(self) -> kopf.OperatorRegistry:
        registry = kopf.OperatorRegistry()
        kopf.on.login(registry=registry)(self.login)
        kopf.on.event(
            "",
            "v1",
            "services",
            labels={NGROK_LABEL: kopf.PRESENT},
            registry=registry,
        )(self.on_service_event)
        kopf.on.event(
            "",
            "v1",
            "pods",
            labels={ASSOCIATION_LABEL: kopf.PRESENT},
            when=self.in_tunnel_namespace,
            registry=registry,
        )(self.on_tunnel_pod_event)
        return registry

    def operator_settings(self) -> kopf.OperatorSettings:
        settings = kopf.OperatorSettings()
        # kopf would otherwise post every handler log line as an Event on user Services.
        settings.posting.enabled = False
        settings.watching.server_timeout = WATCH_TIMEOUT_SECONDS
        return settings

    # --- workers ---

    async def process_next(self) -> bool:
        """Reconcile one key from the queue. Returns False once the queue is shut down."""
        key = await self._queue.get()
        if key is None:
            return False
        try:
            result = await self.reconciler.reconcile(key)
        except Exception as e:
            log.error(
                "reconcile_failed",
                key=str(key),
                error_type=type(e).__name__,
                error=scrub_sensitive_values(str(e), secrets=[self._config.token]),
                retries=self._queue.num_requeues(key),
            )
            self._queue.add_rate_limited(key)
        else:
            if result.requeue:
                self._queue.add_rate_limited(key)
            else:
                self._queue.forget(key)
        finally:
            self._queue.done(key)
        return True

    async def _worker(self, worker_id: int) -> None:
        log.debug("worker_started", worker=worker_id)
        while await self.process_next():
            pass
        log.debug("worker_stopped", worker=worker_id)

    async def run(self, stop: asyncio.Event) -> None:
        """Run the kopf operator and the workers until ``stop`` is set.

        The operator has finished delivering events before the queue is shut
        down, so nothing is enqueued once this returns.

        Raises:
            ApiException: If the cluster API cannot be reached at startup.
        """
        await self._client.check_access(self._config.tunnel_namespace)

        workers = [asyncio.create_task(self._worker(i)) for i in range(self._config.workers)]
        log.info(
            "controller_started",
            workers=self._config.workers,
            tunnel_namespace=self._config.tunnel_namespace,
        )
        try:
            await kopf.operator(
                registry=self.registry(),
                settings=self.operator_settings(),
                clusterwide=True,
                standalone=True,
                stop_flag=stop,
            )
        finally:
            log.info("controller_stopping")
            self._queue.shut_down()
            await asyncio.gather(*workers, return_exceptions=True)
            log.info("controller_stopped")
