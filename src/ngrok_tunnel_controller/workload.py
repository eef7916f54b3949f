"""Tunnel pod manifest builder."""

from __future__ import annotations

from typing import Any

from ngrok_tunnel_controller.config import TUNNEL_IMAGE, TUNNEL_NAMESPACE, TUNNEL_RUN_AS_USER
from ngrok_tunnel_controller.models import ServiceKey, ServiceSnapshot
from ngrok_tunnel_controller.naming import association_labels, checked_association, owner_annotations

TUNNEL_CONTAINER_NAME = "tunnel"
TUNNEL_COMMAND = ["ngrok"]


class UnexposableServiceError(ValueError):
    """Raised when a Service has no cluster IP or no ports to tunnel to."""


def service_target(service: ServiceSnapshot) -> str:
    """Return ``<clusterIP>:<first port>`` for a Service.

    Only the first declared port is exposed.
    """
    if not service.cluster_ip or service.cluster_ip == "None":
        msg = f"Service {service.key} has no cluster IP and cannot be tunnelled."
        raise UnexposableServiceError(msg)
    if not service.ports:
        msg = f"Service {service.key} declares no ports and cannot be tunnelled."
        raise UnexposableServiceError(msg)
    return f"{service.cluster_ip}:{service.ports[0]}"


def tunnel_args(target: str, token: str) -> list[str]:
    return ["http", target, "--log", "stdout", "--authtoken", token]


def build_tunnel_pod(
    target: str,
    owner: ServiceKey,
    token: str,
    *,
    namespace: str = TUNNEL_NAMESPACE,
    image: str = TUNNEL_IMAGE,
    run_as_user: int = TUNNEL_RUN_AS_USER,
) -> dict[str, Any]:
    """Build the Pod manifest that runs the ngrok client for one Service.

    The pod is named and labelled by the owner's association value and carries no
    ownerReferences; cleanup is done explicitly by the reconciler. The image is
    always pulled so every new tunnel runs the current client.

    Args:
        target: ``host:port`` the tunnel forwards to.
        owner: Key of the Service being exposed.
        token: ngrok authentication token.
        namespace: Namespace the pod is created in.
        image: Container image providing the ``ngrok`` binary.
        run_as_user: Unprivileged uid the container runs as.

    Returns:
        A manifest dict accepted by ``CoreV1Api.create_namespaced_pod``.
    """
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": checked_association(owner),
            "namespace": namespace,
            "labels": association_labels(owner),
            "annotations": owner_annotations(owner),
        },
        "spec": {
            "restartPolicy": "Always",
            "containers": [
                {
                    "name": TUNNEL_CONTAINER_NAME,
                    "image": image,
                    "imagePullPolicy": "Always",
                    "command": list(TUNNEL_COMMAND),
                    "args": tunnel_args(target, token),
                    "securityContext": {
                        "runAsUser": run_as_user,
                        "runAsNonRoot": run_as_user != 0,
                        "allowPrivilegeEscalation": False,
                    },
                }
            ],
        },
    }
