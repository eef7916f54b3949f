"""Deterministic names and labels linking a Service to its tunnel pod."""

from __future__ import annotations

from collections.abc import Mapping

from ngrok_tunnel_controller.models import ServiceKey
from ngrok_tunnel_controller.validation import validate_label_value

ASSOCIATION_LABEL = "exposed-from"
OWNER_NAMESPACE_ANNOTATION = "ngrok.io/owner-namespace"
OWNER_NAME_ANNOTATION = "ngrok.io/owner-name"


def derive_association(namespace: str, name: str) -> str:
    """Return the association value for a Service, e.g. ``ns-default-svc-web``.

    Used both as the ``exposed-from`` label value and as the tunnel pod name.
    """
    return f"ns-{namespace}-svc-{name}"


def checked_association(owner: ServiceKey) -> str:
    """Return the association value for ``owner``.

    Raises:
        ValueError: If the value is not usable as a label value or pod name, e.g.
            when namespace and name together exceed 63 characters.
    """
    value = derive_association(owner.namespace, owner.name)
    validate_label_value(value)
    return value


def association_labels(owner: ServiceKey) -> dict[str, str]:
    return {ASSOCIATION_LABEL: checked_association(owner)}


def label_selector(labels: dict[str, str]) -> str:
    """Render an equality-based label selector string from a label mapping."""
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))


def owner_annotations(owner: ServiceKey) -> dict[str, str]:
    return {
        OWNER_NAMESPACE_ANNOTATION: owner.namespace,
        OWNER_NAME_ANNOTATION: owner.name,
    }


def owner_from_annotations(annotations: Mapping[str, str] | None) -> ServiceKey | None:
    """Recover the owning Service key from a tunnel pod's annotations.

    Returns None when either annotation is missing, e.g. for pods created by hand.
    """
    annotations = annotations or {}
    namespace = annotations.get(OWNER_NAMESPACE_ANNOTATION)
    name = annotations.get(OWNER_NAME_ANNOTATION)
    if not namespace or not name:
        return None
    return ServiceKey(namespace=namespace, name=name)
