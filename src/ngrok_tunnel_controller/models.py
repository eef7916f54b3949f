"""Pydantic v2 models for reconcile keys, observed services, and reconcile results."""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ServiceKey(BaseModel):
    """The ``(namespace, name)`` identity of a Service; the unit of work in the queue."""

    model_config = ConfigDict(frozen=True)

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class ServiceSnapshot(BaseModel):
    """The fields of a fetched Service that the reconciler decides on.

    Built fresh from the API object on every reconcile and never shared between
    reconciles.
    """

    model_config = ConfigDict(frozen=True)

    namespace: str
    name: str
    labels: dict[str, str] = Field(default_factory=dict)
    finalizers: list[str] = Field(default_factory=list)
    deleting: bool = False
    cluster_ip: str | None = None
    ports: list[int] = Field(default_factory=list)
    resource_version: str | None = None

    @property
    def key(self) -> ServiceKey:
        return ServiceKey(namespace=self.namespace, name=self.name)

    @classmethod
    def from_k8s(cls, service: Any) -> ServiceSnapshot:
        """Build a snapshot from a ``V1Service`` returned by the Kubernetes client."""
        metadata = service.metadata
        spec = service.spec
        return cls(
            namespace=metadata.namespace,
            name=metadata.name,
            labels=dict(metadata.labels or {}),
            finalizers=list(metadata.finalizers or []),
            deleting=metadata.deletion_timestamp is not None,
            cluster_ip=spec.cluster_ip if spec else None,
            ports=[p.port for p in ((spec.ports if spec else None) or [])],
            resource_version=metadata.resource_version,
        )


class ReconcileResult(BaseModel):
    """Instruction returned to the work queue after a successful reconcile."""

    model_config = ConfigDict(frozen=True)

    requeue: bool = False


# --- Output scrubbing ---

_AUTHTOKEN_PATTERN = re.compile(r"(--authtoken[\"',\s]+)[^\"',\s\[\]]+")


def scrub_sensitive_values(text: str, secrets: Iterable[str] = ()) -> str:
    """Remove provider credentials from text before it is logged.

    Redacts every literal occurrence of the given secrets and any value that
    follows an ``--authtoken`` flag, including inside serialised argument lists.
    """
    if not text:
        return text
    result = text
    for secret in secrets:
        if secret:
            result = result.replace(secret, "[REDACTED]")
    return _AUTHTOKEN_PATTERN.sub(r"\1[REDACTED]", result)
