"""Validation helpers for Kubernetes names and label values."""

from __future__ import annotations

import re

# RFC 1123 label: lowercase alphanumeric and hyphens, 1-63 chars, starts/ends with alphanumeric
_NAMESPACE_RE = re.compile(r"^[a-z0-9]([a-z0-9\-]{0,61}[a-z0-9])?$")

# Label value: empty, or up to 63 chars of [A-Za-z0-9_.-] starting and ending alphanumeric
_LABEL_VALUE_RE = re.compile(r"^([A-Za-z0-9]([A-Za-z0-9_.\-]{0,61}[A-Za-z0-9])?)?$")


def validate_namespace(namespace: str | None) -> None:
    """Validate a Kubernetes namespace name against RFC 1123."""
    if namespace is None:
        return
    if not _NAMESPACE_RE.match(namespace):
        msg = f"Invalid namespace: {namespace!r}. Must be a valid RFC 1123 label."
        raise ValueError(msg)


def validate_label_value(value: str) -> None:
    """Validate a string for use as a Kubernetes label value (and pod name)."""
    if not value or not _LABEL_VALUE_RE.match(value):
        msg = (
            f"Invalid label value: {value!r}. Must be 1-63 alphanumeric characters, "
            "'-', '_' or '.', starting and ending with an alphanumeric character."
        )
        raise ValueError(msg)
