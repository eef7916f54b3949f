"""Controller configuration, well-known names, and environment variable overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from ngrok_tunnel_controller.validation import validate_namespace

# Services carrying NGROK_LABEL=NGROK_LABEL_VALUE are exposed.
NGROK_LABEL = "ngrok"
NGROK_LABEL_VALUE = "true"

TUNNEL_NAMESPACE = "ngrok-tunnel"
FINALIZER_NAME = "ngrok.io/tunnel"
TUNNEL_IMAGE = "docker.io/soider/ngrok-tunnel-pod"
TUNNEL_RUN_AS_USER = 1000
DEFAULT_WORKERS = 2

TOKEN_ENV = "NGROK_TOKEN"
CONFIG_FILE_ENV = "NGROK_CONTROLLER_CONFIG"

_TOKEN_HELP = "see https://dashboard.ngrok.com/get-started/your-authtoken"


class ConfigError(RuntimeError):
    """Raised when the controller cannot start with the supplied configuration."""


@dataclass(frozen=True)
class ControllerConfig:
    """Everything the controller needs to run against one cluster."""

    token: str
    kubeconfig: str | None = None
    tunnel_namespace: str = TUNNEL_NAMESPACE
    image: str = TUNNEL_IMAGE
    run_as_user: int = TUNNEL_RUN_AS_USER
    workers: int = DEFAULT_WORKERS


# Keys accepted under the top-level ``controller`` mapping of the YAML file.
_FILE_FIELDS = ("tunnel_namespace", "image", "run_as_user", "workers")

_ENV_FIELDS = {
    "tunnel_namespace": "NGROK_TUNNEL_NAMESPACE",
    "image": "NGROK_TUNNEL_IMAGE",
    "run_as_user": "NGROK_TUNNEL_RUN_AS_USER",
    "workers": "NGROK_CONTROLLER_WORKERS",
}

_INT_FIELDS = {"run_as_user", "workers"}


def _load_file_overrides(path: Path) -> dict[str, Any]:
    """Parse the optional YAML configuration file.

    Args:
        path: Path to the YAML file.

    Returns:
        A dict of recognised settings found under the ``controller`` key.

    Raises:
        ConfigError: If the file is missing or its content is malformed.
    """
    if not path.exists():
        msg = f"Controller configuration file not found: {path}. Unset {CONFIG_FILE_ENV} to use defaults."
        raise ConfigError(msg)

    try:
        raw = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        msg = f"Controller config file {path} is not valid YAML: {e}"
        raise ConfigError(msg) from e

    if raw is None:
        return {}
    if not isinstance(raw, dict) or not isinstance(raw.get("controller", {}), dict):
        msg = f"Controller config file {path} must contain a top-level 'controller' mapping."
        raise ConfigError(msg)

    section: dict[str, Any] = raw.get("controller") or {}
    unknown = sorted(set(section) - set(_FILE_FIELDS))
    if unknown:
        msg = f"Controller config file {path} has unknown keys: {', '.join(unknown)}."
        raise ConfigError(msg)
    return dict(section)


def _coerce(field_name: str, value: Any) -> Any:
    if field_name not in _INT_FIELDS:
        return str(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        msg = f"{field_name} must be an integer, got {value!r}."
        raise ConfigError(msg) from None


def load_config(environ: dict[str, str] | None = None) -> ControllerConfig:
    """Build the controller configuration from defaults, the YAML file, and the environment.

    The provider token is read only from ``NGROK_TOKEN``. An empty ``KUBECONFIG``
    selects in-cluster configuration.

    Args:
        environ: Environment mapping to read. Defaults to ``os.environ``.

    Returns:
        The validated ControllerConfig.

    Raises:
        ConfigError: If the token is missing or any setting is invalid.
    """
    env = os.environ if environ is None else environ

    token = env.get(TOKEN_ENV, "").strip()
    if not token:
        msg = f"Please set the {TOKEN_ENV} environment variable, {_TOKEN_HELP}"
        raise ConfigError(msg)

    values: dict[str, Any] = {}
    config_file = env.get(CONFIG_FILE_ENV)
    if config_file:
        values.update(_load_file_overrides(Path(config_file)))

    for field_name, env_name in _ENV_FIELDS.items():
        if env.get(env_name):
            values[field_name] = env[env_name]

    values = {name: _coerce(name, value) for name, value in values.items()}

    config = ControllerConfig(token=token, kubeconfig=env.get("KUBECONFIG") or None, **values)
    validate_controller_config(config)
    return config


def validate_controller_config(config: ControllerConfig) -> None:
    """Validate a ControllerConfig, collecting every problem into one error.

    Raises ConfigError if any field is out of range.
    """
    errors: list[str] = []
    try:
        validate_namespace(config.tunnel_namespace)
    except ValueError as e:
        errors.append(f"tunnel_namespace: {e}")
    if not config.image:
        errors.append("image is empty")
    if config.run_as_user < 0:
        errors.append("run_as_user must not be negative")
    if config.workers < 1:
        errors.append("workers must be at least 1")

    if errors:
        detail = "; ".join(errors)
        msg = f"Controller configuration errors: {detail}."
        raise ConfigError(msg)
