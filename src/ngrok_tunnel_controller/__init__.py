"""Kubernetes controller that exposes labelled Services through ngrok tunnels."""

__version__ = "0.1.0"
