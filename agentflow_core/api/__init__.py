"""HTTP API."""

from .app import RunRequest, create_app, serve

__all__ = ["RunRequest", "create_app", "serve"]
