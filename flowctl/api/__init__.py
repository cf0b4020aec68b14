"""HTTP API for the flow controller."""

from .server import create_app, get_run_service

__all__ = ["create_app", "get_run_service"]
