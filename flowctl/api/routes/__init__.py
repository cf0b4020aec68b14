"""
Routes package for the flow controller API.

This package contains the FastAPI routers for:
- flows: Flow definition validation and registration
- runs: Turn API (start, step, fork, tree, ancestry)
"""

from .flows import router as flows_router
from .runs import router as runs_router

__all__ = [
    "flows_router",
    "runs_router",
]
