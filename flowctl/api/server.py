"""
FastAPI server for the flow controller.

Usage:
    # Run standalone
    python -m flowctl.api.server

    # Or via factory
    from flowctl.api import create_app
    app = create_app()
    uvicorn.run(app, port=5002)

API Structure:
    /api/flows/           - Flow validation and registration (routes/flows.py)
    /api/runs/            - Turn API (routes/runs.py)
    /api/health           - Health check
"""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from flowctl import __version__
from flowctl.runtime.service import RunService

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    status: str
    version: str
    flows: List[str]
    runs: int


# Global run service (initialized by create_app or on first use)
_run_service: Optional[RunService] = None


def get_run_service() -> RunService:
    """Get or create the global run service."""
    global _run_service
    if _run_service is None:
        _run_service = RunService()
    return _run_service


def create_app(
    service: Optional[RunService] = None,
    enable_cors: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        service: Run service to serve; a fresh one is created when omitted.
        enable_cors: Whether to enable CORS middleware.

    Returns:
        Configured FastAPI application.
    """
    global _run_service
    _run_service = service or RunService()

    app = FastAPI(
        title="Flow Controller API",
        description="Conversation flow execution controller and history tree",
        version=__version__,
    )

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["*"],
        )

    from .routes import flows_router, runs_router

    app.include_router(flows_router, prefix="/api")
    app.include_router(runs_router, prefix="/api")

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        svc = get_run_service()
        return HealthResponse(
            status="ok",
            version=__version__,
            flows=svc.list_flows(),
            runs=len(svc.list_runs()),
        )

    return app


def main():
    """Run the API server."""
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(description="Flow Controller API Server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=5002, help="Port to bind to")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--no-cors", action="store_true", help="Disable CORS")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)

    app = create_app(enable_cors=not args.no_cors)
    logger.info("Starting flow controller API at http://%s:%d", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
