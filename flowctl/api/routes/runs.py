"""
Run endpoints: the Turn API over HTTP.

Endpoints:
    POST /api/runs                                  - Start a run
    GET  /api/runs                                  - List run ids
    GET  /api/runs/{run_id}                         - Export a run
    DELETE /api/runs/{run_id}                       - Discard a run
    POST /api/runs/{run_id}/step                    - Commit one turn
    POST /api/runs/{run_id}/fork                    - Fork at a user turn
    GET  /api/runs/{run_id}/tree                    - Materialized history tree
    GET  /api/runs/{run_id}/nodes/{node_id}/ancestry - Conversation so far
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Response
from pydantic import BaseModel, Field

from flowctl.errors import FlowctlError
from flowctl.runtime.types import MAIN_BRANCH_ID

from ..errors import http_error, to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/runs", tags=["runs"])


# =============================================================================
# Pydantic Models
# =============================================================================


class RunStartRequest(BaseModel):
    """Request to start a new run."""

    flow_id: str
    run_id: Optional[str] = None
    initial_facts: List[str] = Field(default_factory=list)


class RunStartResponse(BaseModel):
    run_id: str
    flow_id: str
    branch_id: str
    root_node_id: str


class RunListResponse(BaseModel):
    runs: List[str]


class StepRequest(BaseModel):
    """One user turn against a branch leaf."""

    branch_id: str = MAIN_BRANCH_ID
    cursor_node_id: str
    user_message: Optional[str] = None
    facts: List[str] = Field(default_factory=list)


class ForkRequest(BaseModel):
    from_node_id: str
    label: Optional[str] = None


# =============================================================================
# Endpoints
# =============================================================================


@router.post("", response_model=RunStartResponse, status_code=201)
async def start_run(request: RunStartRequest):
    """Start a run on a registered flow."""
    from ..server import get_run_service

    try:
        run = get_run_service().start_run(
            request.flow_id,
            initial_facts=request.initial_facts,
            run_id=request.run_id,
        )
    except FlowctlError as e:
        raise to_http_exception(e)
    except ValueError as e:
        raise http_error(409, "RUN_EXISTS", str(e), {"run_id": request.run_id})

    return RunStartResponse(
        run_id=run.run_id,
        flow_id=run.flow.flow_id,
        branch_id=MAIN_BRANCH_ID,
        root_node_id=run.root_node_id,
    )


@router.get("", response_model=RunListResponse)
async def list_runs():
    from ..server import get_run_service

    return RunListResponse(runs=get_run_service().list_runs())


@router.get("/{run_id}")
async def get_run(run_id: str) -> Dict[str, Any]:
    """Export a run: branches, leaves, nodes and per-branch state."""
    from ..server import get_run_service

    try:
        return get_run_service().export_run(run_id)
    except FlowctlError as e:
        raise to_http_exception(e)


@router.delete("/{run_id}", status_code=204)
async def discard_run(run_id: str):
    from ..server import get_run_service

    try:
        get_run_service().discard_run(run_id)
    except FlowctlError as e:
        raise to_http_exception(e)
    return Response(status_code=204)


@router.post("/{run_id}/step")
async def step(run_id: str, request: StepRequest) -> Dict[str, Any]:
    """Commit one turn.

    DEADLOCK, COMPLETE and HANDOFF are normal outcomes reported in ``status``.
    """
    from ..server import get_run_service

    try:
        result = await get_run_service().step(
            run_id,
            request.branch_id,
            request.cursor_node_id,
            request.user_message,
            facts=request.facts,
        )
    except FlowctlError as e:
        raise to_http_exception(e)
    return result.to_dict()


@router.post("/{run_id}/fork", status_code=201)
async def fork(run_id: str, request: ForkRequest) -> Dict[str, Any]:
    """Create a branch anchored at a user-message node."""
    from ..server import get_run_service

    try:
        result = await get_run_service().fork(run_id, request.from_node_id, request.label)
    except FlowctlError as e:
        raise to_http_exception(e)
    return result.to_dict()


@router.get("/{run_id}/tree")
async def get_tree(run_id: str) -> Dict[str, Any]:
    from ..server import get_run_service

    try:
        return get_run_service().get_tree(run_id).to_dict()
    except FlowctlError as e:
        raise to_http_exception(e)


@router.get("/{run_id}/nodes/{node_id}/ancestry")
async def get_ancestry(run_id: str, node_id: str) -> Dict[str, Any]:
    """Root-first conversation path ending at node_id."""
    from ..server import get_run_service

    try:
        chain = get_run_service().get_ancestry(run_id, node_id)
    except FlowctlError as e:
        raise to_http_exception(e)
    return {"nodeId": node_id, "chain": [n.to_dict() for n in chain]}
