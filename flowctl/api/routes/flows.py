"""
Flow endpoints: validation and registration of flow definitions.

Endpoints:
    GET  /api/flows            - List registered flow ids
    POST /api/flows/validate   - Validate a definition (never registers)
    POST /api/flows            - Compile and register a definition
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from flowctl.errors import FlowctlError
from flowctl.spec.compiler import compile_report

from ..errors import to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/flows", tags=["flows"])


# =============================================================================
# Pydantic Models
# =============================================================================


class FlowDefinitionRequest(BaseModel):
    """Flow definition payload (the JSON flow contract)."""

    definition: Dict[str, Any]
    flow_id: Optional[str] = None
    node_patches: Optional[Dict[str, Dict[str, Any]]] = None


class ValidationReportResponse(BaseModel):
    ok: bool
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    warnings: List[Dict[str, Any]] = Field(default_factory=list)
    stats: Dict[str, int] = Field(default_factory=dict)


class FlowRegisteredResponse(BaseModel):
    flow_id: str
    version: str
    node_count: int
    gate_count: int
    node_types: Dict[str, int] = Field(default_factory=dict)
    warnings: List[Dict[str, Any]] = Field(default_factory=list)


class FlowListResponse(BaseModel):
    flows: List[str]


# =============================================================================
# Endpoints
# =============================================================================


@router.get("", response_model=FlowListResponse)
async def list_flows():
    """List registered flow ids."""
    from ..server import get_run_service

    return FlowListResponse(flows=get_run_service().list_flows())


@router.post("/validate", response_model=ValidationReportResponse)
async def validate_flow(request: FlowDefinitionRequest):
    """Validate a flow definition and report every problem found.

    Always returns 200; ``ok`` says whether the flow would compile.
    """
    return ValidationReportResponse(**compile_report(request.definition, request.node_patches))


@router.post("", response_model=FlowRegisteredResponse, status_code=201)
async def register_flow(request: FlowDefinitionRequest):
    """Compile and register a flow so runs can be started on it."""
    from ..server import get_run_service

    try:
        flow, result = get_run_service().register_flow(
            request.definition,
            flow_id=request.flow_id,
            node_patches=request.node_patches,
        )
    except FlowctlError as e:
        logger.info("Rejected flow definition: %s", e.message)
        raise to_http_exception(e)

    return FlowRegisteredResponse(
        flow_id=flow.flow_id,
        version=flow.version,
        node_count=len(flow.nodes),
        gate_count=len(flow.gate_definitions),
        node_types={kind: len(ids) for kind, ids in flow.nodes_by_type.items()},
        warnings=[w.to_dict() for w in result.sorted_warnings()],
    )
