"""Mapping of flowctl errors onto HTTP error responses."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import HTTPException

from flowctl.errors import FlowctlError

STATUS_BY_CODE: Dict[str, int] = {
    "VALIDATION_ERROR": 422,
    "FLOW_NOT_FOUND": 404,
    "RUN_NOT_FOUND": 404,
    "BRANCH_NOT_FOUND": 404,
    "NODE_NOT_FOUND": 404,
    "STALE_CURSOR": 409,
    "BRANCH_TERMINATED": 409,
    "FORK_REJECTED_NOT_USER_TURN": 409,
    "ORPHANED_NODE": 500,
}


def http_error(
    status_code: int, error: str, message: str, details: Optional[Dict[str, Any]] = None
) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"error": error, "message": message, "details": details or {}},
    )


def to_http_exception(exc: FlowctlError) -> HTTPException:
    """Convert a flowctl error into an HTTPException with the standard detail body."""
    return http_error(STATUS_BY_CODE.get(exc.code, 500), exc.code, exc.message, exc.details)
