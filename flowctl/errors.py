"""
errors.py - Exception hierarchy for the flow controller.

Every exception carries a stable ``code`` that callers (and the HTTP layer)
surface verbatim. Terminal turn outcomes (DEADLOCK, COMPLETE, HANDOFF) are NOT
exceptions; they travel in the normal step result.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from flowctl.validator.errors import ValidationResult


class FlowctlError(Exception):
    """Base class for all flow controller errors."""

    code = "FLOWCTL_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class CompileError(FlowctlError):
    """Flow definition failed validation; the flow cannot be activated."""

    code = "VALIDATION_ERROR"

    def __init__(self, result: "ValidationResult"):
        first = result.sorted_errors()[0] if result.errors else None
        if first is None:
            message = "Flow definition is invalid"
        elif first.subject:
            message = f"{first.code}: {first.subject}: {first.message}"
        else:
            message = f"{first.code}: {first.message}"
        super().__init__(message, details=result.to_dict())
        self.result = result

    @property
    def subject(self) -> Optional[str]:
        """Offending gate/fact/node name of the first error, if any."""
        errors = self.result.sorted_errors()
        return errors[0].subject if errors else None


class ForkViolation(FlowctlError):
    """Fork requested at a node that carries no user message."""

    code = "FORK_REJECTED_NOT_USER_TURN"

    def __init__(self, node_id: str):
        super().__init__(
            f"Cannot fork at node '{node_id}': forks originate only at user turns",
            details={"node_id": node_id},
        )
        self.node_id = node_id


class OrphanedNodeError(FlowctlError):
    """A parentNodeId does not resolve (or parent links form a cycle)."""

    code = "ORPHANED_NODE"

    def __init__(self, node_id: str, parent_node_id: Optional[str], reason: str = ""):
        message = reason or (
            f"Node '{node_id}' references parent '{parent_node_id}' which does not exist"
        )
        super().__init__(
            message,
            details={"node_id": node_id, "parent_node_id": parent_node_id},
        )
        self.node_id = node_id
        self.parent_node_id = parent_node_id


class FlowNotFound(FlowctlError):
    code = "FLOW_NOT_FOUND"


class RunNotFound(FlowctlError):
    code = "RUN_NOT_FOUND"


class BranchNotFound(FlowctlError):
    code = "BRANCH_NOT_FOUND"


class NodeNotFound(FlowctlError):
    code = "NODE_NOT_FOUND"


class StaleCursor(FlowctlError):
    """Step submitted against a cursor that is not the branch leaf."""

    code = "STALE_CURSOR"


class BranchTerminated(FlowctlError):
    """Branch ended in a human handoff; no further turns are accepted."""

    code = "BRANCH_TERMINATED"
