"""Runtime record types.

Re-exports identifiers, closed enumerations and the immutable history records.
"""

from ._ids import (
    MAIN_BRANCH_ID,
    BranchId,
    ExecutionNodeId,
    RunId,
    generate_branch_id,
    generate_node_id,
    generate_run_id,
)
from ._time import _datetime_to_iso, _iso_to_datetime, utcnow
from .history import Branch, ExecutionNode
from .modes import PROMPTING_MODES, ControllerPhase, Mode, TurnStatus

__all__ = [
    "MAIN_BRANCH_ID",
    "BranchId",
    "ExecutionNodeId",
    "RunId",
    "generate_branch_id",
    "generate_node_id",
    "generate_run_id",
    "utcnow",
    "Branch",
    "ExecutionNode",
    "PROMPTING_MODES",
    "ControllerPhase",
    "Mode",
    "TurnStatus",
]
