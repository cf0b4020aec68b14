"""
branches.py - Branch manager and fork-anchor selection.

Forking is split in two operations:
    select_fork_anchor  pure session state; validates the anchor, creates nothing
    BranchManager.fork  the only operation that adds to the branch set

Forks originate only at user turns. The agent reply is a deterministic
function of history and is never itself branched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

from flowctl.errors import BranchNotFound, ForkViolation

from .history import ExecutionHistory
from .types import (
    MAIN_BRANCH_ID,
    Branch,
    BranchId,
    ExecutionNode,
    ExecutionNodeId,
    generate_branch_id,
)

logger = logging.getLogger(__name__)

DEFAULT_FORK_LABEL = "Alternate Reply from Turn {turn_number}"


def _validate_anchor(history: ExecutionHistory, node_id: ExecutionNodeId) -> ExecutionNode:
    anchor = history.get(node_id)
    if not anchor.has_user_message:
        raise ForkViolation(node_id)
    return anchor


# =============================================================================
# Fork session (selection only)
# =============================================================================


@dataclass(frozen=True)
class ForkSession:
    """Presentation-side fork state: which node the user picked as anchor."""

    anchor_node_id: Optional[ExecutionNodeId] = None

    @property
    def has_anchor(self) -> bool:
        return self.anchor_node_id is not None

    def clear(self) -> "ForkSession":
        return replace(self, anchor_node_id=None)


def select_fork_anchor(
    session: ForkSession,
    history: ExecutionHistory,
    node_id: ExecutionNodeId,
) -> ForkSession:
    """Return a new session with ``node_id`` selected as fork anchor.

    No branch is created; submitting the alternate reply does that.

    Raises:
        NodeNotFound: If the node does not exist.
        ForkViolation: If the node carries no user message.
    """
    _validate_anchor(history, node_id)
    return replace(session, anchor_node_id=node_id)


# =============================================================================
# Branch manager
# =============================================================================


class BranchManager:
    """Owns the branch set and each branch's current leaf for one run."""

    def __init__(self, history: ExecutionHistory):
        self._history = history
        self._branches: Dict[BranchId, Branch] = {}
        self._leaves: Dict[BranchId, ExecutionNodeId] = {}

    def create_root(self, root_node: ExecutionNode, label: str = "main") -> Branch:
        """Register the root branch whose first node is ``root_node``."""
        branch = Branch(branch_id=root_node.branch_id or MAIN_BRANCH_ID, label=label)
        self._branches[branch.branch_id] = branch
        self._leaves[branch.branch_id] = root_node.node_id
        return branch

    def fork(self, anchor_node_id: ExecutionNodeId, label: Optional[str] = None) -> Branch:
        """Create a branch diverging after ``anchor_node_id``.

        No node is copied or mutated. The new branch's leaf is the anchor, so the
        first turn submitted on it receives parentNodeId = anchor.

        Raises:
            NodeNotFound: If the anchor does not exist.
            ForkViolation: If the anchor carries no user message.
        """
        anchor = _validate_anchor(self._history, anchor_node_id)
        branch_id = generate_branch_id()
        while branch_id in self._branches:
            branch_id = generate_branch_id()

        branch = Branch(
            branch_id=branch_id,
            parent_branch_id=anchor.branch_id,
            fork_from_node_id=anchor.node_id,
            label=label or DEFAULT_FORK_LABEL.format(turn_number=anchor.turn_number),
        )
        self._branches[branch_id] = branch
        self._leaves[branch_id] = anchor.node_id
        logger.info(
            "Forked branch %s from node %s (branch %s, turn %d)",
            branch_id,
            anchor.node_id,
            anchor.branch_id,
            anchor.turn_number,
        )
        return branch

    def get(self, branch_id: BranchId) -> Branch:
        try:
            return self._branches[branch_id]
        except KeyError:
            raise BranchNotFound(
                f"Branch '{branch_id}' not found", details={"branch_id": branch_id}
            )

    def leaf(self, branch_id: BranchId) -> ExecutionNodeId:
        self.get(branch_id)
        return self._leaves[branch_id]

    def advance(self, branch_id: BranchId, node: ExecutionNode) -> None:
        """Move the branch leaf to a newly committed node."""
        if node.branch_id != branch_id:
            raise ValueError(f"Node '{node.node_id}' belongs to branch '{node.branch_id}'")
        self.get(branch_id)
        self._leaves[branch_id] = node.node_id

    def branches(self) -> List[Branch]:
        return list(self._branches.values())

    def as_mapping(self) -> Dict[BranchId, Branch]:
        return dict(self._branches)

    def __contains__(self, branch_id: object) -> bool:
        return branch_id in self._branches

    def __len__(self) -> int:
        return len(self._branches)
