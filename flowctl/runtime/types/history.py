"""History record types: execution nodes and branches.

Both are frozen: once created by the controller/branch manager they are never
mutated. Serialization uses the camelCase names used by the HTTP API and run exports.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Optional, Tuple

from ._ids import BranchId, ExecutionNodeId
from ._time import _datetime_to_iso, _iso_to_datetime, utcnow
from .modes import Mode, TurnStatus


@dataclass(frozen=True)
class ExecutionNode:
    """One committed turn in the execution history.

    Attributes:
        node_id: Globally unique id.
        parent_node_id: Parent turn; None only for a branch root.
        branch_id: Branch the turn was committed on.
        turn_number: Position within the branch, assigned monotonically.
        user_message: What the user said this turn (None for agent-only turns).
        agent_message: What the agent said this turn.
        known_facts_before: Canonical facts before the turn.
        known_facts_after: Canonical facts after the turn.
        decision: Mode of the selected node (None when nothing was selected).
        status: Turn outcome code.
        selected_node_id: Flow node the controller selected.
        skipped_node_ids: Flow nodes passed over with SKIP this turn.
        reasoning: Why the controller decided what it did.
        facts_added: Canonical facts newly known after this turn.
        gates_unlocked: Gates newly satisfied after this turn.
        prompt_variant: Phrasing variant index for the language model.
        timestamp: Wall-clock commit time (record-only).
    """

    node_id: ExecutionNodeId
    parent_node_id: Optional[ExecutionNodeId]
    branch_id: BranchId
    turn_number: int
    user_message: Optional[str] = None
    agent_message: Optional[str] = None
    known_facts_before: FrozenSet[str] = frozenset()
    known_facts_after: FrozenSet[str] = frozenset()
    decision: Optional[Mode] = None
    status: TurnStatus = TurnStatus.OK
    selected_node_id: Optional[str] = None
    skipped_node_ids: Tuple[str, ...] = ()
    reasoning: str = ""
    facts_added: Tuple[str, ...] = ()
    gates_unlocked: Tuple[str, ...] = ()
    prompt_variant: int = 0
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def has_user_message(self) -> bool:
        return self.user_message is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "nodeId": self.node_id,
            "parentNodeId": self.parent_node_id,
            "branchId": self.branch_id,
            "turnNumber": self.turn_number,
            "userMessage": self.user_message,
            "agentMessage": self.agent_message,
            "knownFactsBefore": sorted(self.known_facts_before),
            "knownFactsAfter": sorted(self.known_facts_after),
            "decision": self.decision.value if self.decision else None,
            "status": self.status.value,
            "selectedNodeId": self.selected_node_id,
            "skippedNodeIds": list(self.skipped_node_ids),
            "reasoning": self.reasoning,
            "factsAdded": list(self.facts_added),
            "gatesUnlocked": list(self.gates_unlocked),
            "promptVariant": self.prompt_variant,
            "timestamp": _datetime_to_iso(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionNode":
        """Create ExecutionNode from dictionary."""
        decision = data.get("decision")
        return cls(
            node_id=data["nodeId"],
            parent_node_id=data.get("parentNodeId"),
            branch_id=data["branchId"],
            turn_number=int(data.get("turnNumber", 0)),
            user_message=data.get("userMessage"),
            agent_message=data.get("agentMessage"),
            known_facts_before=frozenset(data.get("knownFactsBefore") or ()),
            known_facts_after=frozenset(data.get("knownFactsAfter") or ()),
            decision=Mode(decision) if decision else None,
            status=TurnStatus(data.get("status", TurnStatus.OK.value)),
            selected_node_id=data.get("selectedNodeId"),
            skipped_node_ids=tuple(data.get("skippedNodeIds") or ()),
            reasoning=data.get("reasoning", ""),
            facts_added=tuple(data.get("factsAdded") or ()),
            gates_unlocked=tuple(data.get("gatesUnlocked") or ()),
            prompt_variant=int(data.get("promptVariant", 0)),
            timestamp=_iso_to_datetime(data.get("timestamp")) or utcnow(),
        )


@dataclass(frozen=True)
class Branch:
    """An independent line of turns sharing history up to its fork point."""

    branch_id: BranchId
    parent_branch_id: Optional[BranchId] = None
    fork_from_node_id: Optional[ExecutionNodeId] = None
    label: str = "main"
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_root(self) -> bool:
        return self.parent_branch_id is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "branchId": self.branch_id,
            "parentBranchId": self.parent_branch_id,
            "forkFromNodeId": self.fork_from_node_id,
            "label": self.label,
            "createdAt": _datetime_to_iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Branch":
        return cls(
            branch_id=data["branchId"],
            parent_branch_id=data.get("parentBranchId"),
            fork_from_node_id=data.get("forkFromNodeId"),
            label=data.get("label", ""),
            created_at=_iso_to_datetime(data.get("createdAt")) or utcnow(),
        )
