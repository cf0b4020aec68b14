"""
state.py - Per-conversation runtime state accumulator.

RuntimeState is owned by exactly one conversation lineage. Facts, states and
satisfied gates only ever grow: the class exposes add-only mutators and no
removal API. The turn log is append-only.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from .types import Mode, TurnStatus


@dataclass(frozen=True)
class TurnRecord:
    """Audit entry for one committed turn."""

    turn: int
    selected_node_id: Optional[str]
    mode: Optional[Mode]
    status: TurnStatus
    facts_added: Tuple[str, ...] = ()
    gates_unlocked: Tuple[str, ...] = ()
    execution_node_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "turn": self.turn,
            "selectedNodeId": self.selected_node_id,
            "mode": self.mode.value if self.mode else None,
            "status": self.status.value,
            "factsAdded": list(self.facts_added),
            "gatesUnlocked": list(self.gates_unlocked),
            "executionNodeId": self.execution_node_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TurnRecord":
        mode = data.get("mode")
        return cls(
            turn=int(data["turn"]),
            selected_node_id=data.get("selectedNodeId"),
            mode=Mode(mode) if mode else None,
            status=TurnStatus(data["status"]),
            facts_added=tuple(data.get("factsAdded") or ()),
            gates_unlocked=tuple(data.get("gatesUnlocked") or ()),
            execution_node_id=data.get("executionNodeId"),
        )


@dataclass
class RuntimeState:
    """Mutable accumulator for one conversation.

    Attributes:
        facts: Canonical facts known so far.
        states: Named states reached so far.
        gates_satisfied: Gates satisfied so far (never un-satisfied).
        attempts_by_node: Conversational attempts (EXECUTE, RETRY, BROADEN).
        executions_by_node: Actual executions (EXECUTE only).
        eligible_again_at: Turn at which a cooled-down node may be offered again.
        clarified_nodes: Nodes that already consumed their CLARIFY retry.
        awaiting_reply_node: Flow node whose prompt the next user message answers.
        turn: Number of turns committed on this lineage.
        post_goal_turns: Cleanup turns spent after the goal was met.
        last_selected: Node selected on the previous turn (stagnation guard).
        last_signature: Facts/states signature at that selection.
        streak: Consecutive selections of last_selected with that signature.
        turn_log: Append-only audit trail.
    """

    facts: Set[str] = field(default_factory=set)
    states: Set[str] = field(default_factory=set)
    gates_satisfied: Set[str] = field(default_factory=set)
    attempts_by_node: Dict[str, int] = field(default_factory=dict)
    executions_by_node: Dict[str, int] = field(default_factory=dict)
    eligible_again_at: Dict[str, int] = field(default_factory=dict)
    clarified_nodes: Set[str] = field(default_factory=set)
    awaiting_reply_node: Optional[str] = None
    turn: int = 0
    post_goal_turns: int = 0
    last_selected: Optional[str] = None
    last_signature: Optional[str] = None
    streak: int = 0
    turn_log: List[TurnRecord] = field(default_factory=list)

    # -------------------------------------------------------------------------
    # Counters
    # -------------------------------------------------------------------------

    def attempts(self, node_id: str) -> int:
        return self.attempts_by_node.get(node_id, 0)

    def executions(self, node_id: str) -> int:
        return self.executions_by_node.get(node_id, 0)

    def record_attempt(self, node_id: str) -> None:
        self.attempts_by_node[node_id] = self.attempts(node_id) + 1

    def record_execution(self, node_id: str) -> None:
        self.executions_by_node[node_id] = self.executions(node_id) + 1

    def has_executed_any(self) -> bool:
        return any(count > 0 for count in self.executions_by_node.values())

    # -------------------------------------------------------------------------
    # Monotonic growth
    # -------------------------------------------------------------------------

    def add_facts(self, facts: Iterable[str]) -> Set[str]:
        """Union facts in; returns the ones that were not known before."""
        new = set(facts) - self.facts
        self.facts |= new
        return new

    def add_states(self, states: Iterable[str]) -> Set[str]:
        new = set(states) - self.states
        self.states |= new
        return new

    def satisfy_gates(self, gates: Iterable[str]) -> Set[str]:
        new = set(gates) - self.gates_satisfied
        self.gates_satisfied |= new
        return new

    def append_turn(self, record: TurnRecord) -> None:
        self.turn_log.append(record)

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    def copy(self) -> "RuntimeState":
        """Deep copy; the copy shares nothing mutable with self."""
        return copy.deepcopy(self)

    def facts_snapshot(self) -> FrozenSet[str]:
        return frozenset(self.facts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "facts": sorted(self.facts),
            "states": sorted(self.states),
            "gatesSatisfied": sorted(self.gates_satisfied),
            "attemptsByNode": dict(sorted(self.attempts_by_node.items())),
            "executionsByNode": dict(sorted(self.executions_by_node.items())),
            "eligibleAgainAt": dict(sorted(self.eligible_again_at.items())),
            "clarifiedNodes": sorted(self.clarified_nodes),
            "awaitingReplyNode": self.awaiting_reply_node,
            "turn": self.turn,
            "postGoalTurns": self.post_goal_turns,
            "lastSelected": self.last_selected,
            "lastSignature": self.last_signature,
            "streak": self.streak,
            "turnLog": [r.to_dict() for r in self.turn_log],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuntimeState":
        return cls(
            facts=set(data.get("facts") or ()),
            states=set(data.get("states") or ()),
            gates_satisfied=set(data.get("gatesSatisfied") or ()),
            attempts_by_node=dict(data.get("attemptsByNode") or {}),
            executions_by_node=dict(data.get("executionsByNode") or {}),
            eligible_again_at=dict(data.get("eligibleAgainAt") or {}),
            clarified_nodes=set(data.get("clarifiedNodes") or ()),
            awaiting_reply_node=data.get("awaitingReplyNode"),
            turn=int(data.get("turn", 0)),
            post_goal_turns=int(data.get("postGoalTurns", 0)),
            last_selected=data.get("lastSelected"),
            last_signature=data.get("lastSignature"),
            streak=int(data.get("streak", 0)),
            turn_log=[TurnRecord.from_dict(r) for r in data.get("turnLog") or ()],
        )
