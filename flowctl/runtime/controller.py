"""
controller.py - One-turn orchestration.

The Controller is a deterministic function of (FlowModel, RuntimeState, user
message). It never mutates the state it is given: every turn works on a deep
copy and returns the next state together with the immutable ExecutionNode, so
the caller can commit both atomically or drop them.

Turn algorithm:
    0. Ingest: credit the user message to the node whose prompt it answers.
    1. Recompute satisfied gates (never un-satisfied).
    2. Primary goal met -> COMPLETE (or post-goal cleanup when configured).
    3. Eligible set empty -> DEADLOCK.
    4. Select node and resolve mode, passing over SKIP candidates.
    5. Stagnation guard may escalate to BROADEN/HANDOFF.
    6. Apply effects for the mode.
    7. Recompute gates and compute the readiness delta.
    8. Build the ExecutionNode.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Protocol, Tuple

from flowctl.config.runtime_config import (
    ControllerSettings,
    PostGoalPolicy,
    get_controller_settings,
)
from flowctl.spec.types import FlowModel, Importance, NodeDef

from .decision import Decision, select
from .eligibility import eligible_nodes, explain_ineligibility
from .fact_extraction import (
    ExtractionRequest,
    ExtractionResult,
    FactExtractor,
    NullFactExtractor,
    apply_aliases,
)
from .gates import evaluate_gates, goal_satisfied
from .stagnation import StagnationGuard
from .state import RuntimeState, TurnRecord
from .types import (
    PROMPTING_MODES,
    BranchId,
    ControllerPhase,
    ExecutionNode,
    ExecutionNodeId,
    Mode,
    TurnStatus,
    generate_node_id,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Response composition
# =============================================================================


class ResponseComposer(Protocol):
    def compose(
        self,
        node: Optional[NodeDef],
        mode: Optional[Mode],
        status: TurnStatus,
        prompt_variant: int,
    ) -> str:
        ...


class DirectiveComposer:
    """Compose a deterministic directive for the external language model.

    Example: "[RETRY] contact-1: Capture contact"
    """

    def compose(
        self,
        node: Optional[NodeDef],
        mode: Optional[Mode],
        status: TurnStatus,
        prompt_variant: int,
    ) -> str:
        if node is None or mode is None:
            return f"[{status.value}]"
        summary = node.title or node.purpose or node.type or node.id
        text = f"[{mode.value}] {node.id}: {summary}"
        if prompt_variant:
            text += f" (variant {prompt_variant})"
        return text


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class ReadinessDelta:
    """Facts newly known and gates newly satisfied by a turn."""

    added: Tuple[str, ...] = ()
    unlocked: Tuple[str, ...] = ()

    def merge(self, other: "ReadinessDelta") -> "ReadinessDelta":
        return ReadinessDelta(
            added=tuple(sorted(set(self.added) | set(other.added))),
            unlocked=tuple(sorted(set(self.unlocked) | set(other.unlocked))),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"added": list(self.added), "unlocked": list(self.unlocked)}


@dataclass
class TurnResult:
    """Everything one turn produced. Nothing is committed yet."""

    status: TurnStatus
    phase: ControllerPhase
    node: ExecutionNode
    state: RuntimeState
    readiness_delta: ReadinessDelta
    decision: Optional[Decision] = None
    skipped_node_ids: List[str] = field(default_factory=list)


# =============================================================================
# Controller
# =============================================================================


class Controller:
    """Selects the next conversational step for one flow.

    Args:
        flow: Compiled flow, shared read-only.
        extractor: Fact extractor; defaults to NullFactExtractor.
        composer: Agent message composer; defaults to DirectiveComposer.
        settings: Resolved settings; defaults to get_controller_settings().
    """

    def __init__(
        self,
        flow: FlowModel,
        extractor: Optional[FactExtractor] = None,
        composer: Optional[ResponseComposer] = None,
        settings: Optional[ControllerSettings] = None,
    ):
        self._flow = flow
        self._extractor = extractor or NullFactExtractor()
        self._composer = composer or DirectiveComposer()
        self._settings = settings or get_controller_settings()
        self._guard = StagnationGuard(self._settings.stagnation_threshold)

    @property
    def flow(self) -> FlowModel:
        return self._flow

    @property
    def settings(self) -> ControllerSettings:
        return self._settings

    def initial_state(self, initial_facts: Optional[Iterable[str]] = None) -> RuntimeState:
        """Fresh lineage state seeded with aliased initial facts."""
        state = RuntimeState()
        state.add_facts(apply_aliases(self._flow, initial_facts or ()))
        state.satisfy_gates(evaluate_gates(self._flow, state))
        return state

    def run_turn(
        self,
        state: RuntimeState,
        *,
        parent_node_id: Optional[ExecutionNodeId],
        branch_id: BranchId,
        turn_number: int,
        user_message: Optional[str],
        asserted_facts: Optional[Iterable[str]] = None,
    ) -> TurnResult:
        """Run one turn against a copy of ``state``.

        Args:
            state: Lineage state after the parent node. Not mutated.
            parent_node_id: Node the new turn hangs off.
            branch_id: Branch the turn is committed on.
            turn_number: Position of the new node within its branch.
            user_message: What the user said this turn.
            asserted_facts: Raw facts the caller asserts for this turn.

        Returns:
            TurnResult carrying the new node and the next state.
        """
        work = state.copy()
        facts_before = frozenset(state.facts)
        gates_before = frozenset(state.gates_satisfied)
        asserted = frozenset(asserted_facts or ())

        # 0. Ingest the reply to the previous prompt
        awaiting = work.awaiting_reply_node
        if user_message is not None and awaiting in self._flow.nodes:
            self._credit(work, self._flow.node(awaiting), user_message, asserted, executed=False)

        # 1. Gates
        work.satisfy_gates(evaluate_gates(self._flow, work))

        # 2. Goal
        post_goal = False
        if goal_satisfied(self._flow, work):
            if (
                self._settings.post_goal_policy is PostGoalPolicy.STOP
                or work.post_goal_turns >= self._settings.post_goal_max_turns
            ):
                return self._finish(
                    work, TurnStatus.COMPLETE, "primary goal satisfied",
                    facts_before, gates_before, parent_node_id, branch_id,
                    turn_number, user_message,
                )
            post_goal = True

        # 3. Eligibility
        candidates = eligible_nodes(self._flow, work)
        if logger.isEnabledFor(logging.DEBUG):
            for node in self._flow.iter_nodes():
                reason = explain_ineligibility(node, work)
                if reason:
                    logger.debug("Node %s ineligible: %s", node.id, reason)

        if post_goal:
            candidates = [n for n in candidates if n.importance is Importance.HIGH]
            if not candidates:
                return self._finish(
                    work, TurnStatus.COMPLETE,
                    "primary goal satisfied, no high-importance cleanup left",
                    facts_before, gates_before, parent_node_id, branch_id,
                    turn_number, user_message,
                )
        elif not work.has_executed_any() and self._flow.entry_node_ids:
            entry = set(self._flow.entry_node_ids)
            candidates = [n for n in candidates if n.id in entry]

        if not candidates:
            logger.warning(
                "Deadlock on branch %s at turn %d: no eligible node, goal unmet",
                branch_id,
                turn_number,
            )
            return self._finish(
                work, TurnStatus.DEADLOCK, "no eligible node and primary goal unmet",
                facts_before, gates_before, parent_node_id, branch_id,
                turn_number, user_message,
            )

        # 4. Select
        decision, skipped = select(self._flow, work, candidates)
        if decision is None:
            logger.warning(
                "Deadlock on branch %s at turn %d: every eligible node skipped (%s)",
                branch_id,
                turn_number,
                ", ".join(skipped),
            )
            return self._finish(
                work, TurnStatus.DEADLOCK, "every eligible node resolved to SKIP",
                facts_before, gates_before, parent_node_id, branch_id,
                turn_number, user_message, skipped=skipped,
            )

        node = decision.node
        mode = decision.mode
        reasoning = f"{node.id}: {decision.reason}"
        if skipped:
            reasoning += f"; skipped {', '.join(skipped)}"

        # 5. Stagnation
        signal = self._guard.record(work, node.id, mode)
        if signal.is_stagnant:
            reasoning += (
                f"; stagnation after {signal.streak} turns, "
                f"{mode.value} escalated to {signal.escalate_to.value}"
            )
            mode = signal.escalate_to

        # 6. Effects
        self._apply_effects(work, node, mode, decision, user_message, asserted)
        if post_goal:
            work.post_goal_turns += 1

        status = TurnStatus.HANDOFF if mode is Mode.HANDOFF else TurnStatus.OK
        return self._finish(
            work, status, reasoning, facts_before, gates_before, parent_node_id,
            branch_id, turn_number, user_message,
            node=node, mode=mode, decision=decision, skipped=skipped,
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _apply_effects(
        self,
        work: RuntimeState,
        node: NodeDef,
        mode: Mode,
        decision: Decision,
        user_message: Optional[str],
        asserted: FrozenSet[str],
    ) -> None:
        if mode is Mode.EXECUTE:
            work.record_attempt(node.id)
            work.record_execution(node.id)
            self._credit(work, node, user_message, asserted, executed=True)
        elif mode is Mode.RETRY:
            work.record_attempt(node.id)
            work.eligible_again_at[node.id] = work.turn + node.retry_policy.cooldown_turns + 1
            if decision.clarifying:
                work.clarified_nodes.add(node.id)
        elif mode is Mode.BROADEN:
            work.record_attempt(node.id)

        work.awaiting_reply_node = node.id if mode in PROMPTING_MODES else None
        work.satisfy_gates(evaluate_gates(self._flow, work))

    def _credit(
        self,
        work: RuntimeState,
        node: NodeDef,
        user_message: Optional[str],
        asserted: FrozenSet[str],
        executed: bool,
    ) -> None:
        """Merge what a message yields for one node into the working state."""
        if user_message is not None:
            result = self._extractor.extract(ExtractionRequest.for_node(node, user_message))
        else:
            result = ExtractionResult()

        canonical = apply_aliases(self._flow, set(result.facts) | asserted)
        accepted = canonical & node.produced_canonical
        dropped = canonical - accepted
        if dropped:
            logger.debug("Dropping facts %s not produced by node %s", sorted(dropped), node.id)
        work.add_facts(accepted)

        states = set(result.states & node.satisfies_states)
        if node.satisfies_states:
            if node.produced_canonical:
                if node.produced_canonical <= work.facts:
                    states |= node.satisfies_states
            elif executed:
                states |= node.satisfies_states
        work.add_states(states)

    def _finish(
        self,
        work: RuntimeState,
        status: TurnStatus,
        reasoning: str,
        facts_before: FrozenSet[str],
        gates_before: FrozenSet[str],
        parent_node_id: Optional[ExecutionNodeId],
        branch_id: BranchId,
        turn_number: int,
        user_message: Optional[str],
        node: Optional[NodeDef] = None,
        mode: Optional[Mode] = None,
        decision: Optional[Decision] = None,
        skipped: Optional[List[str]] = None,
    ) -> TurnResult:
        skipped = list(skipped or ())
        if node is None:
            self._guard.break_streak(work)
        delta = ReadinessDelta(
            added=tuple(sorted(work.facts - facts_before)),
            unlocked=tuple(sorted(work.gates_satisfied - gates_before)),
        )
        variant = decision.prompt_variant if decision else 0
        exec_node = ExecutionNode(
            node_id=generate_node_id(),
            parent_node_id=parent_node_id,
            branch_id=branch_id,
            turn_number=turn_number,
            user_message=user_message,
            agent_message=self._composer.compose(node, mode, status, variant),
            known_facts_before=facts_before,
            known_facts_after=frozenset(work.facts),
            decision=mode,
            status=status,
            selected_node_id=node.id if node else None,
            skipped_node_ids=tuple(skipped),
            reasoning=reasoning,
            facts_added=delta.added,
            gates_unlocked=delta.unlocked,
            prompt_variant=variant,
        )

        work.turn += 1
        work.append_turn(
            TurnRecord(
                turn=work.turn,
                selected_node_id=exec_node.selected_node_id,
                mode=mode,
                status=status,
                facts_added=delta.added,
                gates_unlocked=delta.unlocked,
                execution_node_id=exec_node.node_id,
            )
        )

        if status is TurnStatus.COMPLETE:
            phase = ControllerPhase.COMPLETE
        elif status is TurnStatus.DEADLOCK:
            phase = ControllerPhase.DEADLOCK
        else:
            phase = ControllerPhase.ADVANCING

        return TurnResult(
            status=status,
            phase=phase,
            node=exec_node,
            state=work,
            readiness_delta=delta,
            decision=decision,
            skipped_node_ids=skipped,
        )
