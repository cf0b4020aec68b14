"""
decision.py - Decision selector and mode resolution.

Candidates are ordered by importance (HIGH first), then by fewest attempts,
then by definition order. The head of the order is offered first; candidates
whose mode resolves to SKIP are passed over for this turn only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AbstractSet, List, Optional, Sequence, Tuple

from flowctl.spec.types import (
    FlowModel,
    NodeDef,
    OnExhaust,
    PromptVariantStrategy,
)

from .state import RuntimeState
from .types import Mode

logger = logging.getLogger(__name__)

PROMPT_VARIANT_COUNT = 3

_EXHAUST_MODES = {
    OnExhaust.BROADEN: Mode.BROADEN,
    OnExhaust.HANDOFF: Mode.HANDOFF,
    OnExhaust.SKIP: Mode.SKIP,
}


@dataclass(frozen=True)
class Decision:
    """Selected node and the mode it is delivered in.

    clarifying is True when the RETRY comes from an exhausted CLARIFY policy;
    the controller records it so the extra attempt is granted only once.
    """

    node: NodeDef
    mode: Mode
    reason: str
    prompt_variant: int = 0
    clarifying: bool = False


def order_candidates(
    flow: FlowModel, state: RuntimeState, candidates: Sequence[NodeDef]
) -> List[NodeDef]:
    """Deterministic selection order."""
    return sorted(
        candidates,
        key=lambda n: (-n.importance.rank, state.attempts(n.id), flow.order_index(n.id)),
    )


def objective_met(
    node: NodeDef,
    state: RuntimeState,
    gates: Optional[AbstractSet[str]] = None,
) -> bool:
    """Has the node's own objective already been achieved?

    Declared satisfiesGates/satisfiesStates take precedence; otherwise a node is
    done when every fact it produces is known. A node with neither has no
    observable objective.
    """
    gates = state.gates_satisfied if gates is None else gates
    if node.has_declared_objective:
        return node.satisfies_gates <= gates and node.satisfies_states <= state.states
    if node.produced_canonical:
        return node.produced_canonical <= state.facts
    return False


def prompt_variant(node: NodeDef, attempts: int) -> int:
    if node.retry_policy.prompt_variant_strategy is PromptVariantStrategy.FIXED:
        return 0
    return attempts % PROMPT_VARIANT_COUNT


def resolve_mode(
    node: NodeDef,
    state: RuntimeState,
    gates: Optional[AbstractSet[str]] = None,
) -> Decision:
    """Resolve the delivery mode for a selected node."""
    attempts = state.attempts(node.id)
    variant = prompt_variant(node, attempts)

    if attempts == 0:
        return Decision(node, Mode.EXECUTE, "first attempt", variant)

    if objective_met(node, state, gates):
        return Decision(node, Mode.EXECUTE, "objective already satisfied", variant)

    policy = node.retry_policy
    if attempts < policy.max_attempts:
        return Decision(
            node, Mode.RETRY, f"attempt {attempts + 1} of {policy.max_attempts}", variant
        )

    exhausted = f"attempts exhausted ({attempts}/{policy.max_attempts})"
    if policy.on_exhaust is OnExhaust.CLARIFY:
        if node.id in state.clarified_nodes:
            return Decision(node, Mode.SKIP, f"{exhausted}, clarification already used", variant)
        return Decision(
            node, Mode.RETRY, f"{exhausted}, clarifying", variant, clarifying=True
        )

    mode = _EXHAUST_MODES[policy.on_exhaust]
    return Decision(node, mode, f"{exhausted}, on_exhaust={policy.on_exhaust.value}", variant)


def select(
    flow: FlowModel,
    state: RuntimeState,
    candidates: Sequence[NodeDef],
    gates: Optional[AbstractSet[str]] = None,
) -> Tuple[Optional[Decision], List[str]]:
    """Pick the first candidate that does not resolve to SKIP.

    Returns:
        (decision or None when every candidate skipped, skipped node ids)
    """
    skipped: List[str] = []
    for node in order_candidates(flow, state, candidates):
        decision = resolve_mode(node, state, gates)
        if decision.mode is Mode.SKIP:
            logger.debug("Skipping node %s: %s", node.id, decision.reason)
            skipped.append(node.id)
            continue
        return decision, skipped
    return None, skipped
