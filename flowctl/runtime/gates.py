"""
gates.py - Gate evaluation.

Pure functions of (FlowModel, RuntimeState). Gates are re-evaluated from
scratch every turn; the result is order-independent and side-effect free.
"""

from __future__ import annotations

import logging
from typing import AbstractSet, FrozenSet, Optional

from flowctl.spec.types import FlowModel, GoalKind, SatisfactionRule

from .state import RuntimeState

logger = logging.getLogger(__name__)


def rule_satisfied(
    rule: SatisfactionRule,
    facts: AbstractSet[str],
    states: AbstractSet[str],
) -> bool:
    """Evaluate one satisfaction rule.

    All present groups must pass; a rule with no groups is vacuously true.
    """
    if rule.metrics_all is not None and not rule.metrics_all <= facts:
        return False
    if rule.metrics_any is not None and rule.metrics_any.isdisjoint(facts):
        return False
    if rule.states_all is not None and not rule.states_all <= states:
        return False
    return True


def satisfied(gate: str, state: RuntimeState, flow: FlowModel) -> bool:
    """Is ``gate`` satisfied by the facts/states in ``state``?

    Raises:
        KeyError: If the gate is not defined by the flow.
    """
    return rule_satisfied(flow.gate_definitions[gate], state.facts, state.states)


def evaluate_gates(flow: FlowModel, state: RuntimeState) -> FrozenSet[str]:
    """All gates currently satisfied, unioned with those satisfied earlier."""
    current = {
        name
        for name, rule in flow.gate_definitions.items()
        if rule_satisfied(rule, state.facts, state.states)
    }
    logger.debug("Gates satisfied this evaluation: %s", sorted(current))
    return frozenset(current | state.gates_satisfied)


def goal_satisfied(
    flow: FlowModel,
    state: RuntimeState,
    gates: Optional[AbstractSet[str]] = None,
) -> bool:
    """Is the flow's primary goal met?"""
    goal = flow.primary_goal
    if goal.kind is GoalKind.GATE:
        gates = state.gates_satisfied if gates is None else gates
        return goal.gate in gates
    return goal.state in state.states
