"""
eligibility.py - Node eligibility filter.

A node is eligible iff all of:
1. run policy still allows another execution;
2. every required gate is satisfied;
3. every required state is reached;
4. it has not already accomplished its purpose (all satisfiesGates true and
   executed at least once);
5. any RETRY cooldown has elapsed;
6. every required canonical fact is known.

Both functions are pure; explain_ineligibility only exists so the controller can
log and report why a node was passed over.
"""

from __future__ import annotations

from typing import AbstractSet, List, Optional

from flowctl.spec.types import FlowModel, NodeDef

from .state import RuntimeState


def explain_ineligibility(
    node: NodeDef,
    state: RuntimeState,
    gates: Optional[AbstractSet[str]] = None,
) -> Optional[str]:
    """Return the first failing eligibility reason, or None if eligible.

    Args:
        node: Node to check.
        state: Runtime state of the lineage.
        gates: Gates to test against; defaults to state.gates_satisfied.
    """
    gates = state.gates_satisfied if gates is None else gates
    executions = state.executions(node.id)

    if not node.run_policy.allows(executions):
        return f"run policy exhausted ({executions}/{node.run_policy.max_executions})"

    missing_gates = node.requires_gates - gates
    if missing_gates:
        return f"requires gates {sorted(missing_gates)}"

    missing_states = node.requires_states - state.states
    if missing_states:
        return f"requires states {sorted(missing_states)}"

    if node.satisfies_gates and node.satisfies_gates <= gates and executions > 0:
        return "already accomplished"

    again_at = state.eligible_again_at.get(node.id, 0)
    if state.turn < again_at:
        return f"cooling down until turn {again_at}"

    missing_facts = node.requires_facts - state.facts
    if missing_facts:
        return f"requires facts {sorted(missing_facts)}"

    return None


def eligible(
    node: NodeDef,
    state: RuntimeState,
    gates: Optional[AbstractSet[str]] = None,
) -> bool:
    """Pure eligibility predicate."""
    return explain_ineligibility(node, state, gates) is None


def eligible_nodes(
    flow: FlowModel,
    state: RuntimeState,
    gates: Optional[AbstractSet[str]] = None,
) -> List[NodeDef]:
    """Eligible nodes in definition order."""
    return [node for node in flow.iter_nodes() if eligible(node, state, gates)]
