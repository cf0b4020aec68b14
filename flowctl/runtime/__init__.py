"""
Runtime: turn controller, execution history and the run service.

Usage:
    from flowctl.runtime import RunService

    service = RunService()
    service.register_flow(definition)
    run = service.start_run("onboarding")
"""

from .branches import BranchManager, ForkSession, select_fork_anchor
from .controller import (
    Controller,
    DirectiveComposer,
    ReadinessDelta,
    ResponseComposer,
    TurnResult,
)
from .decision import Decision, objective_met, order_candidates, resolve_mode, select
from .eligibility import eligible, eligible_nodes, explain_ineligibility
from .fact_extraction import (
    ExtractionRequest,
    ExtractionResult,
    FactExtractor,
    NullFactExtractor,
    PatternFactExtractor,
    apply_aliases,
    merge_facts,
)
from .gates import evaluate_gates, goal_satisfied, rule_satisfied, satisfied
from .history import (
    Divergence,
    ExecutionHistory,
    HistoryTree,
    TreeNode,
    ancestry_chain,
    build_tree,
    linear_run,
)
from .service import ForkResult, Run, RunService, StepResult
from .stagnation import StagnationGuard, StagnationSignal
from .state import RuntimeState, TurnRecord
from .types import Branch, ControllerPhase, ExecutionNode, Mode, TurnStatus

__all__ = [
    "BranchManager",
    "ForkSession",
    "select_fork_anchor",
    "Controller",
    "DirectiveComposer",
    "ReadinessDelta",
    "ResponseComposer",
    "TurnResult",
    "Decision",
    "objective_met",
    "order_candidates",
    "resolve_mode",
    "select",
    "eligible",
    "eligible_nodes",
    "explain_ineligibility",
    "ExtractionRequest",
    "ExtractionResult",
    "FactExtractor",
    "NullFactExtractor",
    "PatternFactExtractor",
    "apply_aliases",
    "merge_facts",
    "evaluate_gates",
    "goal_satisfied",
    "rule_satisfied",
    "satisfied",
    "Divergence",
    "ExecutionHistory",
    "HistoryTree",
    "TreeNode",
    "ancestry_chain",
    "build_tree",
    "linear_run",
    "ForkResult",
    "Run",
    "RunService",
    "StepResult",
    "StagnationGuard",
    "StagnationSignal",
    "RuntimeState",
    "TurnRecord",
    "Branch",
    "ControllerPhase",
    "ExecutionNode",
    "Mode",
    "TurnStatus",
]
