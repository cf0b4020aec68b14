"""
Flow model: types, loading and compilation.

Usage:
    from flowctl.spec import compile_flow, load_flow

    flow = load_flow("flows/onboarding.json")
"""

from .compiler import (
    FACT_NAME_PATTERN,
    FlowCompiler,
    apply_node_patches,
    compile_flow,
    compile_report,
)
from .loader import load_flow, load_flow_definition
from .types import (
    Edge,
    FlowModel,
    GoalKind,
    Importance,
    NodeDef,
    OnExhaust,
    PrimaryGoal,
    PromptVariantStrategy,
    RetryPolicy,
    RunPolicy,
    SatisfactionRule,
)

__all__ = [
    "FACT_NAME_PATTERN",
    "FlowCompiler",
    "apply_node_patches",
    "compile_flow",
    "compile_report",
    "load_flow",
    "load_flow_definition",
    "Edge",
    "FlowModel",
    "GoalKind",
    "Importance",
    "NodeDef",
    "OnExhaust",
    "PrimaryGoal",
    "PromptVariantStrategy",
    "RetryPolicy",
    "RunPolicy",
    "SatisfactionRule",
]
