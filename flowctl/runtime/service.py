"""
service.py - In-memory run service implementing the Turn API.

RunService owns a registry of compiled flows and a registry of runs. Each run
holds its execution history, branch set and one RuntimeState snapshot per
committed node, so a turn on any branch starts from the state at its own
parent and branches never cross-contaminate. Snapshots carry no turn log;
each node's log entry is stored once and the log is rebuilt along the
ancestry chain when a state is read.

Turns and forks on the same run are serialized by a per-run asyncio.Lock;
different runs proceed independently. Every precondition is checked before
anything is committed, so a failing step or fork leaves the run unchanged.

Usage:
    service = RunService()
    service.register_flow(definition)
    run = service.start_run("onboarding")
    result = asyncio.run(
        service.step(run.run_id, "main", run.root_node_id, "hello")
    )
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from flowctl.config.runtime_config import ControllerSettings, get_controller_settings
from flowctl.errors import (
    BranchTerminated,
    FlowNotFound,
    RunNotFound,
    StaleCursor,
)
from flowctl.spec.compiler import FlowCompiler
from flowctl.spec.types import FlowModel
from flowctl.validator.errors import ValidationResult

from .branches import BranchManager, ForkSession, select_fork_anchor
from .controller import Controller, ReadinessDelta, ResponseComposer
from .fact_extraction import FactExtractor
from .history import ExecutionHistory, HistoryTree, build_tree
from .state import RuntimeState, TurnRecord
from .types import (
    MAIN_BRANCH_ID,
    Branch,
    BranchId,
    ExecutionNode,
    ExecutionNodeId,
    RunId,
    TurnStatus,
    _datetime_to_iso,
    generate_node_id,
    generate_run_id,
    utcnow,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class StepResult:
    """Outcome of one committed turn."""

    status: TurnStatus
    branch_id: BranchId
    new_nodes: Tuple[ExecutionNode, ...]
    readiness_delta: ReadinessDelta

    @property
    def leaf_node_id(self) -> ExecutionNodeId:
        return self.new_nodes[-1].node_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "branchId": self.branch_id,
            "leafNodeId": self.leaf_node_id,
            "newNodes": [n.to_dict() for n in self.new_nodes],
            "readinessDelta": self.readiness_delta.to_dict(),
        }


@dataclass(frozen=True)
class ForkResult:
    branch: Branch
    leaf_node_id: ExecutionNodeId

    @property
    def branch_id(self) -> BranchId:
        return self.branch.branch_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "branchId": self.branch.branch_id,
            "leafNodeId": self.leaf_node_id,
            "label": self.branch.label,
        }


# =============================================================================
# Run
# =============================================================================


@dataclass
class Run:
    """Everything owned by one conversation run."""

    run_id: RunId
    flow: FlowModel
    controller: Controller
    root_node_id: ExecutionNodeId
    history: ExecutionHistory
    branches: BranchManager
    snapshots: Dict[ExecutionNodeId, RuntimeState] = field(default_factory=dict)
    turn_records: Dict[ExecutionNodeId, TurnRecord] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    def commit(self, node: ExecutionNode, state: RuntimeState) -> None:
        """Store the state after a committed node.

        The snapshot keeps no turn log; the node's own log entry is stored once
        and the log is reassembled from the ancestry chain on read.
        """
        if state.turn_log:
            self.turn_records[node.node_id] = state.turn_log[-1]
        state.turn_log = []
        self.snapshots[node.node_id] = state

    def state_at(self, node_id: ExecutionNodeId) -> RuntimeState:
        """Copy of the lineage state right after ``node_id`` committed."""
        chain = self.history.ancestry_chain(node_id)
        state = self.snapshots[node_id].copy()
        state.turn_log = [
            self.turn_records[n.node_id] for n in chain if n.node_id in self.turn_records
        ]
        return state

    def to_dict(self) -> Dict[str, Any]:
        leaves = {b.branch_id: self.branches.leaf(b.branch_id) for b in self.branches.branches()}
        return {
            "runId": self.run_id,
            "flowId": self.flow.flow_id,
            "flowVersion": self.flow.version,
            "createdAt": _datetime_to_iso(self.created_at),
            "rootNodeId": self.root_node_id,
            "branches": [b.to_dict() for b in self.branches.branches()],
            "leaves": leaves,
            "nodes": [n.to_dict() for n in self.history],
            "states": {
                branch_id: self.state_at(leaf_id).to_dict()
                for branch_id, leaf_id in leaves.items()
            },
        }


# =============================================================================
# Service
# =============================================================================


class RunService:
    """Flow registry, run registry and the Turn API.

    Args:
        extractor: Fact extractor shared by every run's controller.
        composer: Agent message composer shared by every run's controller.
        settings: Controller settings; resolved from config when omitted.
    """

    def __init__(
        self,
        extractor: Optional[FactExtractor] = None,
        composer: Optional[ResponseComposer] = None,
        settings: Optional[ControllerSettings] = None,
    ):
        self._extractor = extractor
        self._composer = composer
        self._settings = settings
        self._compiler = FlowCompiler()
        self._flows: Dict[str, FlowModel] = {}
        self._runs: Dict[RunId, Run] = {}
        self._locks: Dict[RunId, asyncio.Lock] = {}

    # -------------------------------------------------------------------------
    # Flows
    # -------------------------------------------------------------------------

    def register_flow(
        self,
        definition: Mapping[str, Any],
        flow_id: Optional[str] = None,
        node_patches: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ) -> Tuple[FlowModel, ValidationResult]:
        """Compile and register a flow, replacing any flow with the same id.

        Raises:
            CompileError: If the definition does not compile.
        """
        flow, result = self._compiler.compile(definition, flow_id=flow_id, node_patches=node_patches)
        for warning in result.sorted_warnings():
            logger.warning("Flow %s: %s", flow.flow_id, warning.format())
        self._flows[flow.flow_id] = flow
        return flow, result

    def add_flow(self, flow: FlowModel) -> None:
        self._flows[flow.flow_id] = flow

    def get_flow(self, flow_id: str) -> FlowModel:
        try:
            return self._flows[flow_id]
        except KeyError:
            raise FlowNotFound(f"Flow '{flow_id}' not found", details={"flow_id": flow_id})

    def list_flows(self) -> List[str]:
        return sorted(self._flows)

    # -------------------------------------------------------------------------
    # Runs
    # -------------------------------------------------------------------------

    def _get_lock(self, run_id: RunId) -> asyncio.Lock:
        """Get or create a lock for a run."""
        if run_id not in self._locks:
            self._locks[run_id] = asyncio.Lock()
        return self._locks[run_id]

    def start_run(
        self,
        flow_id: str,
        initial_facts: Optional[Iterable[str]] = None,
        run_id: Optional[RunId] = None,
    ) -> Run:
        """Create a run with its main branch and agent-only root node.

        Raises:
            FlowNotFound: If the flow is not registered.
            ValueError: If run_id is already in use.
        """
        flow = self.get_flow(flow_id)
        if run_id is None:
            run_id = generate_run_id()
            while run_id in self._runs:
                run_id = generate_run_id()
        elif run_id in self._runs:
            raise ValueError(f"Run '{run_id}' already exists")

        controller = Controller(
            flow,
            extractor=self._extractor,
            composer=self._composer,
            settings=self._settings or get_controller_settings(),
        )
        state = controller.initial_state(initial_facts)
        root = ExecutionNode(
            node_id=generate_node_id(),
            parent_node_id=None,
            branch_id=MAIN_BRANCH_ID,
            turn_number=0,
            user_message=None,
            agent_message=flow.primary_goal.description or None,
            known_facts_before=frozenset(state.facts),
            known_facts_after=frozenset(state.facts),
            status=TurnStatus.OK,
            reasoning="run started",
        )

        history = ExecutionHistory([root])
        branches = BranchManager(history)
        branches.create_root(root)
        run = Run(
            run_id=run_id,
            flow=flow,
            controller=controller,
            root_node_id=root.node_id,
            history=history,
            branches=branches,
            snapshots={root.node_id: state},
        )
        self._runs[run_id] = run
        logger.info("Started run %s on flow %s (%d initial facts)", run_id, flow.flow_id, len(state.facts))
        return run

    def get_run(self, run_id: RunId) -> Run:
        try:
            return self._runs[run_id]
        except KeyError:
            raise RunNotFound(f"Run '{run_id}' not found", details={"run_id": run_id})

    def list_runs(self) -> List[RunId]:
        return sorted(self._runs)

    def discard_run(self, run_id: RunId) -> None:
        """Abandon a run; its whole history goes with it."""
        self.get_run(run_id)
        del self._runs[run_id]
        self._locks.pop(run_id, None)
        logger.info("Discarded run %s", run_id)

    # -------------------------------------------------------------------------
    # Turn API
    # -------------------------------------------------------------------------

    async def step(
        self,
        run_id: RunId,
        branch_id: BranchId,
        cursor_node_id: ExecutionNodeId,
        user_message: Optional[str],
        facts: Optional[Iterable[str]] = None,
    ) -> StepResult:
        """Run and commit one turn on a branch.

        Raises:
            RunNotFound, BranchNotFound: Unknown run or branch.
            StaleCursor: cursor_node_id is not the branch leaf.
            BranchTerminated: The branch leaf is a handoff turn, on any branch.
        """
        run = self.get_run(run_id)
        async with self._get_lock(run_id):
            return self._step_locked(run, branch_id, cursor_node_id, user_message, facts)

    def _step_locked(
        self,
        run: Run,
        branch_id: BranchId,
        cursor_node_id: ExecutionNodeId,
        user_message: Optional[str],
        facts: Optional[Iterable[str]],
    ) -> StepResult:
        leaf_id = run.branches.leaf(branch_id)
        if cursor_node_id != leaf_id:
            raise StaleCursor(
                f"Cursor '{cursor_node_id}' is not the leaf of branch '{branch_id}'",
                details={"branch_id": branch_id, "cursor_node_id": cursor_node_id, "leaf_node_id": leaf_id},
            )
        leaf = run.history.get(leaf_id)
        if leaf.status is TurnStatus.HANDOFF:
            raise BranchTerminated(
                f"Branch '{branch_id}' ends at a handoff turn",
                details={"branch_id": branch_id, "leaf_node_id": leaf_id},
            )

        result = run.controller.run_turn(
            run.snapshots[leaf_id],
            parent_node_id=leaf_id,
            branch_id=branch_id,
            turn_number=leaf.turn_number + 1,
            user_message=user_message,
            asserted_facts=facts,
        )

        run.history.add(result.node)
        run.commit(result.node, result.state)
        run.branches.advance(branch_id, result.node)

        logger.info(
            "Run %s branch %s turn %d: node=%s mode=%s status=%s",
            run.run_id,
            branch_id,
            result.node.turn_number,
            result.node.selected_node_id,
            result.node.decision.value if result.node.decision else None,
            result.status.value,
        )
        return StepResult(
            status=result.status,
            branch_id=branch_id,
            new_nodes=(result.node,),
            readiness_delta=result.readiness_delta,
        )

    async def fork(
        self,
        run_id: RunId,
        from_node_id: ExecutionNodeId,
        label: Optional[str] = None,
    ) -> ForkResult:
        """Create a branch anchored at a user-message node.

        Raises:
            RunNotFound, NodeNotFound: Unknown run or node.
            ForkViolation: The node carries no user message.
        """
        run = self.get_run(run_id)
        async with self._get_lock(run_id):
            branch = run.branches.fork(from_node_id, label)
            return ForkResult(branch=branch, leaf_node_id=run.branches.leaf(branch.branch_id))

    def select_fork_anchor(
        self, run_id: RunId, session: ForkSession, node_id: ExecutionNodeId
    ) -> ForkSession:
        return select_fork_anchor(session, self.get_run(run_id).history, node_id)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_tree(self, run_id: RunId, label_chars: Optional[int] = None) -> HistoryTree:
        run = self.get_run(run_id)
        if label_chars is None and self._settings is not None:
            label_chars = self._settings.alternate_label_chars
        return build_tree(run.history, run.branches.as_mapping(), label_chars)

    def get_ancestry(self, run_id: RunId, node_id: ExecutionNodeId) -> List[ExecutionNode]:
        return self.get_run(run_id).history.ancestry_chain(node_id)

    def get_state(self, run_id: RunId, node_id: ExecutionNodeId) -> RuntimeState:
        return self.get_run(run_id).state_at(node_id)

    def export_run(self, run_id: RunId) -> Dict[str, Any]:
        return self.get_run(run_id).to_dict()
