"""
history.py - Execution history store and tree materialization.

ExecutionHistory is an append-only store of ExecutionNodes linked by
parentNodeId. Nothing is copied when a branch forks: the new branch's first
turn simply points at the fork anchor, and the tree builder reconstructs shared
history from the parent links.

Presentation helpers:
    build_tree      single-pass forest build with divergence detection
    ancestry_chain  root-first path to a node ("the conversation so far")
    linear_run      straight-line segment until the next divergence or leaf
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from flowctl.config.runtime_config import get_alternate_label_chars
from flowctl.errors import NodeNotFound, OrphanedNodeError

from .types import Branch, BranchId, ExecutionNode, ExecutionNodeId

logger = logging.getLogger(__name__)

ALTERNATE_FALLBACK_LABEL = "Alternate path"


# =============================================================================
# Store
# =============================================================================


class ExecutionHistory:
    """Append-only node store for one run. No deletion API."""

    def __init__(self, nodes: Optional[Iterable[ExecutionNode]] = None):
        self._nodes: Dict[ExecutionNodeId, ExecutionNode] = {}
        for node in nodes or ():
            self.add(node)

    def add(self, node: ExecutionNode) -> None:
        if node.node_id in self._nodes:
            raise ValueError(f"Execution node '{node.node_id}' already recorded")
        self._nodes[node.node_id] = node

    def get(self, node_id: ExecutionNodeId) -> ExecutionNode:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise NodeNotFound(
                f"Execution node '{node_id}' not found", details={"node_id": node_id}
            )

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[ExecutionNode]:
        return iter(list(self._nodes.values()))

    def as_mapping(self) -> Mapping[ExecutionNodeId, ExecutionNode]:
        return dict(self._nodes)

    def ancestry_chain(self, node_id: ExecutionNodeId) -> List[ExecutionNode]:
        return ancestry_chain(self._nodes, node_id)


# =============================================================================
# Ancestry
# =============================================================================


def ancestry_chain(
    nodes: Mapping[ExecutionNodeId, ExecutionNode],
    node_id: ExecutionNodeId,
) -> List[ExecutionNode]:
    """Root-first chain of nodes ending at ``node_id``.

    Raises:
        NodeNotFound: If node_id is not in nodes.
        OrphanedNodeError: If a parent link does not resolve or loops.
    """
    if node_id not in nodes:
        raise NodeNotFound(f"Execution node '{node_id}' not found", details={"node_id": node_id})

    chain: List[ExecutionNode] = []
    seen = set()
    current: Optional[ExecutionNode] = nodes[node_id]
    while current is not None:
        if current.node_id in seen:
            raise OrphanedNodeError(
                current.node_id,
                current.parent_node_id,
                reason=f"Parent links of node '{node_id}' form a cycle",
            )
        seen.add(current.node_id)
        chain.append(current)
        parent_id = current.parent_node_id
        if parent_id is None:
            break
        if parent_id not in nodes:
            raise OrphanedNodeError(current.node_id, parent_id)
        current = nodes[parent_id]

    chain.reverse()
    return chain


# =============================================================================
# Tree
# =============================================================================


@dataclass
class TreeNode:
    """One execution node with its ordered children."""

    node: ExecutionNode
    depth: int = 0
    children: List["TreeNode"] = field(default_factory=list)

    @property
    def node_id(self) -> ExecutionNodeId:
        return self.node.node_id

    @property
    def is_divergence(self) -> bool:
        return self.node.has_user_message and len(self.children) > 1

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodeId": self.node.node_id,
            "branchId": self.node.branch_id,
            "turnNumber": self.node.turn_number,
            "depth": self.depth,
            "isDivergence": self.is_divergence,
            "children": [child.to_dict() for child in self.children],
        }


@dataclass(frozen=True)
class AlternatePath:
    node_id: ExecutionNodeId
    branch_id: BranchId
    label: str

    def to_dict(self) -> Dict[str, Any]:
        return {"nodeId": self.node_id, "branchId": self.branch_id, "label": self.label}


@dataclass(frozen=True)
class Divergence:
    """A user-message node with more than one child."""

    node_id: ExecutionNodeId
    main_child_id: ExecutionNodeId
    alternates: Tuple[AlternatePath, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodeId": self.node_id,
            "mainChildId": self.main_child_id,
            "alternates": [alt.to_dict() for alt in self.alternates],
        }


@dataclass
class HistoryTree:
    """Materialized forest plus divergence index."""

    roots: List[TreeNode]
    index: Dict[ExecutionNodeId, TreeNode]
    divergences: Dict[ExecutionNodeId, Divergence]

    def find(self, node_id: ExecutionNodeId) -> TreeNode:
        try:
            return self.index[node_id]
        except KeyError:
            raise NodeNotFound(
                f"Execution node '{node_id}' not found", details={"node_id": node_id}
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "roots": [root.to_dict() for root in self.roots],
            "divergences": [self.divergences[k].to_dict() for k in sorted(self.divergences)],
            "nodeCount": len(self.index),
        }


def _child_sort_key(tree_node: TreeNode) -> Tuple[datetime, int, str]:
    node = tree_node.node
    timestamp = node.timestamp
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return (timestamp, node.turn_number, node.node_id)


def _check_acyclic(nodes: Mapping[ExecutionNodeId, ExecutionNode]) -> None:
    resolved = set()
    for start in nodes.values():
        path = []
        on_path = set()
        current: Optional[ExecutionNode] = start
        while current is not None and current.node_id not in resolved:
            if current.node_id in on_path:
                raise OrphanedNodeError(
                    current.node_id,
                    current.parent_node_id,
                    reason=f"Parent links through node '{current.node_id}' form a cycle",
                )
            on_path.add(current.node_id)
            path.append(current.node_id)
            parent_id = current.parent_node_id
            current = nodes.get(parent_id) if parent_id is not None else None
        resolved.update(path)


def truncate_label(text: str, max_chars: int) -> str:
    text = " ".join(text.split())
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


def _alternate_label(
    child: TreeNode,
    branches: Mapping[BranchId, Branch],
    max_chars: int,
) -> str:
    current: Optional[TreeNode] = child
    while current is not None:
        message = current.node.user_message
        if message and message.strip():
            return truncate_label(message, max_chars)
        current = current.children[0] if current.children else None

    branch = branches.get(child.node.branch_id)
    if branch is not None and branch.label:
        return branch.label
    return ALTERNATE_FALLBACK_LABEL


def _main_child(parent: TreeNode) -> TreeNode:
    for child in parent.children:
        if (
            child.node.branch_id == parent.node.branch_id
            and child.node.turn_number == parent.node.turn_number + 1
        ):
            return child
    return parent.children[0]


def build_tree(
    nodes: Iterable[ExecutionNode],
    branches: Optional[Mapping[BranchId, Branch]] = None,
    label_chars: Optional[int] = None,
) -> HistoryTree:
    """Materialize the execution forest.

    Single pass: index by id, attach each node to its parent, then sort each
    children list by (timestamp, turnNumber, nodeId).

    Raises:
        OrphanedNodeError: If a parentNodeId does not resolve or parents loop.
    """
    branches = branches or {}
    max_chars = get_alternate_label_chars() if label_chars is None else label_chars

    by_id: Dict[ExecutionNodeId, ExecutionNode] = {}
    for node in nodes:
        by_id[node.node_id] = node

    index = {node_id: TreeNode(node=node) for node_id, node in by_id.items()}
    roots: List[TreeNode] = []
    for node_id, tree_node in index.items():
        parent_id = tree_node.node.parent_node_id
        if parent_id is None:
            roots.append(tree_node)
        elif parent_id in index:
            index[parent_id].children.append(tree_node)
        else:
            raise OrphanedNodeError(node_id, parent_id)

    _check_acyclic(by_id)

    roots.sort(key=_child_sort_key)
    divergences: Dict[ExecutionNodeId, Divergence] = {}
    stack = [(root, 0) for root in reversed(roots)]
    while stack:
        tree_node, depth = stack.pop()
        tree_node.depth = depth
        tree_node.children.sort(key=_child_sort_key)
        for child in reversed(tree_node.children):
            stack.append((child, depth + 1))

    for tree_node in index.values():
        if not tree_node.is_divergence:
            continue
        main = _main_child(tree_node)
        alternates = tuple(
            AlternatePath(
                node_id=child.node_id,
                branch_id=child.node.branch_id,
                label=_alternate_label(child, branches, max_chars),
            )
            for child in tree_node.children
            if child is not main
        )
        divergences[tree_node.node_id] = Divergence(
            node_id=tree_node.node_id,
            main_child_id=main.node_id,
            alternates=alternates,
        )

    logger.debug(
        "Built history tree: %d nodes, %d roots, %d divergences",
        len(index),
        len(roots),
        len(divergences),
    )
    return HistoryTree(roots=roots, index=index, divergences=divergences)


def linear_run(tree_node: TreeNode) -> List[TreeNode]:
    """Nodes from tree_node down to the next divergence or leaf, inclusive."""
    run = [tree_node]
    current = tree_node
    while len(current.children) == 1 and not current.is_divergence:
        current = current.children[0]
        run.append(current)
    return run
