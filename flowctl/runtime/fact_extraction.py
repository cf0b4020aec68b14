"""
fact_extraction.py - Fact extraction and aliasing.

Extraction turns a user message into raw fact names (and optionally state
names) for the node the message answers. Real deployments plug a language-model
extractor in behind the FactExtractor protocol; PatternFactExtractor covers the
deterministic cases (email addresses, phone numbers) with regexes from
runtime.yaml.

Aliasing maps each raw name through the flow's factAliases table (identity when
unmapped). Merging is a set union, so re-applying the same facts is a no-op.

Usage:
    from flowctl.runtime.fact_extraction import PatternFactExtractor, merge_facts

    extractor = PatternFactExtractor()
    result = extractor.extract(ExtractionRequest.for_node(node, "john@x.com"))
    added = merge_facts(state, flow, result.facts)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Pattern, Protocol, Set

from flowctl.config.runtime_config import get_extraction_patterns
from flowctl.spec.types import FlowModel, NodeDef

from .state import RuntimeState

logger = logging.getLogger(__name__)


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class ExtractionRequest:
    """What the extractor is asked to look for.

    Attributes:
        node_id: Flow node the message is credited to.
        produces_facts: Raw fact names the node declares.
        produced_canonical: The same facts after aliasing.
        user_message: Message text (None for agent-only turns).
    """

    node_id: str
    produces_facts: FrozenSet[str]
    produced_canonical: FrozenSet[str]
    user_message: Optional[str]

    @classmethod
    def for_node(cls, node: NodeDef, user_message: Optional[str]) -> "ExtractionRequest":
        return cls(
            node_id=node.id,
            produces_facts=node.produces_facts,
            produced_canonical=node.produced_canonical,
            user_message=user_message,
        )

    @property
    def wanted(self) -> FrozenSet[str]:
        return self.produces_facts | self.produced_canonical


@dataclass(frozen=True)
class ExtractionResult:
    """Raw facts and states reported by an extractor."""

    facts: FrozenSet[str] = frozenset()
    states: FrozenSet[str] = frozenset()

    @property
    def is_empty(self) -> bool:
        return not self.facts and not self.states


class FactExtractor(Protocol):
    def extract(self, request: ExtractionRequest) -> ExtractionResult:
        ...


# =============================================================================
# Extractors
# =============================================================================


class NullFactExtractor:
    """Extracts nothing. Facts only arrive through caller assertions."""

    def extract(self, request: ExtractionRequest) -> ExtractionResult:
        return ExtractionResult()


class PatternFactExtractor:
    """Regex-per-fact extractor.

    A fact is reported when its pattern matches anywhere in the message. Only
    the facts the credited node declares are tried.
    """

    def __init__(self, patterns: Optional[Mapping[str, str]] = None):
        if patterns is None:
            patterns = get_extraction_patterns()
        self._patterns: Dict[str, Pattern[str]] = {
            name: re.compile(source, re.IGNORECASE) for name, source in patterns.items()
        }

    @property
    def fact_names(self) -> FrozenSet[str]:
        return frozenset(self._patterns)

    def extract(self, request: ExtractionRequest) -> ExtractionResult:
        if not request.user_message:
            return ExtractionResult()

        found: Set[str] = set()
        for name in sorted(request.wanted):
            pattern = self._patterns.get(name)
            if pattern is not None and pattern.search(request.user_message):
                found.add(name)

        if found:
            logger.debug("Extracted %s for node %s", sorted(found), request.node_id)
        return ExtractionResult(facts=frozenset(found))


# =============================================================================
# Aliasing and merge
# =============================================================================


def apply_aliases(flow: FlowModel, raw_facts: Iterable[str]) -> FrozenSet[str]:
    """Map raw fact names to canonical names (identity when unmapped)."""
    return frozenset(flow.canonical(raw) for raw in raw_facts)


def merge_facts(state: RuntimeState, flow: FlowModel, raw_facts: Iterable[str]) -> Set[str]:
    """Alias and union facts into state.

    Returns:
        Canonical facts that were not known before (empty on re-application).
    """
    return state.add_facts(apply_aliases(flow, raw_facts))
