"""
stagnation.py - Loop guard for repeated selections without progress.

A sha256 signature of the lineage's facts and states
is compared across consecutive selections. The streak lives in RuntimeState so
each branch keeps its own count.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

from .state import RuntimeState
from .types import Mode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StagnationSignal:
    """Result of recording one selection."""

    streak: int
    escalate_to: Optional[Mode] = None

    @property
    def is_stagnant(self) -> bool:
        return self.escalate_to is not None


class StagnationGuard:
    """Escalate when one node is selected too often with nothing changing.

    The first selection past the threshold forces BROADEN (HANDOFF if the node
    was already broadening); any further stagnant selection forces HANDOFF.
    """

    def __init__(self, threshold: int = 10):
        self._threshold = threshold

    @property
    def threshold(self) -> int:
        return self._threshold

    @staticmethod
    def compute_signature(state: RuntimeState) -> str:
        combined = "f:{}|s:{}".format(",".join(sorted(state.facts)), ",".join(sorted(state.states)))
        return hashlib.sha256(combined.encode()).hexdigest()[:16]

    @staticmethod
    def break_streak(state: RuntimeState) -> None:
        """Forget the last selection; a turn that selected no node ends any streak."""
        state.streak = 0
        state.last_selected = None
        state.last_signature = None

    def record(self, state: RuntimeState, node_id: str, mode: Mode) -> StagnationSignal:
        """Record a selection on state and decide whether to escalate."""
        signature = self.compute_signature(state)
        if state.last_selected == node_id and state.last_signature == signature:
            state.streak += 1
        else:
            state.streak = 1
        state.last_selected = node_id
        state.last_signature = signature

        if state.streak <= self._threshold or mode is Mode.HANDOFF:
            return StagnationSignal(streak=state.streak)

        if state.streak == self._threshold + 1 and mode is not Mode.BROADEN:
            escalate_to = Mode.BROADEN
        else:
            escalate_to = Mode.HANDOFF

        logger.warning(
            "Stagnation: node %s selected %d consecutive turns without progress; "
            "escalating %s -> %s",
            node_id,
            state.streak,
            mode.value,
            escalate_to.value,
        )
        return StagnationSignal(streak=state.streak, escalate_to=escalate_to)
