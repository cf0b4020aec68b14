"""Closed enumerations for controller decisions and turn outcomes."""

from __future__ import annotations

from enum import Enum


class Mode(str, Enum):
    """How the selected node is delivered this turn."""

    EXECUTE = "EXECUTE"  # First attempt, or pass-through when objective already met
    RETRY = "RETRY"  # Re-ask / rephrase without re-executing effects
    BROADEN = "BROADEN"  # Widen the question after attempts are exhausted
    HANDOFF = "HANDOFF"  # Escalate to a human; terminates the branch
    SKIP = "SKIP"  # Give up on this node for the turn; selector moves on


class TurnStatus(str, Enum):
    """Outcome code of a committed turn."""

    OK = "OK"
    DEADLOCK = "DEADLOCK"
    COMPLETE = "COMPLETE"
    HANDOFF = "HANDOFF"


class ControllerPhase(str, Enum):
    """Turn state machine: AWAITING_INPUT -> EVALUATING -> terminal phase."""

    AWAITING_INPUT = "AWAITING_INPUT"
    EVALUATING = "EVALUATING"
    ADVANCING = "ADVANCING"
    DEADLOCK = "DEADLOCK"
    COMPLETE = "COMPLETE"


# Modes after which the next user message answers the selected node's prompt
PROMPTING_MODES = frozenset({Mode.EXECUTE, Mode.RETRY, Mode.BROADEN})
