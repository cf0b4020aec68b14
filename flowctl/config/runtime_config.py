"""Runtime configuration registry for the flow controller.

Provides centralized configuration for controller guards, post-goal behavior,
history presentation and default fact-extraction patterns.
Environment variables take precedence over YAML config.

Usage:
    from flowctl.config.runtime_config import get_controller_settings

    settings = get_controller_settings()
    settings.stagnation_threshold  # 10 unless overridden

Environment overrides:
    FLOWCTL_STAGNATION_THRESHOLD   consecutive stagnant selections before escalation
    FLOWCTL_POST_GOAL_POLICY       "stop" | "high_importance_cleanup"
    FLOWCTL_POST_GOAL_MAX_TURNS    cleanup turns allowed after the goal is met
    FLOWCTL_ALTERNATE_LABEL_CHARS  truncation length of alternate-path labels
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

_CONFIG_PATH = Path(__file__).parent / "runtime.yaml"
_cached_config: Optional[Dict[str, Any]] = None

# Stagnation threshold bounds: below 2 every repeated question would escalate
STAGNATION_MIN = 2
STAGNATION_MAX = 1000

LABEL_MIN_CHARS = 8
LABEL_MAX_CHARS = 200


class PostGoalPolicy(str, Enum):
    """What the controller does once the primary goal is satisfied."""

    STOP = "stop"
    HIGH_IMPORTANCE_CLEANUP = "high_importance_cleanup"


@dataclass(frozen=True)
class ControllerSettings:
    """Resolved controller configuration, passed explicitly to the Controller."""

    stagnation_threshold: int = 10
    post_goal_policy: PostGoalPolicy = PostGoalPolicy.STOP
    post_goal_max_turns: int = 1
    alternate_label_chars: int = 25


def _clamp(value: int, name: str, min_val: int, max_val: int) -> int:
    """Clamp a numeric setting to sanity bounds with logging."""
    if value < min_val:
        logger.warning(
            "Setting '%s' value %d is below minimum %d. Clamping to %d.",
            name,
            value,
            min_val,
            min_val,
        )
        return min_val
    if value > max_val:
        logger.warning(
            "Setting '%s' value %d exceeds maximum %d. Clamping to %d.",
            name,
            value,
            max_val,
            max_val,
        )
        return max_val
    return value


def _load_config() -> Dict[str, Any]:
    """Load runtime.yaml configuration, with caching."""
    global _cached_config
    if _cached_config is not None:
        return _cached_config

    if _CONFIG_PATH.exists():
        with open(_CONFIG_PATH) as f:
            _cached_config = yaml.safe_load(f) or _default_config()
    else:
        _cached_config = _default_config()

    return _cached_config


def _default_config() -> Dict[str, Any]:
    """Return default configuration if runtime.yaml doesn't exist."""
    return {
        "version": "1.0",
        "controller": {
            "stagnation_threshold": 10,
            "post_goal_policy": "stop",
            "post_goal_max_turns": 1,
        },
        "history": {
            "alternate_label_chars": 25,
        },
        "extraction": {
            "patterns": {
                "email": r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}",
                "phone": r"\+?\d[\d\s().-]{6,}\d",
            },
        },
    }


def reset_config() -> None:
    """Reset cached config (for testing)."""
    global _cached_config
    _cached_config = None


def _section(name: str) -> Dict[str, Any]:
    return _load_config().get(name) or _default_config().get(name) or {}


def _env_int(var: str, fallback: int) -> int:
    raw = os.environ.get(var)
    if raw is None or raw.strip() == "":
        return fallback
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", var, raw)
        return fallback


def get_stagnation_threshold() -> int:
    value = _env_int(
        "FLOWCTL_STAGNATION_THRESHOLD",
        int(_section("controller").get("stagnation_threshold", 10)),
    )
    return _clamp(value, "stagnation_threshold", STAGNATION_MIN, STAGNATION_MAX)


def get_post_goal_policy() -> PostGoalPolicy:
    """Resolve the post-goal policy.

    Raises:
        ValueError: If the configured policy is not a known value.
    """
    raw = os.environ.get("FLOWCTL_POST_GOAL_POLICY") or _section("controller").get(
        "post_goal_policy", "stop"
    )
    try:
        return PostGoalPolicy(str(raw).strip().lower())
    except ValueError:
        allowed = ", ".join(p.value for p in PostGoalPolicy)
        raise ValueError(f"Unknown post_goal_policy '{raw}' (allowed: {allowed})")


def get_post_goal_max_turns() -> int:
    value = _env_int(
        "FLOWCTL_POST_GOAL_MAX_TURNS",
        int(_section("controller").get("post_goal_max_turns", 1)),
    )
    return max(0, value)


def get_alternate_label_chars() -> int:
    value = _env_int(
        "FLOWCTL_ALTERNATE_LABEL_CHARS",
        int(_section("history").get("alternate_label_chars", 25)),
    )
    return _clamp(value, "alternate_label_chars", LABEL_MIN_CHARS, LABEL_MAX_CHARS)


def get_extraction_patterns() -> Dict[str, str]:
    """Regex source per fact name for the pattern fact extractor."""
    return dict(_section("extraction").get("patterns") or {})


def get_controller_settings() -> ControllerSettings:
    """Resolve all controller settings (env > yaml > defaults)."""
    return ControllerSettings(
        stagnation_threshold=get_stagnation_threshold(),
        post_goal_policy=get_post_goal_policy(),
        post_goal_max_turns=get_post_goal_max_turns(),
        alternate_label_chars=get_alternate_label_chars(),
    )
