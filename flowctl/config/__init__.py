"""Runtime configuration for the flow controller."""

from .runtime_config import (
    ControllerSettings,
    PostGoalPolicy,
    get_controller_settings,
    get_extraction_patterns,
    reset_config,
)

__all__ = [
    "ControllerSettings",
    "PostGoalPolicy",
    "get_controller_settings",
    "get_extraction_patterns",
    "reset_config",
]
