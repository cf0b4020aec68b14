"""Validation error collection for flow definitions."""

from .errors import ValidationError, ValidationResult

__all__ = ["ValidationError", "ValidationResult"]
