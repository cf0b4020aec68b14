# flowctl/validator/errors.py
"""Validation error collection and formatting."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

# Error message template: [FAIL] CODE: location message
ERROR_TEMPLATE = "[{tag}] {code}: {location} {message}"


class ValidationError:
    """Structured validation finding (error or warning)."""

    def __init__(
        self,
        code: str,
        message: str,
        node_id: Optional[str] = None,
        field: Optional[str] = None,
        subject: Optional[str] = None,
        severity: str = "error",
    ):
        self.code = code
        self.message = message
        self.node_id = node_id
        self.field = field
        # The offending gate/fact/node name, when there is one
        self.subject = subject
        self.severity = severity

    @property
    def location(self) -> str:
        """Human-readable location: node and field when known."""
        if self.node_id and self.field:
            return f"nodes[{self.node_id}].{self.field}"
        if self.node_id:
            return f"nodes[{self.node_id}]"
        return self.field or "flow"

    def format(self) -> str:
        """Format finding as a single line."""
        return ERROR_TEMPLATE.format(
            tag="FAIL" if self.severity == "error" else "WARN",
            code=self.code,
            location=self.location,
            message=self.message,
        )

    def sort_key(self) -> Tuple[str, str, str]:
        """Sort key for deterministic ordering."""
        return (self.node_id or "", self.field or "", self.code)

    def to_dict(self) -> Dict[str, Any]:
        """Convert finding to dictionary for JSON serialization."""
        data: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
        }
        if self.node_id is not None:
            data["nodeId"] = self.node_id
        if self.field is not None:
            data["field"] = self.field
        if self.subject is not None:
            data["subject"] = self.subject
        return data

    def __repr__(self) -> str:
        return f"ValidationError({self.code!r}, {self.message!r})"


class ValidationResult:
    """Collects validation errors and warnings."""

    def __init__(self):
        self.errors: List[ValidationError] = []
        self.warnings: List[ValidationError] = []

    def add_error(
        self,
        code: str,
        message: str,
        node_id: Optional[str] = None,
        field: Optional[str] = None,
        subject: Optional[str] = None,
    ):
        """Add a validation error."""
        self.errors.append(
            ValidationError(code, message, node_id, field, subject, severity="error")
        )

    def add_warning(
        self,
        code: str,
        message: str,
        node_id: Optional[str] = None,
        field: Optional[str] = None,
        subject: Optional[str] = None,
    ):
        """Add a validation warning (modeling smell, not an error)."""
        self.warnings.append(
            ValidationError(code, message, node_id, field, subject, severity="warning")
        )

    def extend(self, other: "ValidationResult"):
        """Extend with errors and warnings from another result."""
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)

    def has_errors(self) -> bool:
        """Check if any errors were collected."""
        return len(self.errors) > 0

    def has_warnings(self) -> bool:
        """Check if any warnings were collected."""
        return len(self.warnings) > 0

    def codes(self) -> List[str]:
        """Error codes in collection order."""
        return [e.code for e in self.errors]

    def warning_codes(self) -> List[str]:
        """Warning codes in collection order."""
        return [w.code for w in self.warnings]

    def sorted_errors(self) -> List[ValidationError]:
        """Get errors in deterministic order."""
        return sorted(self.errors, key=lambda e: e.sort_key())

    def sorted_warnings(self) -> List[ValidationError]:
        """Get warnings in deterministic order."""
        return sorted(self.warnings, key=lambda e: e.sort_key())

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary for JSON serialization."""
        return {
            "ok": not self.has_errors(),
            "errors": [e.to_dict() for e in self.sorted_errors()],
            "warnings": [w.to_dict() for w in self.sorted_warnings()],
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
        }
