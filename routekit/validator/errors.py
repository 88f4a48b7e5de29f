# routekit/validator/errors.py
"""Validation finding collection and formatting."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

# Finding template: [FAIL] TYPE: location problem -> Fix: action
ERROR_TEMPLATE = "[FAIL] {issue_type}: {location} {problem}\n  Fix: {fix_action}"
WARNING_TEMPLATE = "[WARN] {issue_type}: {location} {problem}\n  Fix: {fix_action}"


@dataclass
class ValidationIssue:
    """One structured problem found in a route command payload.

    Attributes:
        issue_type: Category, e.g. PROTOCOL, VERSION, DEPTH, CONDITION.
        location: "<file>:<path inside the payload>".
        problem: What is wrong.
        fix_action: What the author should change.
        severity: "error" or "warning".
    """

    issue_type: str
    location: str
    problem: str
    fix_action: str
    severity: str = "error"

    @property
    def file_path(self) -> str:
        return self.location.split(":")[0]

    def format(self) -> str:
        template = WARNING_TEMPLATE if self.severity == "warning" else ERROR_TEMPLATE
        return template.format(
            issue_type=self.issue_type,
            location=self.location,
            problem=self.problem,
            fix_action=self.fix_action,
        )

    def sort_key(self) -> Tuple[str, str]:
        return (self.file_path, self.location)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.issue_type,
            "location": self.location,
            "problem": self.problem,
            "fix_action": self.fix_action,
            "severity": self.severity,
            "file_path": self.file_path,
        }


class ValidationResult:
    """Collects validation errors and warnings."""

    def __init__(self) -> None:
        self.errors: List[ValidationIssue] = []
        self.warnings: List[ValidationIssue] = []

    def add_error(self, issue_type: str, location: str, problem: str, fix_action: str) -> None:
        self.errors.append(ValidationIssue(issue_type, location, problem, fix_action, "error"))

    def add_warning(self, issue_type: str, location: str, problem: str, fix_action: str) -> None:
        """Add a warning (suspicious but executable payload)."""
        self.warnings.append(ValidationIssue(issue_type, location, problem, fix_action, "warning"))

    def extend(self, other: "ValidationResult") -> None:
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)

    def promote_warnings(self) -> None:
        """Treat every warning as an error (--strict)."""
        for warning in self.warnings:
            warning.severity = "error"
        self.errors.extend(self.warnings)
        self.warnings = []

    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def has_warnings(self) -> bool:
        return len(self.warnings) > 0

    def sorted_errors(self) -> List[ValidationIssue]:
        """Errors in deterministic order."""
        return sorted(self.errors, key=lambda e: e.sort_key())

    def sorted_warnings(self) -> List[ValidationIssue]:
        return sorted(self.warnings, key=lambda e: e.sort_key())

    def issues_of_type(self, issue_type: str) -> List[ValidationIssue]:
        return [i for i in self.errors + self.warnings if i.issue_type == issue_type]

    def to_dict(self, status: Optional[str] = None) -> Dict[str, Any]:
        """Convert result to dictionary for JSON serialization."""
        return {
            "errors": [e.to_dict() for e in self.sorted_errors()],
            "warnings": [w.to_dict() for w in self.sorted_warnings()],
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            "status": status or ("FAIL" if self.has_errors() else "PASS"),
        }
