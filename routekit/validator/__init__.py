"""Structured validation findings shared by routekit developer tools."""

from .errors import ERROR_TEMPLATE, WARNING_TEMPLATE, ValidationIssue, ValidationResult

__all__ = ["ERROR_TEMPLATE", "WARNING_TEMPLATE", "ValidationIssue", "ValidationResult"]
