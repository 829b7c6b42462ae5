"""Validation result for the "add bhandara" form."""

from typing import Dict, List, Optional


class ValidationResult:
    """Errors and warnings found in a submitted form.

    Messages can be tied to a form field so the form can show each one
    next to its input; ``errors`` and ``warnings`` keep every message in
    the order found.
    """

    def __init__(self):
        self.errors: List[str] = []
        self.warnings: List[str] = []
        self.field_errors: Dict[str, List[str]] = {}

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add_error(self, error: str, field: Optional[str] = None):
        """Record an error, optionally against a form field"""
        self.errors.append(error)
        if field is not None:
            self.field_errors.setdefault(field, []).append(error)

    def add_warning(self, warning: str):
        self.warnings.append(warning)

    def errors_for(self, field: str) -> List[str]:
        """Errors recorded against ``field``"""
        return list(self.field_errors.get(field, []))

    @property
    def invalid_fields(self) -> List[str]:
        return list(self.field_errors)

    def __bool__(self):
        return self.is_valid

    def __str__(self):
        if self.is_valid:
            warnings_str = f" ({len(self.warnings)} warnings)" if self.warnings else ""
            return f"Valid{warnings_str}"
        return f"Invalid: {'; '.join(self.errors)}"
