"""Validation result types."""

from dataclasses import dataclass, field
from enum import IntEnum


class ValidationSeverity(IntEnum):
    """Graded assessment of a record's issues, ordered by seriousness."""

    VALID = 0
    INFO = 1
    WARNING = 2
    ERROR = 3
    CRITICAL = 4


@dataclass
class ValidationResult:
    """Outcome of validating a save record."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    critical_errors: list[str] = field(default_factory=list)
    requires_migration: bool = False
    severity: ValidationSeverity = ValidationSeverity.VALID

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    @property
    def is_critical(self) -> bool:
        return self.severity >= ValidationSeverity.CRITICAL

    @property
    def is_loadable(self) -> bool:
        return self.severity < ValidationSeverity.CRITICAL

    @property
    def issues(self) -> list[str]:
        return self.errors + self.warnings

    def add_error(self, message: str, critical: bool = False) -> None:
        self.errors.append(message)
        if critical:
            self.critical_errors.append(message)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def calculate_severity(self) -> ValidationSeverity:
        """Grade the collected issues.

        Critical errors outrank plain errors. Without errors, more than five
        warnings grade as WARNING and any warning as INFO.
        """
        if self.critical_errors:
            self.severity = ValidationSeverity.CRITICAL
        elif self.errors:
            self.severity = ValidationSeverity.ERROR
        elif len(self.warnings) > 5:
            self.severity = ValidationSeverity.WARNING
        elif self.warnings:
            self.severity = ValidationSeverity.INFO
        else:
            self.severity = ValidationSeverity.VALID
        return self.severity

    def get_summary(self) -> str:
        if self.is_valid and not self.has_warnings:
            return "Save data is valid"

        summary = f"Validation {'passed' if self.is_valid else 'failed'}"
        if self.has_errors:
            summary += f" - {len(self.errors)} error(s)"
        if self.has_warnings:
            summary += f" - {len(self.warnings)} warning(s)"
        if self.requires_migration:
            summary += " - Migration required"
        return summary

    def get_detailed_report(self) -> str:
        lines = [
            f"Validation Result: {self.severity.name}",
            f"Valid: {self.is_valid}",
        ]
        if self.requires_migration:
            lines.append("Migration Required: Yes")
        if self.errors:
            lines.append("")
            lines.append("Errors:")
            lines.extend(f"  - {error}" for error in self.errors)
        if self.warnings:
            lines.append("")
            lines.append("Warnings:")
            lines.extend(f"  - {warning}" for warning in self.warnings)
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "severity": self.severity.name,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "requires_migration": self.requires_migration,
        }
