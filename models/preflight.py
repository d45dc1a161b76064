"""
Preflight result models.

A PreflightResult is pass/fail plus typed issues. `passed` is derived from
the errors list and nothing else: warnings never block submission.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class PreflightIssue:
    """A single preflight finding."""

    code: str
    """Machine-readable code, e.g. 'IMAGE_DPI_LOW'."""

    message: str
    """Human-readable explanation."""

    severity: Severity = Severity.MEDIUM
    """How bad it is."""

    location: Optional[str] = None
    """Physical location, e.g. 'left margin' or 'page 12'."""

    details: Dict[str, Any] = field(default_factory=dict)
    """Measured values behind the finding."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "severity": self.severity.value,
            "location": self.location,
            "details": dict(self.details),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PreflightIssue":
        return cls(
            code=data.get("code", ""),
            message=data.get("message", ""),
            severity=Severity(data.get("severity", "medium")),
            location=data.get("location"),
            details=dict(data.get("details") or {}),
        )


@dataclass(frozen=True)
class PreflightResult:
    """
    Outcome of a preflight run.

    Build with from_issues() or merge() so that `passed` always equals
    "no errors".
    """

    passed: bool
    errors: Tuple[PreflightIssue, ...] = ()
    warnings: Tuple[PreflightIssue, ...] = ()

    def __post_init__(self):
        if self.passed != (len(self.errors) == 0):
            object.__setattr__(self, "passed", len(self.errors) == 0)

    @classmethod
    def from_issues(
        cls,
        errors: Iterable[PreflightIssue] = (),
        warnings: Iterable[PreflightIssue] = ()
    ) -> "PreflightResult":
        errors = tuple(errors)
        return cls(passed=len(errors) == 0, errors=errors, warnings=tuple(warnings))

    @classmethod
    def ok(cls) -> "PreflightResult":
        return cls(passed=True)

    @classmethod
    def merge(cls, *results: "PreflightResult") -> "PreflightResult":
        errors: List[PreflightIssue] = []
        warnings: List[PreflightIssue] = []
        for result in results:
            errors.extend(result.errors)
            warnings.extend(result.warnings)
        return cls.from_issues(errors, warnings)

    @property
    def critical_issues(self) -> List[str]:
        return [e.message for e in self.errors if e.severity is Severity.HIGH]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PreflightResult":
        return cls.from_issues(
            [PreflightIssue.from_dict(e) for e in data.get("errors", [])],
            [PreflightIssue.from_dict(w) for w in data.get("warnings", [])],
        )


@dataclass(frozen=True)
class DPIResult:
    """Effective print resolution of an image at its placed size."""

    dpi: int
    is_print_safe: bool
    is_print_optimal: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dpi": self.dpi,
            "is_print_safe": self.is_print_safe,
            "is_print_optimal": self.is_print_optimal,
        }
