"""
sealevel_lints/diagnostics.py
═════════════════════════════

The diagnostic record every rule produces, and its severity / confidence
vocabulary.  Formatting beyond ``to_dict`` / ``to_gcc_format`` is left to
the driver that embeds the analyses.

License: MIT — same as sealevel-lints.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, Tuple

from sealevel_lints.program_model import NO_LOCATION, SourceLocation


class DiagnosticSeverity(Enum):
    """Severity levels, compatible with cppcheck's vocabulary."""
    ERROR = "error"
    WARNING = "warning"
    STYLE = "style"
    PERFORMANCE = "performance"
    INFORMATION = "information"


class Confidence(Enum):
    """
    How certain we are that the diagnostic is a true positive.

    HIGH   — the sink is present and no guard of any kind exists
    MEDIUM — guards exist but do not cover the sink, or the finding is
             structural
    """
    HIGH = auto()
    MEDIUM = auto()


@dataclass(frozen=True)
class Diagnostic:
    """
    A single finding.

    Attributes
    ----------
    category   : Category id of the rule (e.g. "arbitrary-cpi")
    error_id   : Short camel-case identifier (e.g. "arbitraryCpi")
    message    : Human-readable description
    severity   : DiagnosticSeverity
    location   : Primary source location
    secondary  : Related locations (the other account of a pair, ...)
    hint       : Suggested fix
    confidence : Confidence level
    cwe        : CWE identifier (0 = none)
    function   : Function the finding was made in ("" for program-wide)
    evidence   : Machine-readable evidence dict for downstream tooling
    """
    category: str
    error_id: str
    message: str
    severity: DiagnosticSeverity = DiagnosticSeverity.WARNING
    location: SourceLocation = NO_LOCATION
    secondary: Tuple[SourceLocation, ...] = ()
    hint: str = ""
    confidence: Confidence = Confidence.MEDIUM
    cwe: int = 0
    function: str = ""
    evidence: Dict[str, Any] = field(default_factory=dict)

    def sort_key(self) -> Tuple[str, int, int, str, str]:
        loc = self.location
        return (loc.file, loc.line, loc.column, self.category, self.message)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "file": self.location.file,
            "linenr": self.location.line,
            "column": self.location.column,
            "severity": self.severity.value,
            "category": self.category,
            "errorId": self.error_id,
            "message": self.message,
        }
        if self.hint:
            result["hint"] = self.hint
        if self.cwe:
            result["cwe"] = self.cwe
        if self.function:
            result["function"] = self.function
        if self.secondary:
            result["secondary"] = [
                {"file": s.file, "linenr": s.line, "column": s.column}
                for s in self.secondary
            ]
        return result

    def to_json_str(self) -> str:
        return json.dumps(self.to_dict())

    def to_gcc_format(self) -> str:
        """GCC-style diagnostic string: file:line:col: severity: message."""
        sev = self.severity.value
        return f"{self.location}: {sev}: {self.message} [{self.error_id}]"


__all__ = ["DiagnosticSeverity", "Confidence", "Diagnostic"]
