"""
sealevel_lints/checkers.py
══════════════════════════

The verdict engine: composes the analyses into diagnostics.

Architecture
────────────

  ┌──────────────────────────────────────────────────────────────┐
  │                         LintRunner                           │
  │                                                              │
  │  phase 1 (per function, optionally on a thread pool)         │
  │  ┌────────────────────────────────────────────────────────┐  │
  │  │ FunctionFacts: AliasTracker · DominatorTree · blocks   │  │
  │  │   for each enabled rule:                               │  │
  │  │     SinkClassifier → sinks    GuardDetector → guards   │  │
  │  │     coverage policy decides each sink                  │  │
  │  │     (type-cosplay sinks feed the DiscriminatedTypeSet) │  │
  │  └──────────────────────────┬─────────────────────────────┘  │
  │                             │ merge                          │
  │  phase 2 (once)             ▼                                │
  │  ┌────────────────────────────────────────────────────────┐  │
  │  │ StructuralTypeAnalyzer.verdict(T)                      │  │
  │  │ declaration checks on Anchor accounts structs          │  │
  │  └──────────────────────────┬─────────────────────────────┘  │
  │                             ▼                                │
  │              sorted by (file, line, column, category,        │
  │              message)                                        │
  └──────────────────────────────────────────────────────────────┘

The engine never mutates the program model; running it twice on the same
model yields the same list.

License: MIT — same as sealevel-lints.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from itertools import combinations
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sealevel_lints.config import AnalysisConfig
from sealevel_lints.diagnostics import Confidence, Diagnostic, DiagnosticSeverity
from sealevel_lints.errors import ModelError
from sealevel_lints.facts import FunctionFacts
from sealevel_lints.guards import Guard, GuardDetector
from sealevel_lints.program_model import (
    FACT_ACCOUNTS_STRUCT,
    FieldDef,
    FunctionModel,
    ProgramModel,
    SourceLocation,
    TypeDescriptor,
)
from sealevel_lints.rules import (
    ANCHOR_ACCOUNT,
    ANCHOR_SYSVAR,
    GETTABLE_SYSVAR_ACCOUNTS,
    CoveragePolicy,
    DeclarationKind,
    RuleDescriptor,
    RuleRegistry,
    inner_type,
    path_matches,
    type_has_fact,
)
from sealevel_lints.sinks import Sink, SinkClassifier
from sealevel_lints.type_analysis import (
    AMBIGUOUS_ENUM_MESSAGE,
    DiscriminatedTypeSet,
    StructuralTypeAnalyzer,
)

_log = logging.getLogger(__name__)


class _Fields(dict):
    """Format mapping that leaves unknown placeholders in place."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def _format(template: str, fields: Dict[str, str]) -> str:
    return template.format_map(_Fields(fields))


def _quoted_list(names: Sequence[str]) -> str:
    quoted = [f"`{n}`" for n in names]
    if len(quoted) == 2:
        return f"{quoted[0]} and {quoted[1]}"
    return ", ".join(quoted[:-1]) + f", and {quoted[-1]}"


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — RESULTS
# ═════════════════════════════════════════════════════════════════════════

@dataclass
class FunctionResult:
    """Phase-1 output for one function."""
    function: str
    diagnostics: List[Diagnostic] = field(default_factory=list)
    types: DiscriminatedTypeSet = field(default_factory=DiscriminatedTypeSet)
    skipped: bool = False
    elapsed: float = 0.0


@dataclass
class LintRunResults:
    """
    Aggregate results of one run.

    Attributes
    ----------
    diagnostics        : every diagnostic, deterministically sorted
    skipped_functions  : functions not analysed (unmodeled or malformed)
    stats              : timing and counting statistics
    rule_names         : categories that were run
    """
    diagnostics: List[Diagnostic] = field(default_factory=list)
    skipped_functions: List[str] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)
    rule_names: List[str] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return sum(1 for d in self.diagnostics
                   if d.severity == DiagnosticSeverity.ERROR)

    @property
    def total_count(self) -> int:
        return len(self.diagnostics)

    def by_category(self) -> Dict[str, List[Diagnostic]]:
        grouped: Dict[str, List[Diagnostic]] = defaultdict(list)
        for d in self.diagnostics:
            grouped[d.category].append(d)
        return dict(grouped)

    def by_file(self, file: str) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.location.file == file]

    def summary(self) -> str:
        lines = [f"sealevel-lints: {self.total_count} diagnostic(s) "
                 f"from {len(self.rule_names)} rule(s)"]
        for category, diags in sorted(self.by_category().items()):
            lines.append(f"  {category:<36} {len(diags)}")
        if self.skipped_functions:
            lines.append("  skipped: " + ", ".join(self.skipped_functions))
        return "\n".join(lines)


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — VERDICT ENGINE
# ═════════════════════════════════════════════════════════════════════════

class VerdictEngine:
    """Applies a fixed list of rules to one program model."""

    def __init__(self, program: ProgramModel, rules: Sequence[RuleDescriptor],
                 config: Optional[AnalysisConfig] = None) -> None:
        self.program = program
        self.rules = list(rules)
        self.config = config or AnalysisConfig()
        self.structural = StructuralTypeAnalyzer(program, self.config.tag_names)

    # ---- phase 1 -------------------------------------------------------

    def analyse_function(self, fn: FunctionModel) -> FunctionResult:
        if not fn.modeled:
            _log.warning("skipping %s: body was not modeled", fn.name)
            return FunctionResult(fn.name, skipped=True)
        t0 = time.monotonic()
        try:
            result = self._analyse(fn)
        except ModelError as exc:
            _log.warning("skipping %s: %s", fn.name, exc)
            return FunctionResult(fn.name, skipped=True)
        result.elapsed = time.monotonic() - t0
        _log.debug("%s: %d diagnostic(s) in %.4fs",
                   fn.name, len(result.diagnostics), result.elapsed)
        return result

    def _analyse(self, fn: FunctionModel) -> FunctionResult:
        facts = FunctionFacts.build(self.program, fn)
        classifier = SinkClassifier(facts)
        detector = GuardDetector(facts)
        result = FunctionResult(fn.name)
        for rule in self.rules:
            if not rule.sinks:
                continue
            sinks = classifier.classify(rule)
            if rule.coverage is CoveragePolicy.STRUCTURAL:
                result.types.merge(self.structural.collect(sinks, fn.name))
                continue
            if not sinks:
                continue
            guards: List[Guard] = []
            if rule.coverage is not CoveragePolicy.UNCONDITIONAL:
                guards = detector.detect(rule)
            for sink in sinks:
                if not self.is_covered(rule, sink, guards, facts):
                    result.diagnostics.append(
                        self._sink_diagnostic(rule, sink, guards, fn))
        return result

    @staticmethod
    def is_covered(rule: RuleDescriptor, sink: Sink, guards: Iterable[Guard],
                   facts: FunctionFacts) -> bool:
        if sink.unconditional or rule.coverage is CoveragePolicy.UNCONDITIONAL:
            return False
        covering = [g for g in guards if g.covers(sink.paths)]
        if rule.coverage is CoveragePolicy.PRESENCE:
            return bool(covering)
        if rule.coverage is CoveragePolicy.ALL_PATHS:
            return facts.domtree.set_dominates({g.block for g in covering}, sink.block)
        return False

    def _sink_diagnostic(self, rule: RuleDescriptor, sink: Sink,
                         guards: List[Guard], fn: FunctionModel) -> Diagnostic:
        fields = sink.format_fields()
        if rule.coverage is CoveragePolicy.UNCONDITIONAL or sink.unconditional or not guards:
            confidence = Confidence.HIGH
        else:
            confidence = Confidence.MEDIUM
        return Diagnostic(
            category=rule.category.value,
            error_id=rule.error_id,
            message=_format(sink.message or rule.message, fields),
            severity=rule.severity,
            location=sink.location,
            secondary=sink.secondary,
            hint=_format(rule.hint, fields),
            confidence=confidence,
            cwe=rule.cwe,
            function=fn.name,
            evidence={
                "block": sink.block,
                "paths": sorted(str(p) for p in sink.paths),
                "guards": len(guards),
            },
        )

    # ---- phase 2 -------------------------------------------------------

    def structural_verdict(self, tset: DiscriminatedTypeSet) -> List[Diagnostic]:
        rule = next((r for r in self.rules
                     if r.coverage is CoveragePolicy.STRUCTURAL), None)
        if rule is None:
            return []
        out: List[Diagnostic] = []
        for v in self.structural.verdict(tset):
            first, rest = v.sites[0], v.sites[1:]
            template = AMBIGUOUS_ENUM_MESSAGE if v.ambiguous_enum else rule.message
            fields = {"type": v.type.name}
            out.append(Diagnostic(
                category=rule.category.value,
                error_id=rule.error_id,
                message=_format(template, fields),
                severity=rule.severity,
                location=first.location,
                secondary=tuple(s.location for s in rest),
                hint=_format(rule.hint, fields),
                confidence=Confidence.MEDIUM,
                cwe=rule.cwe,
                function=first.function,
                evidence={"type": v.type.path, "deserialized_types": len(tset)},
            ))
        return out

    def _accounts_structs(self) -> List[TypeDescriptor]:
        return [t for t in self.program.types
                if t.is_struct and type_has_fact(t, FACT_ACCOUNTS_STRUCT)]

    def declaration_checks(self) -> List[Diagnostic]:
        out: List[Diagnostic] = []
        for rule in self.rules:
            if rule.declaration is None:
                continue
            for struct in self._accounts_structs():
                if rule.declaration.kind is DeclarationKind.SYSVAR_ACCOUNT_FIELDS:
                    out.extend(self._sysvar_fields(rule, struct))
                elif rule.declaration.kind is DeclarationKind.DUPLICATE_MUTABLE_FIELDS:
                    out.extend(self._duplicate_mut_fields(rule, struct))
        return out

    def _declaration_diagnostic(self, rule: RuleDescriptor, message: str,
                                hint: str, location: SourceLocation,
                                secondary: Sequence[SourceLocation],
                                struct: TypeDescriptor) -> Diagnostic:
        return Diagnostic(
            category=rule.category.value,
            error_id=rule.error_id,
            message=message,
            severity=rule.severity,
            location=location,
            secondary=tuple(secondary),
            hint=hint,
            confidence=Confidence.HIGH,
            cwe=rule.cwe,
            evidence={"struct": struct.path},
        )

    def _sysvar_fields(self, rule: RuleDescriptor,
                       struct: TypeDescriptor) -> List[Diagnostic]:
        passed: List[FieldDef] = []
        names: List[str] = []
        for f in struct.fields:
            t = self.program.type(f.type_id)
            if t is None or not path_matches(ANCHOR_SYSVAR, t.path):
                continue
            sysvar = self.program.type(inner_type(self.program, f.type_id))
            if sysvar is not None and sysvar.name in GETTABLE_SYSVAR_ACCOUNTS:
                passed.append(f)
                names.append(sysvar.name)
        if not passed:
            return []
        decl = rule.declaration
        if len(passed) == 1:
            message = _format(decl.message, {"sysvar": names[0]})
        else:
            message = ("Use `Sysvar::get` instead of passing the accounts for "
                       + _quoted_list([f.name for f in passed]) + ".")
        return [self._declaration_diagnostic(
            rule, message, decl.hint, struct.location,
            [f.location for f in passed], struct)]

    def _duplicate_mut_fields(self, rule: RuleDescriptor,
                              struct: TypeDescriptor) -> List[Diagnostic]:
        groups: Dict[int, List[FieldDef]] = defaultdict(list)
        for f in struct.fields:
            t = self.program.type(f.type_id)
            if "mut" not in f.constraints or t is None:
                continue
            if not path_matches(ANCHOR_ACCOUNT, t.path):
                continue
            inner = inner_type(self.program, f.type_id)
            if inner is not None:
                groups[inner].append(f)
        out: List[Diagnostic] = []
        decl = rule.declaration
        for inner in sorted(groups):
            for a, b in combinations(groups[inner], 2):
                if b.name in a.distinct_from or a.name in b.distinct_from:
                    continue
                fields = {"first": a.name, "second": b.name}
                out.append(self._declaration_diagnostic(
                    rule, _format(decl.message, fields), _format(decl.hint, fields),
                    a.location, [b.location], struct))
        return out


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — RUNNER
# ═════════════════════════════════════════════════════════════════════════

class LintRunner:
    """
    Runs the enabled rules against a program model.

    Usage
    -----
    >>> runner = LintRunner(config=AnalysisConfig(jobs=4))
    >>> results = runner.run(program)
    >>> print(results.summary())

    Parameters for constructor
    ─────────────────────────
    registry : RuleRegistry — rule table (default: every built-in rule)
    config   : AnalysisConfig — category selection and parallelism
    """

    def __init__(self, registry: Optional[RuleRegistry] = None,
                 config: Optional[AnalysisConfig] = None) -> None:
        self.config = config or AnalysisConfig()
        if registry is None:
            registry = RuleRegistry.default()
        self.registry = self.config.apply(registry)

    def run(self, program: ProgramModel) -> LintRunResults:
        rules = self.registry.get_enabled()
        engine = VerdictEngine(program, rules, self.config)
        results = LintRunResults(rule_names=[r.name for r in rules])

        t0 = time.monotonic()
        if self.config.jobs > 1 and len(program.functions) > 1:
            with ThreadPoolExecutor(max_workers=self.config.jobs) as pool:
                per_function = list(pool.map(engine.analyse_function,
                                             program.functions))
        else:
            per_function = [engine.analyse_function(fn) for fn in program.functions]
        phase1 = time.monotonic() - t0

        merged = DiscriminatedTypeSet()
        diagnostics: List[Diagnostic] = []
        for fr in per_function:
            if fr.skipped:
                results.skipped_functions.append(fr.function)
                continue
            diagnostics.extend(fr.diagnostics)
            merged.merge(fr.types)

        t1 = time.monotonic()
        diagnostics.extend(engine.structural_verdict(merged))
        diagnostics.extend(engine.declaration_checks())
        phase2 = time.monotonic() - t1

        diagnostics.sort(key=Diagnostic.sort_key)
        results.diagnostics = diagnostics
        results.stats = {
            "functions": len(program.functions),
            "skipped": len(results.skipped_functions),
            "deserialized_types": len(merged),
            "phase1_time": phase1,
            "phase2_time": phase2,
            "function_times": {fr.function: fr.elapsed for fr in per_function},
        }
        _log.info("analysed %d function(s): %d diagnostic(s)",
                  len(program.functions), len(diagnostics))
        return results


def analyse(program: ProgramModel,
            config: Optional[AnalysisConfig] = None) -> List[Diagnostic]:
    """Run every enabled rule on *program* and return the sorted diagnostics."""
    return LintRunner(config=config).run(program).diagnostics


__all__ = [
    "FunctionResult",
    "LintRunResults",
    "VerdictEngine",
    "LintRunner",
    "analyse",
]
