"""
sealevel_lints/guards.py
════════════════════════

Guard detection: the facts that establish a safety check.

A :class:`Guard` records *where* a check happens (its block, for dominance
queries) and *what* it checks (the canonical access paths it covers).
Declaration-time guards (Anchor ``#[account(...)]`` constraints, typed
signer accounts) hold for the whole body and are placed at the entry
block.

Coverage rule: a guard covers a sink iff every path the sink needs checked
is among the guard's paths.  A sink that needs no particular path is
covered by any guard of its category.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Set

from sealevel_lints.alias_analysis import AccessPath
from sealevel_lints.facts import FunctionFacts
from sealevel_lints.program_model import (
    FACT_SIGNER,
    Expr,
    ExprKind,
    FieldDef,
    NO_LOCATION,
    SourceLocation,
    StmtKind,
    TypeDescriptor,
)
from sealevel_lints.rules import (
    Category,
    GuardKind,
    GuardPattern,
    RuleDescriptor,
    matches_any,
    struct_behind,
    type_has_fact,
)

_log = logging.getLogger(__name__)

_EQ_METHODS = frozenset({"eq", "ne"})


def _declared_location(fdef: FieldDef, e: Expr) -> SourceLocation:
    return e.location if fdef.location == NO_LOCATION else fdef.location


@dataclass(frozen=True)
class Guard:
    category: Category
    kind: GuardKind
    block: int
    paths: FrozenSet[AccessPath]
    location: SourceLocation = NO_LOCATION

    def covers(self, sink_paths: FrozenSet[AccessPath]) -> bool:
        return sink_paths <= self.paths


class GuardDetector:
    """Find the guards of one rule in one function."""

    def __init__(self, facts: FunctionFacts):
        self.facts = facts
        self.fn = facts.fn
        self._handlers: Dict[GuardKind, Callable[[GuardPattern], Iterable[Guard]]] = {
            GuardKind.FIELD_READ: self._field_reads,
            GuardKind.COMPARISON: self._comparisons,
            GuardKind.SIGNER_MARKER: self._signer_markers,
            GuardKind.DECLARED_CONSTRAINT: self._declared_constraints,
            GuardKind.DISTINCT_CONSTRAINT: self._distinct_constraints,
            GuardKind.DATA_CLEAR: self._data_clears,
        }
        self._category = Category.MISSING_OWNER_CHECK

    def detect(self, rule: RuleDescriptor) -> List[Guard]:
        self._category = rule.category
        guards: List[Guard] = []
        for pattern in rule.guards:
            guards.extend(self._handlers[pattern.kind](pattern))
        _log.debug("%s: %d %s guards", self.fn.name, len(guards), rule.name)
        return guards

    def _guard(self, pattern: GuardPattern, block: int,
               paths: Iterable[Optional[AccessPath]],
               location: SourceLocation) -> Guard:
        return Guard(
            category=self._category,
            kind=pattern.kind,
            block=block,
            paths=frozenset(p for p in paths if p is not None),
            location=location,
        )

    # ---- FIELD_READ ----------------------------------------------------

    def _field_reads(self, pattern: GuardPattern) -> Iterable[Guard]:
        for block, e in self.facts.located_exprs():
            if e.kind is ExprKind.FIELD and e.name in pattern.names:
                yield self._guard(pattern, block,
                                  [self.facts.path_of(e.receiver)], e.location)

    # ---- COMPARISON ----------------------------------------------------

    def _comparison_operands(self, e: Expr, pattern: GuardPattern) -> List[int]:
        if e.kind is ExprKind.COMPARE and e.name in pattern.ops:
            return list(e.operands)
        if e.kind is not ExprKind.CALL:
            return []
        if e.is_method_call and e.name in _EQ_METHODS:
            return list(e.children())
        if not e.is_method_call and matches_any(pattern.calls, e.name):
            return list(e.operands)
        return []

    def _comparisons(self, pattern: GuardPattern) -> Iterable[Guard]:
        for block, e in self.facts.located_exprs():
            operands = self._comparison_operands(e, pattern)
            if not operands:
                continue
            paths: Set[AccessPath] = set()
            for op in operands:
                p = self.facts.path_of(op)
                if p is None:
                    continue
                paths.add(p)
                if p.last in pattern.strip and p.parent() is not None:
                    paths.add(p.parent())
            yield self._guard(pattern, block, paths, e.location)

    # ---- SIGNER_MARKER -------------------------------------------------

    def _accounts_of(self, type_id: Optional[int]) -> Optional[TypeDescriptor]:
        """The accounts struct of a ``Context<'_, '_, '_, 'info, T>`` parameter."""
        program = self.facts.program
        t = program.type(type_id)
        if t is None:
            return None
        accounts = t.field_named("accounts")
        candidates = ([accounts.type_id] if accounts is not None else [])
        candidates.extend(t.generic_args)
        for candidate in candidates:
            found = struct_behind(program, candidate)
            if found is not None:
                return found
        return None

    def _signer_markers(self, pattern: GuardPattern) -> Iterable[Guard]:
        program = self.facts.program
        for param in self.fn.params:
            ptype = program.type(param.type_id)
            if type_has_fact(ptype, FACT_SIGNER):
                yield self._guard(pattern, self.fn.entry,
                                  [AccessPath(param.name)], param.location)
                continue
            accounts = self._accounts_of(param.type_id)
            if accounts is None:
                continue
            for fdef in accounts.fields:
                if (fdef.constraints & pattern.names
                        or type_has_fact(program.type(fdef.type_id), FACT_SIGNER)):
                    path = AccessPath(param.name, ("accounts", fdef.name))
                    yield self._guard(pattern, self.fn.entry, [path],
                                      fdef.location)

    # ---- DECLARED_CONSTRAINT / DISTINCT_CONSTRAINT ---------------------

    def _declared_field(self, e: Expr) -> Optional[FieldDef]:
        if e.kind is not ExprKind.FIELD or e.receiver is None:
            return None
        owner = struct_behind(self.facts.program, self.fn.expr(e.receiver).type_id)
        if owner is None:
            return None
        return owner.field_named(e.name or "")

    def _declared_constraints(self, pattern: GuardPattern) -> Iterable[Guard]:
        for _block, e in self.facts.located_exprs():
            fdef = self._declared_field(e)
            if fdef is not None and fdef.constraints & pattern.names:
                yield self._guard(pattern, self.fn.entry,
                                  [self.facts.path_of(e.id)],
                                  _declared_location(fdef, e))

    def _distinct_constraints(self, pattern: GuardPattern) -> Iterable[Guard]:
        for _block, e in self.facts.located_exprs():
            fdef = self._declared_field(e)
            if fdef is None or not fdef.distinct_from:
                continue
            path = self.facts.path_of(e.id)
            parent = path.parent() if path is not None else None
            if parent is None:
                continue
            others = [parent.extend(name) for name in sorted(fdef.distinct_from)]
            yield self._guard(pattern, self.fn.entry, [path] + others,
                              _declared_location(fdef, e))

    # ---- DATA_CLEAR ----------------------------------------------------

    def _account_of(self, path: Optional[AccessPath],
                    names: FrozenSet[str]) -> Optional[AccessPath]:
        """``acct`` for ``acct.data.[]``: the prefix before the data projection."""
        if path is None:
            return None
        for i, proj in enumerate(path.projections):
            if proj in names:
                return AccessPath(path.root, path.projections[:i])
        return None

    def _data_clears(self, pattern: GuardPattern) -> Iterable[Guard]:
        loops = self.facts.loop_blocks
        for block, stmt in self.facts.statements():
            if (stmt.kind is StmtKind.ASSIGN and stmt.target is not None
                    and block in loops and self.facts.is_zero_literal(stmt.value)):
                acct = self._account_of(self.facts.path_of(stmt.target), pattern.names)
                if acct is not None:
                    yield self._guard(pattern, block, [acct], stmt.location)
        for block, e in self.facts.located_exprs():
            if e.kind is not ExprKind.CALL or not matches_any(pattern.calls, e.name):
                continue
            target = e.receiver if e.is_method_call else (
                e.operands[0] if e.operands else None)
            acct = self._account_of(self.facts.path_of(target), pattern.names)
            if acct is not None:
                yield self._guard(pattern, block, [acct], e.location)


__all__ = ["Guard", "GuardDetector"]
