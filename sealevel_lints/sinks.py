"""
sealevel_lints/sinks.py
═══════════════════════

Sink classification: the operations that need a guard.

The classifier interprets a rule's :class:`~sealevel_lints.rules.SinkPattern`
variants over one function and returns the sinks that survive the rule's
exemptions.  Each sink carries the canonical access paths a guard must
cover, the block it executes in, and the fields its diagnostic message is
formatted with.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from itertools import combinations
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from sealevel_lints.alias_analysis import SAFE_CONVERSIONS, AccessPath
from sealevel_lints.facts import FunctionFacts
from sealevel_lints.program_model import (
    Expr,
    ExprKind,
    NO_LOCATION,
    SourceLocation,
    StmtKind,
    TypeKind,
)
from sealevel_lints.rules import (
    ANCHOR_ACCOUNT,
    ANCHOR_ACCOUNT_DESERIALIZE,
    ANCHOR_ACCOUNT_LOADER,
    Category,
    ExemptionKind,
    ExemptionPattern,
    RuleDescriptor,
    SinkKind,
    SinkPattern,
    associated_call_matches,
    call_qualifier,
    inner_type,
    matches_any,
    struct_behind,
    type_has_fact,
    type_has_trait,
    unwrap_type,
)

_log = logging.getLogger(__name__)

BUMP_FROM_ANCHOR_ACCOUNT = (
    "Bump seed comes from anchor Account, use anchor's "
    "#[account(seed=..., bump=...)] macro instead"
)
BUMP_FROM_STRUCT = (
    "Bump seed comes from structure, ensure it is constrained to a single "
    "value and not user-controlled."
)

CLOSED_ACCOUNT_DISCRIMINATOR_LEN = 8


@dataclass(frozen=True)
class Sink:
    """
    One operation that needs a guard.

    ``unconditional`` sinks are reported whatever guards exist (a bump seed
    read from a struct field, for instance); ``message`` then overrides the
    rule's message template.
    """
    category: Category
    block: int
    paths: FrozenSet[AccessPath] = frozenset()
    location: SourceLocation = NO_LOCATION
    expr: Optional[int] = None
    type_id: Optional[int] = None
    details: Tuple[Tuple[str, str], ...] = ()
    secondary: Tuple[SourceLocation, ...] = ()
    message: str = ""
    unconditional: bool = False

    def format_fields(self) -> Dict[str, str]:
        fields = {"path": ", ".join(sorted(str(p) for p in self.paths))}
        fields.update(self.details)
        return fields


def _details(**kw: object) -> Tuple[Tuple[str, str], ...]:
    return tuple((k, str(v)) for k, v in kw.items())


class SinkClassifier:
    """Find the unexempted sinks of one rule in one function."""

    def __init__(self, facts: FunctionFacts):
        self.facts = facts
        self.fn = facts.fn
        self.program = facts.program
        self._handlers: Dict[SinkKind, Callable[[SinkPattern], Iterable[Sink]]] = {
            SinkKind.CALL: self._calls,
            SinkKind.CALL_ARG: self._call_args,
            SinkKind.CONSTRUCT_FIELD: self._construct_fields,
            SinkKind.TYPED_USE: self._typed_uses,
            SinkKind.ZERO_ASSIGN: self._zero_assigns,
            SinkKind.CONTEXT_FUNCTION: self._context_functions,
            SinkKind.MUTABLE_BORROW_PAIR: self._mutable_borrow_pairs,
            SinkKind.TYPED_CALL: self._typed_calls,
            SinkKind.SEED_BUMP: self._seed_bumps,
            SinkKind.DESERIALIZE: self._deserializations,
        }
        self._category = Category.MISSING_OWNER_CHECK

    def classify(self, rule: RuleDescriptor) -> List[Sink]:
        self._category = rule.category
        if self._function_exempt(rule.exemptions):
            _log.debug("%s: %s exempt for the whole function", self.fn.name, rule.name)
            return []
        sinks: List[Sink] = []
        for pattern in rule.sinks:
            for sink in self._handlers[pattern.kind](pattern):
                if sink.expr is not None and self._expr_exempt(sink.expr, rule.exemptions):
                    continue
                sinks.append(sink)
        _log.debug("%s: %d %s sinks", self.fn.name, len(sinks), rule.name)
        return sinks

    def _sink(self, block: int, paths: Iterable[Optional[AccessPath]] = (),
              **kw: object) -> Sink:
        return Sink(
            category=self._category,
            block=block,
            paths=frozenset(p for p in paths if p is not None),
            **kw,  # type: ignore[arg-type]
        )

    def _calls_to(self, targets: Tuple[str, ...], methods: bool = True):
        for block, e in self.facts.located_exprs():
            if e.kind is not ExprKind.CALL:
                continue
            if e.is_method_call and not methods:
                continue
            if matches_any(targets, e.name):
                yield block, e

    # ---- exemptions ----------------------------------------------------

    def _expr_exempt(self, expr_id: int,
                     exemptions: Tuple[ExemptionPattern, ...]) -> bool:
        for ex in exemptions:
            if ex.kind is not ExemptionKind.WRAPPER_CONVERSION:
                continue
            for origin in self.facts.aliases.origin_chain(expr_id):
                e = self.fn.expr(origin)
                if (e.is_method_call and e.name == "to_account_info"
                        and type_has_fact(self.facts.type_of(e.receiver), ex.fact)):
                    return True
                if type_has_fact(self.facts.type_of(origin), ex.fact):
                    return True
        return False

    def _function_exempt(self, exemptions: Tuple[ExemptionPattern, ...]) -> bool:
        return any(
            ex.kind is ExemptionKind.CLOSED_ACCOUNT_DISCRIMINATOR
            and self._writes_closed_discriminator()
            for ex in exemptions
        )

    def _writes_closed_discriminator(self) -> bool:
        """``data[0..8].copy_from_slice(&CLOSED)`` plus an 8-byte comparison."""
        copies = compares = False
        for _block, e in self.facts.located_exprs():
            if e.is_method_call and e.name == "copy_from_slice":
                path = self.facts.path_of(e.receiver)
                copies = copies or (path is not None and "data" in path.projections)
            elif e.kind is ExprKind.COMPARE and e.name in ("==", "!="):
                compares = compares or any(self._is_discriminator(o) for o in e.operands)
        return copies and compares

    def _is_discriminator(self, expr_id: int) -> bool:
        t = self.facts.type_of(expr_id)
        if t is not None and t.kind is TypeKind.ARRAY:
            return t.length == CLOSED_ACCOUNT_DISCRIMINATOR_LEN
        e = self.fn.expr(expr_id)
        return (e.kind is ExprKind.LITERAL
                and isinstance(e.value, (bytes, list, tuple))
                and len(e.value) == CLOSED_ACCOUNT_DISCRIMINATOR_LEN)

    # ---- CALL / CALL_ARG / CONSTRUCT_FIELD ------------------------------

    def _calls(self, pattern: SinkPattern) -> Iterable[Sink]:
        for block, e in self._calls_to(pattern.targets):
            yield self._sink(block, location=e.location,
                             details=_details(callee=e.name))

    def _operand_sink(self, block: int, e: Expr, operand: int) -> Sink:
        path = self.facts.path_of(operand)
        return self._sink(block, [path], location=e.location, expr=operand,
                          details=_details(path=path or "the program id"))

    def _call_args(self, pattern: SinkPattern) -> Iterable[Sink]:
        for block, e in self._calls_to(pattern.targets, methods=False):
            if pattern.argument < len(e.operands):
                yield self._operand_sink(block, e, e.operands[pattern.argument])

    def _construct_fields(self, pattern: SinkPattern) -> Iterable[Sink]:
        for block, e in self.facts.located_exprs():
            if e.kind is not ExprKind.CONSTRUCT:
                continue
            t = self.program.type(e.type_id)
            if t is None or not matches_any(pattern.targets, t.path):
                continue
            if pattern.field in e.field_names:
                operand = e.operands[e.field_names.index(pattern.field)]
                yield self._operand_sink(block, e, operand)

    # ---- TYPED_USE -----------------------------------------------------

    def _typed_uses(self, pattern: SinkPattern) -> Iterable[Sink]:
        seen_paths = set()
        for block, e in self.facts.located_exprs():
            if e.kind in (ExprKind.LOCAL, ExprKind.REF, ExprKind.DEREF):
                continue
            t = self.program.type(e.type_id)
            if t is None or not matches_any(pattern.targets, t.path):
                continue
            if e.is_method_call and e.name in SAFE_CONVERSIONS:
                recv = self.facts.type_of(e.receiver)
                if recv is not None and matches_any(pattern.targets, recv.path):
                    continue
            path = self.facts.path_of(e.id)
            key = path if path is not None else e.id
            if key in seen_paths:
                continue
            seen_paths.add(key)
            yield self._sink(block, [path], location=e.location, expr=e.id,
                             details=_details(path=path or "account"))

    # ---- ZERO_ASSIGN ---------------------------------------------------

    def _zero_assigns(self, pattern: SinkPattern) -> Iterable[Sink]:
        for block, stmt in self.facts.statements():
            if stmt.kind is not StmtKind.ASSIGN or stmt.target is None:
                continue
            if not self.facts.is_zero_literal(stmt.value):
                continue
            path = self.facts.path_of(stmt.target)
            if path is None or path.last != pattern.field:
                continue
            account = path.parent()
            yield self._sink(block, [account], location=stmt.location,
                             details=_details(path=account))

    # ---- CONTEXT_FUNCTION ----------------------------------------------

    def _context_functions(self, pattern: SinkPattern) -> Iterable[Sink]:
        for param in self.fn.params:
            t = self.program.type(param.type_id)
            if t is not None and matches_any(pattern.targets, t.path):
                yield self._sink(self.fn.entry, location=self.fn.location,
                                 details=_details(path=param.name))
                return

    # ---- MUTABLE_BORROW_PAIR -------------------------------------------

    def _mutable_borrow_pairs(self, pattern: SinkPattern) -> Iterable[Sink]:
        groups: Dict[int, List[Tuple[int, Expr, AccessPath]]] = {}
        for block, e in self.facts.located_exprs():
            if e.kind is not ExprKind.REF or not e.mutable:
                continue
            t = self.program.type(e.type_id)
            if t is None or not matches_any(pattern.targets, t.path):
                continue
            inner = inner_type(self.program, e.type_id)
            path = self.facts.path_of(e.id)
            if inner is None or path is None:
                continue
            group = groups.setdefault(inner, [])
            if all(p != path for _b, _e, p in group):
                group.append((block, e, path))
        for inner in sorted(groups):
            for (block, a, pa), (_b, b, pb) in combinations(groups[inner], 2):
                yield self._sink(
                    block, [pa, pb],
                    location=a.location,
                    secondary=(b.location,),
                    details=_details(
                        line=a.location.line, other_line=b.location.line,
                        first=pa, second=pb,
                    ),
                )

    # ---- TYPED_CALL ----------------------------------------------------

    def _typed_calls(self, pattern: SinkPattern) -> Iterable[Sink]:
        for block, e in self.facts.located_exprs():
            if e.kind is not ExprKind.CALL or e.is_method_call:
                continue
            if not any(associated_call_matches(t, e.name) for t in pattern.targets):
                continue
            result = self.program.type(unwrap_type(self.program, e.type_id))
            name = result.name if result is not None else call_qualifier(e.name)
            if name in pattern.types:
                yield self._sink(block, location=e.location,
                                 details=_details(sysvar=name))

    # ---- SEED_BUMP -----------------------------------------------------

    def _strip(self, expr_id: int) -> Expr:
        """Last expression of the origin chain: borrows and locals peeled."""
        last = expr_id
        for last in self.facts.aliases.origin_chain(expr_id):
            pass
        return self.fn.expr(last)

    def _bump_of(self, seeds: int) -> Optional[int]:
        """The bump of ``&[seed, .., &[bump]]``, None for any other shape.

        The outer array needs at least two seeds and the last one must be a
        one-element array.
        """
        outer = self._strip(seeds)
        if outer.kind is not ExprKind.CONSTRUCT or len(outer.operands) < 2:
            return None
        inner = self._strip(outer.operands[-1])
        if inner.kind is not ExprKind.CONSTRUCT or len(inner.operands) != 1:
            return None
        return inner.operands[0]

    def _declares_bump(self, expr_id: Optional[int]) -> bool:
        """``ctx.accounts.vault`` where the field carries ``#[account(bump)]``."""
        if expr_id is None:
            return False
        e = self._strip(expr_id)
        if e.kind is not ExprKind.FIELD or e.receiver is None:
            return False
        owner = struct_behind(self.program, self.fn.expr(e.receiver).type_id)
        fdef = owner.field_named(e.name or "") if owner is not None else None
        return fdef is not None and "bump" in fdef.constraints

    def _bump_origin_message(self, bump: int) -> Optional[str]:
        """Origin-specific message, "" for a non-field bump, None when the
        account declaration already constrains the bump."""
        for origin in self.facts.aliases.origin_chain(bump):
            e = self.fn.expr(origin)
            if e.kind is not ExprKind.FIELD or e.receiver is None:
                continue
            if self._declares_bump(e.receiver):
                return None
            recv_type = self.fn.expr(e.receiver).type_id
            owner = struct_behind(self.program, recv_type)
            if owner is None:
                continue
            wrapper = self.program.type(recv_type)
            if (type_has_trait(owner, ANCHOR_ACCOUNT_DESERIALIZE)
                    or (wrapper is not None
                        and matches_any((ANCHOR_ACCOUNT, ANCHOR_ACCOUNT_LOADER),
                                        wrapper.path))):
                return BUMP_FROM_ANCHOR_ACCOUNT
            return BUMP_FROM_STRUCT
        return ""

    def _seed_bumps(self, pattern: SinkPattern) -> Iterable[Sink]:
        for block, e in self._calls_to(pattern.targets, methods=False):
            if not e.operands:
                continue
            bump = self._bump_of(e.operands[0])
            if bump is None:
                continue
            message = self._bump_origin_message(bump)
            if message is None:
                continue
            path = self.facts.path_of(bump)
            yield self._sink(block, [path], location=e.location,
                             message=message, unconditional=bool(message),
                             details=_details(path=path or "bump"))

    # ---- DESERIALIZE ---------------------------------------------------

    def _reads_account_data(self, e: Expr) -> bool:
        for child in e.children():
            path = self.facts.path_of(child)
            if path is not None and "data" in path.projections:
                return True
        return False

    def _deserializations(self, pattern: SinkPattern) -> Iterable[Sink]:
        for block, e in self.facts.located_exprs():
            if e.kind is not ExprKind.CALL:
                continue
            if not any(associated_call_matches(t, e.name) for t in pattern.targets):
                continue
            type_id = unwrap_type(self.program, e.type_id)
            t = self.program.type(type_id)
            if t is None:
                continue
            if pattern.trait and not type_has_trait(t, pattern.trait):
                continue
            if pattern.from_account_data and not self._reads_account_data(e):
                continue
            yield self._sink(block, location=e.location, type_id=type_id,
                             details=_details(type=t.name))


__all__ = [
    "Sink",
    "SinkClassifier",
    "BUMP_FROM_ANCHOR_ACCOUNT",
    "BUMP_FROM_STRUCT",
]
