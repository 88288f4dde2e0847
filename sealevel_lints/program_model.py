"""
sealevel_lints/program_model.py
═══════════════════════════════

Typed, CFG-bearing model of a sealevel program.

The model is produced by a front end (a compiler plugin, the
:mod:`sealevel_lints.model_builder` API or the textual form read by
:mod:`sealevel_lints.model_loader`) and consumed read-only by every
analysis in this package.  Everything is arena-allocated: types live in
``ProgramModel.types`` and are referenced by index, expressions live in
``FunctionModel.exprs`` and are referenced by index, basic blocks live in
``FunctionModel.blocks`` and reference their successors by index.

Layout
──────

    ProgramModel
      ├── types:     [TypeDescriptor]      (type id = index)
      └── functions: [FunctionModel]
                       ├── params / locals
                       ├── exprs:  [Expr]       (expr id = index)
                       └── blocks: [BasicBlock] (block id = index)
                                      └── statements: [Statement]

License: MIT — same as sealevel-lints.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterator, List, Optional, Tuple

from sealevel_lints.errors import ModelError


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — LOCATIONS AND FACTS
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SourceLocation:
    """Immutable source-code location."""
    file: str = ""
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        if self.column:
            return f"{self.file}:{self.line}:{self.column}"
        return f"{self.file}:{self.line}"

    def sort_key(self) -> Tuple[str, int, int]:
        return (self.file, self.line, self.column)


NO_LOCATION = SourceLocation()

# Attribute facts a front end may attach to a type descriptor.
FACT_VALIDATES_OWNER = "validates-owner"
FACT_VALIDATES_PROGRAM_ID = "validates-program-id"
FACT_SIGNER = "signer"
FACT_DISCRIMINANT = "discriminant"
FACT_ACCOUNTS_STRUCT = "accounts-struct"

KNOWN_FACTS: FrozenSet[str] = frozenset({
    FACT_VALIDATES_OWNER,
    FACT_VALIDATES_PROGRAM_ID,
    FACT_SIGNER,
    FACT_DISCRIMINANT,
    FACT_ACCOUNTS_STRUCT,
})


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — TYPE DESCRIPTORS
# ═════════════════════════════════════════════════════════════════════════

class TypeKind(Enum):
    STRUCT = "struct"
    ENUM = "enum"
    ARRAY = "array"
    PRIMITIVE = "primitive"
    OPAQUE = "opaque"


@dataclass(frozen=True)
class FieldDef:
    """One field of a struct.

    ``constraints`` holds the declaration-time constraints an Anchor
    ``#[account(...)]`` attribute puts on the field (``mut``, ``signer``,
    ``owner``, ``seeds``, ...).  ``distinct_from`` names sibling fields the
    declaration requires to have a different key.
    """
    name: str
    type_id: Optional[int] = None
    constraints: FrozenSet[str] = frozenset()
    distinct_from: FrozenSet[str] = frozenset()
    location: SourceLocation = NO_LOCATION


@dataclass(frozen=True)
class TypeDescriptor:
    id: int
    path: str
    kind: TypeKind = TypeKind.OPAQUE
    fields: Tuple[FieldDef, ...] = ()
    variant_count: int = 0
    traits: FrozenSet[str] = frozenset()
    attributes: FrozenSet[str] = frozenset()
    generic_args: Tuple[int, ...] = ()
    length: Optional[int] = None
    location: SourceLocation = NO_LOCATION

    @property
    def name(self) -> str:
        """Last path segment, without generic arguments."""
        return self.path.rsplit("::", 1)[-1]

    def field_named(self, name: str) -> Optional[FieldDef]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    @property
    def is_struct(self) -> bool:
        return self.kind is TypeKind.STRUCT

    @property
    def is_enum(self) -> bool:
        return self.kind is TypeKind.ENUM


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — EXPRESSIONS AND STATEMENTS
# ═════════════════════════════════════════════════════════════════════════

class ExprKind(Enum):
    LOCAL = "local"            # a named local or parameter
    FIELD = "field"            # receiver.name
    DEREF = "deref"            # *operand
    INDEX = "index"            # receiver[operand]
    REF = "ref"                # &operand / &mut operand
    CALL = "call"              # name(operands...), receiver set for methods
    COMPARE = "compare"        # operands[0] <name> operands[1]
    LITERAL = "literal"
    CONSTRUCT = "construct"    # Type { field_names[i]: operands[i], ... }


COMPARISON_OPS: FrozenSet[str] = frozenset({"==", "!=", "<", "<=", ">", ">="})


@dataclass(frozen=True)
class Expr:
    """One node of a function's expression arena.

    Field use by kind:

    =========  ==========================================================
    LOCAL      ``local``
    FIELD      ``receiver``, ``name`` (field name)
    DEREF      ``receiver``
    INDEX      ``receiver``, ``operands[0]`` (index expression, optional)
    REF        ``receiver``, ``mutable``
    CALL       ``name`` (callee path or method name), ``operands``,
               ``receiver`` (method calls only)
    COMPARE    ``name`` (operator), ``operands`` (lhs, rhs)
    LITERAL    ``value``
    CONSTRUCT  ``type_id``, ``field_names``, ``operands``
    =========  ==========================================================
    """
    id: int
    kind: ExprKind
    type_id: Optional[int] = None
    location: SourceLocation = NO_LOCATION
    local: Optional[str] = None
    name: Optional[str] = None
    operands: Tuple[int, ...] = ()
    receiver: Optional[int] = None
    value: object = None
    field_names: Tuple[str, ...] = ()
    mutable: bool = False

    @property
    def is_method_call(self) -> bool:
        return self.kind is ExprKind.CALL and self.receiver is not None

    def children(self) -> Tuple[int, ...]:
        if self.receiver is None:
            return self.operands
        return (self.receiver,) + self.operands


class StmtKind(Enum):
    ASSIGN = "assign"
    EVAL = "eval"


@dataclass(frozen=True)
class Statement:
    kind: StmtKind
    value: int
    target: Optional[int] = None
    location: SourceLocation = NO_LOCATION


@dataclass(frozen=True)
class BasicBlock:
    id: int
    statements: Tuple[Statement, ...] = ()
    successors: Tuple[int, ...] = ()


# ═════════════════════════════════════════════════════════════════════════
#  PART 4 — FUNCTIONS AND PROGRAMS
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Param:
    name: str
    type_id: Optional[int] = None
    location: SourceLocation = NO_LOCATION


@dataclass(frozen=True)
class LocalVar:
    name: str
    type_id: Optional[int] = None


@dataclass(frozen=True)
class FunctionModel:
    """One function: its signature, expression arena and CFG.

    ``modeled`` is False when the front end could not lower the body;
    such functions are skipped by the verdict engine.
    """
    name: str
    location: SourceLocation = NO_LOCATION
    params: Tuple[Param, ...] = ()
    locals: Tuple[LocalVar, ...] = ()
    exprs: Tuple[Expr, ...] = ()
    blocks: Tuple[BasicBlock, ...] = ()
    entry: int = 0
    modeled: bool = True

    def expr(self, expr_id: int) -> Expr:
        try:
            return self.exprs[expr_id]
        except IndexError:
            raise ModelError(
                f"{self.name}: expression id {expr_id} out of range"
            ) from None

    def block(self, block_id: int) -> BasicBlock:
        try:
            return self.blocks[block_id]
        except IndexError:
            raise ModelError(
                f"{self.name}: block id {block_id} out of range"
            ) from None

    def local_type(self, name: str) -> Optional[int]:
        for p in self.params:
            if p.name == name:
                return p.type_id
        for lv in self.locals:
            if lv.name == name:
                return lv.type_id
        return None

    def walk(self, expr_id: int) -> Iterator[Expr]:
        """Pre-order walk of the expression tree rooted at *expr_id*."""
        stack = [expr_id]
        while stack:
            e = self.expr(stack.pop())
            yield e
            stack.extend(reversed(e.children()))

    def statement_roots(self) -> Iterator[Tuple[int, Statement]]:
        """Yield ``(block_id, statement)`` in block order."""
        for b in self.blocks:
            for stmt in b.statements:
                yield b.id, stmt

    def _check_expr_id(self, expr_id: int, limit: int, where: str) -> None:
        if not 0 <= expr_id < limit:
            raise ModelError(f"{self.name}: {where} refers to expression {expr_id}")

    def validate(self) -> None:
        """Raise :class:`ModelError` if the arena is malformed.

        Ids must equal arena positions, every reference must be in range and
        an expression's children must be allocated before it, which rules
        out cycles in the expression tree.
        """
        n_blocks = len(self.blocks)
        n_exprs = len(self.exprs)
        if self.blocks and not 0 <= self.entry < n_blocks:
            raise ModelError(f"{self.name}: entry block {self.entry} missing")
        for index, b in enumerate(self.blocks):
            if b.id != index:
                raise ModelError(f"{self.name}: block at {index} has id {b.id}")
            for s in b.successors:
                if not 0 <= s < n_blocks:
                    raise ModelError(
                        f"{self.name}: block {b.id} has dangling successor {s}"
                    )
            for stmt in b.statements:
                self._check_expr_id(stmt.value, n_exprs, f"block {b.id}")
                if stmt.target is not None:
                    self._check_expr_id(stmt.target, n_exprs, f"block {b.id}")
        for index, e in enumerate(self.exprs):
            if e.id != index:
                raise ModelError(f"{self.name}: expression at {index} has id {e.id}")
            for child in e.children():
                self._check_expr_id(child, e.id, f"expression {e.id}")


@dataclass(frozen=True)
class ProgramModel:
    types: Tuple[TypeDescriptor, ...] = ()
    functions: Tuple[FunctionModel, ...] = ()

    def type(self, type_id: Optional[int]) -> Optional[TypeDescriptor]:
        if type_id is None:
            return None
        if not 0 <= type_id < len(self.types):
            raise ModelError(f"type id {type_id} out of range")
        return self.types[type_id]

    def type_by_path(self, path: str) -> Optional[TypeDescriptor]:
        for t in self.types:
            if t.path == path:
                return t
        return None

    def function(self, name: str) -> Optional[FunctionModel]:
        for fn in self.functions:
            if fn.name == name:
                return fn
        return None

    def enums(self) -> List[TypeDescriptor]:
        return [t for t in self.types if t.is_enum]

    def type_index(self) -> Dict[str, TypeDescriptor]:
        return {t.path: t for t in self.types}


__all__ = [
    "SourceLocation",
    "NO_LOCATION",
    "FACT_VALIDATES_OWNER",
    "FACT_VALIDATES_PROGRAM_ID",
    "FACT_SIGNER",
    "FACT_DISCRIMINANT",
    "FACT_ACCOUNTS_STRUCT",
    "KNOWN_FACTS",
    "TypeKind",
    "FieldDef",
    "TypeDescriptor",
    "ExprKind",
    "COMPARISON_OPS",
    "Expr",
    "StmtKind",
    "Statement",
    "BasicBlock",
    "Param",
    "LocalVar",
    "FunctionModel",
    "ProgramModel",
]
