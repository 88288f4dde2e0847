"""
sealevel_lints/model_builder.py
═══════════════════════════════

Incremental construction of a :class:`~sealevel_lints.program_model.ProgramModel`.

Front ends (and the test-suite) describe a program statement by statement;
the builder allocates arena ids, fills in the types of projections it can
infer, and validates the finished functions.

Example
───────

    pb = ProgramBuilder()
    info = pb.opaque("solana_program::account_info::AccountInfo")
    fb = pb.function("process", file="lib.rs")
    fb.param("acct", info)
    fb.at(10).eval(fb.method(fb.var("acct"), "try_borrow_data"))
    program = pb.add(fb).build()

License: MIT — same as sealevel-lints.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from sealevel_lints.errors import ModelError
from sealevel_lints.program_model import (
    BasicBlock,
    Expr,
    ExprKind,
    FieldDef,
    FunctionModel,
    LocalVar,
    NO_LOCATION,
    Param,
    ProgramModel,
    SourceLocation,
    Statement,
    StmtKind,
    TypeDescriptor,
    TypeKind,
)

_log = logging.getLogger(__name__)

ACCOUNT_INFO_PATH = "solana_program::account_info::AccountInfo"

# Methods whose result has the receiver's type.
_SAME_TYPE_METHODS = frozenset({
    "clone", "borrow", "borrow_mut", "as_ref", "as_mut", "deref",
    "deref_mut", "to_owned", "try_borrow", "try_borrow_mut",
})
_UNWRAP_METHODS = frozenset({"unwrap", "expect", "unwrap_or_default"})
_WRAPPER_NAMES = frozenset({"Result", "Option", "Box", "Rc", "RefCell", "Ref", "RefMut"})

FieldSpec = Union[FieldDef, Tuple[Any, ...]]


def _as_field(spec: FieldSpec) -> FieldDef:
    """Accept a FieldDef or a ``(name, type_id[, constraints[, distinct]])`` tuple."""
    if isinstance(spec, FieldDef):
        return spec
    name, type_id, *rest = spec
    constraints = frozenset(rest[0]) if rest else frozenset()
    distinct = frozenset(rest[1]) if len(rest) > 1 else frozenset()
    return FieldDef(name=name, type_id=type_id, constraints=constraints,
                    distinct_from=distinct)


# ═════════════════════════════════════════════════════════════════════════
#  PROGRAM BUILDER
# ═════════════════════════════════════════════════════════════════════════

class ProgramBuilder:
    """Allocates type ids and collects finished functions."""

    def __init__(self) -> None:
        self._types: List[TypeDescriptor] = []
        self._by_path: Dict[str, int] = {}
        self._functions: List[FunctionModel] = []

    # ---- types ---------------------------------------------------------

    def add_type(
        self,
        path: str,
        kind: TypeKind = TypeKind.OPAQUE,
        fields: Sequence[FieldSpec] = (),
        variant_count: int = 0,
        traits: Iterable[str] = (),
        attributes: Iterable[str] = (),
        generic_args: Sequence[int] = (),
        length: Optional[int] = None,
        location: SourceLocation = NO_LOCATION,
    ) -> int:
        tid = len(self._types)
        self._types.append(TypeDescriptor(
            id=tid,
            path=path,
            kind=kind,
            fields=tuple(_as_field(f) for f in fields),
            variant_count=variant_count,
            traits=frozenset(traits),
            attributes=frozenset(attributes),
            generic_args=tuple(generic_args),
            length=length,
            location=location,
        ))
        # Generic instantiations share a path; the first one wins lookups.
        self._by_path.setdefault(path, tid)
        return tid

    def struct(self, path: str, fields: Sequence[FieldSpec] = (), **kw: Any) -> int:
        return self.add_type(path, TypeKind.STRUCT, fields=fields, **kw)

    def enum(self, path: str, variant_count: int, **kw: Any) -> int:
        return self.add_type(path, TypeKind.ENUM, variant_count=variant_count, **kw)

    def opaque(self, path: str, *generic_args: int, **kw: Any) -> int:
        return self.add_type(path, TypeKind.OPAQUE, generic_args=generic_args, **kw)

    def primitive(self, path: str) -> int:
        return self.type_id(path) if path in self._by_path else \
            self.add_type(path, TypeKind.PRIMITIVE)

    def array(self, element: int, length: Optional[int] = None) -> int:
        elem = self._types[element]
        suffix = f"; {length}" if length is not None else ""
        return self.add_type(f"[{elem.path}{suffix}]", TypeKind.ARRAY,
                             generic_args=(element,), length=length)

    def type_id(self, path: str) -> Optional[int]:
        return self._by_path.get(path)

    def type(self, type_id: int) -> TypeDescriptor:
        try:
            return self._types[type_id]
        except IndexError:
            raise ModelError(f"type id {type_id} out of range") from None

    # ---- type inference helpers ---------------------------------------

    def field_type(self, type_id: Optional[int], name: str) -> Optional[int]:
        """Type of ``base.name`` where base has *type_id*.

        Looks through wrapper types (``Account<T>``, ``Box<T>``, ...) by
        trying their generic arguments, last first.
        """
        seen = set()
        work = [type_id]
        while work:
            tid = work.pop()
            if tid is None or tid in seen or not 0 <= tid < len(self._types):
                continue
            seen.add(tid)
            t = self._types[tid]
            fdef = t.field_named(name)
            if fdef is not None:
                return fdef.type_id
            work.extend(t.generic_args)
        return None

    def method_type(self, receiver_type: Optional[int], method: str) -> Optional[int]:
        if method in _SAME_TYPE_METHODS:
            return receiver_type
        if method == "to_account_info":
            return self.type_id(ACCOUNT_INFO_PATH)
        if method in _UNWRAP_METHODS and receiver_type is not None:
            t = self._types[receiver_type]
            if t.name in _WRAPPER_NAMES and t.generic_args:
                return t.generic_args[0]
            return receiver_type
        return None

    def element_type(self, type_id: Optional[int]) -> Optional[int]:
        if type_id is None:
            return None
        t = self._types[type_id]
        if t.kind is TypeKind.ARRAY and t.generic_args:
            return t.generic_args[0]
        return None

    # ---- functions -----------------------------------------------------

    def function(self, name: str, file: str = "", line: int = 0) -> "FunctionBuilder":
        return FunctionBuilder(self, name, SourceLocation(file, line))

    def add(self, fn: Union["FunctionBuilder", FunctionModel]) -> "ProgramBuilder":
        model = fn.build() if isinstance(fn, FunctionBuilder) else fn
        self._functions.append(model)
        return self

    def build(self) -> ProgramModel:
        _log.debug("built program model: %d types, %d functions",
                   len(self._types), len(self._functions))
        return ProgramModel(types=tuple(self._types),
                            functions=tuple(self._functions))


# ═════════════════════════════════════════════════════════════════════════
#  FUNCTION BUILDER
# ═════════════════════════════════════════════════════════════════════════

class FunctionBuilder:
    """Builds one function's expression arena and CFG.

    The builder starts with block 0 current.  ``block()`` opens a new block
    and makes it current; ``goto()`` switches back to an existing one.
    ``at()`` sets the source line that subsequently created expressions and
    statements carry.
    """

    def __init__(self, program: ProgramBuilder, name: str,
                 location: SourceLocation = NO_LOCATION) -> None:
        self.program = program
        self.name = name
        self.location = location
        self.modeled = True
        self._params: List[Param] = []
        self._locals: List[LocalVar] = []
        self._exprs: List[Expr] = []
        self._stmts: List[List[Statement]] = [[]]
        self._succ: List[List[int]] = [[]]
        self._current = 0
        self._loc = location

    # ---- declarations --------------------------------------------------

    def param(self, name: str, type_id: Optional[int] = None) -> "FunctionBuilder":
        self._params.append(Param(name, type_id, self._loc))
        return self

    def local(self, name: str, type_id: Optional[int] = None) -> "FunctionBuilder":
        if self._declared_type(name, missing=True) is _MISSING:
            self._locals.append(LocalVar(name, type_id))
        return self

    def _declared_type(self, name: str, missing: bool = False) -> Any:
        for p in self._params:
            if p.name == name:
                return p.type_id
        for lv in self._locals:
            if lv.name == name:
                return lv.type_id
        return _MISSING if missing else None

    # ---- location --------------------------------------------------------

    def at(self, line: int, column: int = 0) -> "FunctionBuilder":
        self._loc = SourceLocation(self.location.file, line, column)
        return self

    # ---- expressions ---------------------------------------------------

    def _new(self, kind: ExprKind, **kw: Any) -> int:
        eid = len(self._exprs)
        kw.setdefault("location", self._loc)
        self._exprs.append(Expr(id=eid, kind=kind, **kw))
        return eid

    def type_of(self, expr_id: int) -> Optional[int]:
        return self._exprs[expr_id].type_id

    def var(self, name: str) -> int:
        return self._new(ExprKind.LOCAL, local=name,
                         type_id=self._declared_type(name))

    def field(self, base: int, name: str, type_id: Optional[int] = None) -> int:
        if type_id is None:
            type_id = self.program.field_type(self.type_of(base), name)
        return self._new(ExprKind.FIELD, receiver=base, name=name, type_id=type_id)

    def deref(self, base: int) -> int:
        return self._new(ExprKind.DEREF, receiver=base, type_id=self.type_of(base))

    def index(self, base: int, idx: Optional[int] = None) -> int:
        operands = () if idx is None else (idx,)
        return self._new(ExprKind.INDEX, receiver=base, operands=operands,
                         type_id=self.program.element_type(self.type_of(base)))

    def ref(self, base: int, mutable: bool = False) -> int:
        return self._new(ExprKind.REF, receiver=base, mutable=mutable,
                         type_id=self.type_of(base))

    def call(self, path: str, *args: int, type_id: Optional[int] = None) -> int:
        return self._new(ExprKind.CALL, name=path, operands=tuple(args),
                         type_id=type_id)

    def method(self, receiver: int, name: str, *args: int,
               type_id: Optional[int] = None) -> int:
        if type_id is None:
            type_id = self.program.method_type(self.type_of(receiver), name)
        return self._new(ExprKind.CALL, name=name, receiver=receiver,
                         operands=tuple(args), type_id=type_id)

    def compare(self, op: str, lhs: int, rhs: int) -> int:
        return self._new(ExprKind.COMPARE, name=op, operands=(lhs, rhs))

    def literal(self, value: object, type_id: Optional[int] = None) -> int:
        return self._new(ExprKind.LITERAL, value=value, type_id=type_id)

    def construct(self, type_id: Optional[int], **fields: int) -> int:
        return self._new(ExprKind.CONSTRUCT, type_id=type_id,
                         field_names=tuple(fields), operands=tuple(fields.values()))

    def array_literal(self, *elements: int, type_id: Optional[int] = None) -> int:
        """``[a, b, c]``: a constructor whose fields are the positions."""
        return self._new(ExprKind.CONSTRUCT, type_id=type_id,
                         field_names=tuple(str(i) for i in range(len(elements))),
                         operands=tuple(elements))

    # ---- statements ----------------------------------------------------

    def assign(self, target: Union[str, int], value: int) -> "FunctionBuilder":
        if isinstance(target, str):
            target = self.var(target)
        self._stmts[self._current].append(
            Statement(StmtKind.ASSIGN, value=value, target=target, location=self._loc))
        return self

    def let(self, name: str, value: int, type_id: Optional[int] = None) -> "FunctionBuilder":
        """Declare *name* (typed like *value* unless given) and assign it."""
        self.local(name, type_id if type_id is not None else self.type_of(value))
        return self.assign(name, value)

    def eval(self, value: int) -> "FunctionBuilder":
        self._stmts[self._current].append(
            Statement(StmtKind.EVAL, value=value, location=self._loc))
        return self

    # ---- control flow --------------------------------------------------

    @property
    def current(self) -> int:
        return self._current

    def block(self) -> int:
        self._stmts.append([])
        self._succ.append([])
        self._current = len(self._stmts) - 1
        return self._current

    def goto(self, block_id: int) -> "FunctionBuilder":
        if not 0 <= block_id < len(self._stmts):
            raise ModelError(f"{self.name}: no block {block_id}")
        self._current = block_id
        return self

    def edge(self, src: int, dst: int) -> "FunctionBuilder":
        if dst not in self._succ[src]:
            self._succ[src].append(dst)
        return self

    def edges(self, *pairs: Tuple[int, int]) -> "FunctionBuilder":
        for src, dst in pairs:
            self.edge(src, dst)
        return self

    def build(self) -> FunctionModel:
        fn = FunctionModel(
            name=self.name,
            location=self.location,
            params=tuple(self._params),
            locals=tuple(self._locals),
            exprs=tuple(self._exprs),
            blocks=tuple(
                BasicBlock(id=i, statements=tuple(s), successors=tuple(self._succ[i]))
                for i, s in enumerate(self._stmts)
            ),
            modeled=self.modeled,
        )
        fn.validate()
        return fn


_MISSING = object()


__all__ = ["ProgramBuilder", "FunctionBuilder", "ACCOUNT_INFO_PATH"]
