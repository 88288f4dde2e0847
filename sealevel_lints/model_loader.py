"""
sealevel_lints/model_loader.py
══════════════════════════════

Reader for the textual interchange form of a program model.

A front end that cannot link against this package can write the model as
S-expressions; this module parses them with ``sexpdata`` and replays them
through :class:`~sealevel_lints.model_builder.ProgramBuilder`.

Grammar
───────

    (program TYPE-DECL... FUNCTION...)

    TYPE-DECL := (type NAME KIND OPTION...)
        KIND    := struct | enum | array | primitive | opaque
        OPTION  := (path "full::path")          ; defaults to NAME
                 | (fields FIELD...)
                 | (variants N) | (len N)
                 | (traits PATH...) | (attrs FACT...) | (args TYPE...)
                 | (at "file" LINE [COL])
        FIELD   := (NAME TYPE FIELD-OPT...)
        FIELD-OPT := (constraints NAME...) | (distinct NAME...) | (at LINE [COL])

    FUNCTION := (function NAME (at "file" LINE) FN-OPT... BLOCK...)
        FN-OPT := (params (NAME TYPE)...) | (locals (NAME TYPE)...) | (unmodeled)
        BLOCK  := (block LABEL (succ LABEL...) STMT...)
        STMT   := (let NAME EXPR [TYPE]) | (assign EXPR EXPR) | (eval EXPR)
                | (at LINE [COL] STMT)

    EXPR := NAME                                ; a local or parameter
          | INTEGER                             ; a literal
          | (lit VALUE [TYPE])                  ; VALUE may be a list
          | (field EXPR NAME [TYPE])
          | (deref EXPR) | (ref EXPR) | (ref-mut EXPR)
          | (index EXPR [EXPR])
          | (call PATH EXPR... [(-> TYPE)])
          | (method NAME EXPR EXPR... [(-> TYPE)])
          | (OP EXPR EXPR)                      ; OP in == != < <= > >=
          | (new TYPE (NAME EXPR)...)
          | (array EXPR...)

TYPE names refer to TYPE-DECL names (forward references are fine); ``_``
means "unknown".  Symbols and strings are interchangeable everywhere;
literal values other than integers must be written with ``lit``.

Example::

    (program
      (type AccountInfo opaque (path "solana_program::account_info::AccountInfo"))
      (function close (at "lib.rs" 10)
        (params (acct AccountInfo))
        (block 0 (succ)
          (at 12 (assign (deref (deref (method borrow_mut (field acct lamports))))
                         0)))))
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import sexpdata

from sealevel_lints.errors import ModelLoadError
from sealevel_lints.model_builder import FunctionBuilder, ProgramBuilder
from sealevel_lints.program_model import (
    COMPARISON_OPS,
    FieldDef,
    ProgramModel,
    SourceLocation,
    TypeKind,
)

logger = logging.getLogger(__name__)

_KINDS = {k.value: k for k in TypeKind}
_UNKNOWN_TYPE = "_"


# ===================================================================
#  PART 1 — S-EXPRESSION PARSING LAYER
# ===================================================================

def _normalise(obj: Any) -> Any:
    """Recursively normalise sexpdata output to plain Python types."""
    if isinstance(obj, list):
        return [_normalise(x) for x in obj]
    if isinstance(obj, (bool, int, float)):
        return obj
    # sexpdata.Symbol / String → str
    if hasattr(obj, "value") and callable(getattr(obj, "value", None)):
        return str(obj.value())
    if isinstance(obj, str):
        return str.__str__(obj)
    raise ModelLoadError("unsupported S-expression element", form=obj)


def parse_sexp(text: str) -> Any:
    """Parse one S-expression into nested lists of str / int / float."""
    try:
        parsed = sexpdata.loads(text, nil=None, true=None)
    except Exception as e:
        raise ModelLoadError(f"failed to parse S-expression: {e}") from e
    return _normalise(parsed)


def _head(form: Any) -> Optional[str]:
    if isinstance(form, list) and form and isinstance(form[0], str):
        return form[0]
    return None


def _options(forms: List[Any]) -> Dict[str, List[Any]]:
    """``[(k a b) (j c)]`` → ``{"k": [a, b], "j": [c]}``."""
    out: Dict[str, List[Any]] = {}
    for f in forms:
        head = _head(f)
        if head is None:
            raise ModelLoadError("expected an option form", form=f)
        out[head] = f[1:]
    return out


def _pairs(form: List[Any]) -> List[Tuple[Any, Any]]:
    pairs = []
    for item in form[1:]:
        if not isinstance(item, list) or len(item) != 2:
            raise ModelLoadError(f"{form[0]} entries must be (NAME TYPE)", form=item)
        pairs.append((item[0], item[1]))
    return pairs


def _int_option(opts: Dict[str, List[Any]], key: str,
                default: Optional[int]) -> Optional[int]:
    value = opts[key][0] if opts.get(key) else default
    if value is not None and not isinstance(value, int):
        raise ModelLoadError(f"({key} N) needs an integer, got {value!r}",
                             form=opts[key])
    return value


def _location(args: List[Any], file: str = "") -> SourceLocation:
    if args and isinstance(args[0], str):
        file, args = args[0], args[1:]
    line = args[0] if args else 0
    col = args[1] if len(args) > 1 else 0
    if not isinstance(line, int) or not isinstance(col, int):
        raise ModelLoadError("line and column must be integers", form=args)
    return SourceLocation(file, line, col)


# ===================================================================
#  PART 2 — LOADER
# ===================================================================

class ModelLoader:
    """Replays an interchange document through a :class:`ProgramBuilder`."""

    def __init__(self) -> None:
        self.builder = ProgramBuilder()
        self._type_ids: Dict[str, int] = {}

    # ---- entry points --------------------------------------------------

    def load(self, text: str) -> ProgramModel:
        form = parse_sexp(text)
        if _head(form) != "program":
            raise ModelLoadError("document must be a (program ...) form")
        body = form[1:]
        type_forms = [f for f in body if _head(f) == "type"]
        fn_forms = [f for f in body if _head(f) == "function"]
        stray = [f for f in body if _head(f) not in ("type", "function")]
        if stray:
            raise ModelLoadError("unexpected top-level form", form=stray[0])

        # Ids are assigned in declaration order so forward references work.
        for i, f in enumerate(type_forms):
            if len(f) < 3:
                raise ModelLoadError("type needs a name and a kind", form=f)
            if f[1] in self._type_ids:
                raise ModelLoadError(f"duplicate type {f[1]!r}")
            self._type_ids[f[1]] = i
        for f in type_forms:
            self._load_type(f)
        for f in fn_forms:
            self.builder.add(self._load_function(f))
        logger.debug("loaded %d types and %d functions",
                     len(type_forms), len(fn_forms))
        return self.builder.build()

    # ---- types ---------------------------------------------------------

    def _type_ref(self, name: Any) -> Optional[int]:
        if name == _UNKNOWN_TYPE:
            return None
        try:
            return self._type_ids[name]
        except (KeyError, TypeError):
            raise ModelLoadError(f"unknown type {name!r}") from None

    def _load_field(self, form: Any) -> FieldDef:
        if not isinstance(form, list) or len(form) < 2:
            raise ModelLoadError("field needs a name and a type", form=form)
        opts = _options(form[2:])
        return FieldDef(
            name=form[0],
            type_id=self._type_ref(form[1]),
            constraints=frozenset(opts.get("constraints", ())),
            distinct_from=frozenset(opts.get("distinct", ())),
            location=_location(opts["at"]) if "at" in opts else SourceLocation(),
        )

    def _load_type(self, form: List[Any]) -> None:
        name, kind_name = form[1], form[2]
        if kind_name not in _KINDS:
            raise ModelLoadError(f"unknown type kind {kind_name!r}", form=form)
        opts = _options(form[3:])
        length = _int_option(opts, "len", None)
        tid = self.builder.add_type(
            path=opts.get("path", [name])[0],
            kind=_KINDS[kind_name],
            fields=[self._load_field(f) for f in opts.get("fields", ())],
            variant_count=_int_option(opts, "variants", 0),
            traits=opts.get("traits", ()),
            attributes=opts.get("attrs", ()),
            generic_args=[self._type_ref(a) for a in opts.get("args", ())],
            length=length,
            location=_location(opts["at"]) if "at" in opts else SourceLocation(),
        )
        if tid != self._type_ids[name]:
            raise ModelLoadError(f"type id mismatch for {name!r}")

    # ---- functions -----------------------------------------------------

    def _load_function(self, form: List[Any]) -> FunctionBuilder:
        if len(form) < 2 or not isinstance(form[1], str):
            raise ModelLoadError("function needs a name", form=form)
        rest = form[2:]
        location = SourceLocation()
        if rest and _head(rest[0]) == "at":
            location = _location(rest[0][1:])
            rest = rest[1:]
        fb = self.builder.function(form[1], location.file, location.line)
        blocks = [f for f in rest if _head(f) == "block"]
        for opt in rest:
            head = _head(opt)
            if head == "params":
                for name, type_name in _pairs(opt):
                    fb.param(name, self._type_ref(type_name))
            elif head == "locals":
                for name, type_name in _pairs(opt):
                    fb.local(name, self._type_ref(type_name))
            elif head == "unmodeled":
                fb.modeled = False
            elif head != "block":
                raise ModelLoadError("unknown function option", form=opt)

        labels: Dict[Any, int] = {}
        for i, b in enumerate(blocks):
            if len(b) < 3 or _head(b[2]) != "succ":
                raise ModelLoadError("block needs a label and (succ ...)", form=b)
            labels[b[1]] = i
            if i > 0:
                fb.block()
        for i, b in enumerate(blocks):
            fb.goto(i)
            for label in b[2][1:]:
                if label not in labels:
                    raise ModelLoadError(f"{form[1]}: unknown block label {label!r}")
                fb.edge(i, labels[label])
            for stmt in b[3:]:
                self._load_stmt(fb, stmt)
        return fb

    def _load_stmt(self, fb: FunctionBuilder, form: Any) -> None:
        head = _head(form)
        if head == "at":
            loc = _location(form[1:-1])
            fb.at(loc.line, loc.column)
            self._load_stmt(fb, form[-1])
        elif head == "let":
            if len(form) not in (3, 4):
                raise ModelLoadError("let takes a name, a value and an optional type",
                                     form=form)
            value = self._expr(fb, form[2])
            type_id = self._type_ref(form[3]) if len(form) == 4 else None
            fb.let(form[1], value, type_id)
        elif head == "assign" and len(form) == 3:
            target = self._expr(fb, form[1])
            fb.assign(target, self._expr(fb, form[2]))
        elif head == "eval" and len(form) == 2:
            fb.eval(self._expr(fb, form[1]))
        else:
            raise ModelLoadError("malformed statement", form=form)

    # ---- expressions ---------------------------------------------------

    def _split_result_type(self, args: List[Any]) -> Tuple[List[Any], Optional[int]]:
        if args and _head(args[-1]) == "->":
            return args[:-1], self._type_ref(args[-1][1])
        return args, None

    def _expr(self, fb: FunctionBuilder, form: Any) -> int:
        if isinstance(form, bool):
            return fb.literal(form)
        if isinstance(form, (int, float)):
            return fb.literal(form)
        if isinstance(form, str):
            return fb.var(form)
        head = _head(form)
        args = form[1:] if head is not None else []
        if head == "lit" and args:
            value = args[0]
            if isinstance(value, list):
                value = tuple(value)
            type_id = self._type_ref(args[1]) if len(args) > 1 else None
            return fb.literal(value, type_id)
        if head == "field" and len(args) in (2, 3):
            base = self._expr(fb, args[0])
            type_id = self._type_ref(args[2]) if len(args) == 3 else None
            return fb.field(base, args[1], type_id)
        if head == "deref" and len(args) == 1:
            return fb.deref(self._expr(fb, args[0]))
        if head in ("ref", "ref-mut") and len(args) == 1:
            return fb.ref(self._expr(fb, args[0]), mutable=head == "ref-mut")
        if head == "index" and len(args) in (1, 2):
            base = self._expr(fb, args[0])
            idx = self._expr(fb, args[1]) if len(args) == 2 else None
            return fb.index(base, idx)
        if head == "call" and args:
            call_args, type_id = self._split_result_type(args[1:])
            return fb.call(args[0], *[self._expr(fb, a) for a in call_args],
                           type_id=type_id)
        if head == "method" and len(args) >= 2:
            call_args, type_id = self._split_result_type(args[2:])
            recv = self._expr(fb, args[1])
            return fb.method(recv, args[0], *[self._expr(fb, a) for a in call_args],
                             type_id=type_id)
        if head in COMPARISON_OPS and len(args) == 2:
            return fb.compare(head, self._expr(fb, args[0]), self._expr(fb, args[1]))
        if head == "new" and args:
            fields = {}
            for pair in args[1:]:
                if not isinstance(pair, list) or len(pair) != 2:
                    raise ModelLoadError("constructor field must be (NAME EXPR)",
                                         form=pair)
                fields[pair[0]] = self._expr(fb, pair[1])
            return fb.construct(self._type_ref(args[0]), **fields)
        if head == "array":
            return fb.array_literal(*[self._expr(fb, a) for a in args])
        raise ModelLoadError("malformed expression", form=form)


def load_program(text: str) -> ProgramModel:
    """Parse an interchange document into a :class:`ProgramModel`."""
    return ModelLoader().load(text)


def load_program_file(path: Union[str, Path]) -> ProgramModel:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ModelLoadError(f"cannot read {path}: {exc}") from exc
    return load_program(text)


__all__ = [
    "ModelLoader",
    "load_program",
    "load_program_file",
    "parse_sexp",
]
