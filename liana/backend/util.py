"""Shared utilities for backend code emitters."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import ClassVar, Iterator

from ..context import Context
from ..diagnostics import UnresolvedReferenceError, UnknownAnnotation
from ..ir import (
    Annotation,
    CallingConvention,
    Discriminant,
    Enum,
    FuncType,
    Function,
    Intersection,
    Item,
    Module,
    Opaque,
    Other,
    Ref,
    Repr,
    Struct,
    Type,
    TypeItem,
    Union,
    Variant,
    find_annotation,
    walk_types,
)
from ..middleend.confidence import needs_review

logger = logging.getLogger(__name__)

# Names every backend maps to a target-language type of its own.
BUILTINS = frozenset(
    {
        "String",
        "i8",
        "i16",
        "i32",
        "i64",
        "u8",
        "u16",
        "u32",
        "u64",
        "usize",
        "isize",
        "f32",
        "f64",
        "bool",
        "Unit",
        "Any",
        "Unknown",
        "Never",
        "Option",
        "Vec",
        "Map",
        "Result",
        "ApiError",
        "Ptr",
        "Array",
        "c_char",
        "c_schar",
        "c_uchar",
        "c_short",
        "c_ushort",
        "c_int",
        "c_uint",
        "c_long",
        "c_ulong",
        "c_longlong",
        "c_ulonglong",
    }
)

NATIVE_REFS = frozenset({"Ptr", "Array"} | {name for name in BUILTINS if name.startswith("c_")})

# Other-annotation tags produced by the bundled frontends.
FRONTEND_TAGS = frozenset(
    {
        "c_tag",
        "allowed_values",
        "anonymous_member",
        "bitfield",
        "discriminant_expr",
        "length_expr",
    }
)


# ============================================================
# NAMES
# ============================================================


def to_snake(name: str) -> str:
    """Convert camelCase, PascalCase or kebab-case to snake_case."""
    name = re.sub(r"[^0-9A-Za-z_]+", "_", name)
    s1 = re.sub(r"(.)([A-Z][a-z]+)", r"\1_\2", name)
    s = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s1).lower()
    s = re.sub(r"_+", "_", s).strip("_")
    if s and s[0].isdigit():
        s = "_" + s
    return s or "_"


def to_pascal(name: str) -> str:
    """Convert snake_case, kebab-case or camelCase to PascalCase."""
    parts = re.split(r"[^0-9A-Za-z]+", name)
    result = "".join(p[0].upper() + p[1:] for p in parts if p)
    if result and result[0].isdigit():
        result = "_" + result
    return result


def to_screaming_snake(name: str) -> str:
    return to_snake(name).upper()


def escape_string(value: str) -> str:
    """Escape a string for use in a double-quoted literal (without quotes)."""
    return (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\t", "\\t")
        .replace("\r", "\\r")
        .replace("\x00", "\\0")
    )


def leaf(name: str) -> str:
    """Last segment of a qualified name."""
    return name.rsplit("::", 1)[-1]


def qualify(path: tuple[str, ...], name: str) -> str:
    return "::".join(path + (name,))


def c_enum_values(variants: tuple[Variant, ...]) -> list[int | None]:
    """Discriminant of each variant, following C's implicit +1 numbering.

    None marks a value that cannot be known without evaluating an
    expression (and every implicit value after it).
    """
    values: list[int | None] = []
    current: int | None = -1
    for v in variants:
        disc = find_annotation(v.annotations, Discriminant)
        if disc is not None:
            current = disc.value
        elif any(isinstance(a, Other) and a.tag == "discriminant_expr" for a in v.annotations):
            current = None
        elif current is not None:
            current += 1
        values.append(current)
    return values


# ============================================================
# EMITTER
# ============================================================


class Emitter:
    """Base class for code emitters with indentation tracking."""

    def __init__(self, indent_str: str = "    ") -> None:
        self.indent: int = 0
        self.lines: list[str] = []
        self._indent_str = indent_str

    def reset(self) -> None:
        self.indent = 0
        self.lines = []

    def line(self, text: str = "") -> None:
        """Emit a line with current indentation."""
        if text:
            self.lines.append(self._indent_str * self.indent + text)
        else:
            self.lines.append("")

    def comment(self, prefix: str, text: str) -> None:
        """Emit text as comment lines, one per source line."""
        for part in text.splitlines() or [""]:
            self.line(f"{prefix} {part}".rstrip())

    def output(self) -> str:
        """Accumulated output, trailing blank lines collapsed to one newline."""
        while self.lines and self.lines[-1] == "":
            self.lines.pop()
        return "\n".join(self.lines) + "\n"


# ============================================================
# REFERENCE RESOLUTION
# ============================================================


class TypeIndex:
    """Every declared type of a module tree, by root-relative qualified name.

    Resolution rules:
    - names containing "::" are root-relative
    - plain names are looked up in the current module, then each ancestor
    - generic parameters in scope shadow everything
    - builtins are tried last
    """

    def __init__(self) -> None:
        self.types: dict[str, Type] = {}

    @classmethod
    def build(cls, units: list[tuple[tuple[str, ...], list[Item]]]) -> TypeIndex:
        index = cls()
        for path, items in units:
            for item in items:
                if isinstance(item, TypeItem):
                    index.types[qualify(path, item.name)] = item.typ
        return index

    def resolve(
        self, name: str, path: tuple[str, ...], local: frozenset[str], where: str
    ) -> tuple[tuple[str, ...], str] | None:
        """(module path, name) of the declaration, or None for builtins and
        generic parameters. Raises UnresolvedReferenceError."""
        if name in local:
            return None
        if "::" in name:
            if name in self.types:
                parts = tuple(name.split("::"))
                return parts[:-1], parts[-1]
            raise UnresolvedReferenceError(name, where)
        for depth in range(len(path), -1, -1):
            scope = path[:depth]
            if qualify(scope, name) in self.types:
                return scope, name
        if name in BUILTINS:
            return None
        raise UnresolvedReferenceError(name, where)

    def declaration(self, path: tuple[str, ...], name: str) -> Type | None:
        return self.types.get(qualify(path, name))


# ============================================================
# HOISTING
#
# Target languages need a name for every struct, enum and union. Anonymous
# ones found in use positions are lifted to module-level declarations
# named after their owner: field "address" of User -> UserAddress.
# ============================================================


class Hoister:
    def __init__(self, module: Module) -> None:
        self.taken = {item.name for item in module.items}
        self.hoisted: list[TypeItem] = []

    def fresh(self, hint: str) -> str:
        name = hint or "Anonymous"
        n = 2
        while name in self.taken:
            name = f"{hint}{n}"
            n += 1
        self.taken.add(name)
        return name

    def lift(self, typ: Type, hint: str) -> Type:
        """Type for a use position, with anonymous declarations hoisted."""
        kind = typ.kind
        if typ.name is None and isinstance(kind, (Struct, Enum, Union, Intersection)):
            name = self.fresh(hint)
            decl = self.body(typ, name)
            self.hoisted.append(TypeItem(replace(decl, name=name)))
            return Type(Ref(name))
        if isinstance(kind, FuncType):
            return replace(typ, kind=self._func(kind, hint))
        if typ.args:
            return replace(typ, args=tuple(self.lift(a, hint) for a in typ.args))
        return typ

    def body(self, typ: Type, name: str) -> Type:
        """Declaration with its nested anonymous types hoisted."""
        kind = typ.kind
        if isinstance(kind, Struct):
            fields = tuple(
                replace(f, typ=self.lift(f.typ, name + to_pascal(f.name or str(i))))
                for i, f in enumerate(kind.fields)
            )
            return replace(typ, kind=Struct(fields))
        if isinstance(kind, Enum):
            variants = tuple(
                replace(
                    v,
                    fields=tuple(
                        replace(f, typ=self.lift(f.typ, name + to_pascal(v.name) + to_pascal(f.name or str(i))))
                        for i, f in enumerate(v.fields)
                    ),
                )
                for v in kind.variants
            )
            return replace(typ, kind=Enum(variants))
        if isinstance(kind, (Union, Intersection)):
            members = tuple(self.lift(m, f"{name}Variant{i}") for i, m in enumerate(kind.members))
            return replace(typ, kind=type(kind)(members))
        if isinstance(kind, FuncType):
            return replace(typ, kind=self._func(kind, name))
        if typ.args:
            return replace(typ, args=tuple(self.lift(a, name) for a in typ.args))
        return typ

    def _func(self, kind: FuncType, hint: str) -> FuncType:
        params = tuple(
            replace(p, typ=self.lift(p.typ, hint + to_pascal(p.name or f"arg{i}")))
            for i, p in enumerate(kind.params)
        )
        return FuncType(params, self.lift(kind.ret, hint + "Return"))


def hoist(module: Module) -> list[Item]:
    """Items of module with anonymous types lifted, each hoisted
    declaration placed right before the item that owns it."""
    hoister = Hoister(module)
    out: list[Item] = []
    for item in module.items:
        start = len(hoister.hoisted)
        if isinstance(item, TypeItem):
            new: Item = TypeItem(hoister.body(item.typ, item.name))
        elif isinstance(item, Function):
            owner = to_pascal(item.name)
            params = tuple(
                replace(p, typ=hoister.lift(p.typ, owner + to_pascal(p.name or f"arg{i}")))
                for i, p in enumerate(item.params)
            )
            new = replace(item, params=params, ret=hoister.lift(item.ret, owner + "Response"))
        else:
            new = replace(item, typ=hoister.lift(item.typ, to_pascal(item.name)))
        out.extend(hoister.hoisted[start:])
        out.append(new)
    return out


# ============================================================
# ANNOTATION SURVEY
# ============================================================


def _type_annotations(typ: Type) -> Iterator[Annotation]:
    for t in walk_types(typ):
        yield from t.annotations
        for tp in t.params:
            yield from tp.bounds
        kind = t.kind
        if isinstance(kind, Struct):
            for f in kind.fields:
                yield from f.annotations
        elif isinstance(kind, Enum):
            for v in kind.variants:
                yield from v.annotations
                for f in v.fields:
                    yield from f.annotations
        elif isinstance(kind, FuncType):
            for p in kind.params:
                yield from p.annotations


def item_annotations(item: Item) -> Iterator[Annotation]:
    """Every annotation on item and anything nested in it."""
    if not isinstance(item, TypeItem):
        yield from item.annotations
    if isinstance(item, Function):
        for p in item.params:
            yield from p.annotations
        for tp in item.type_params:
            yield from tp.bounds
    for typ in item.types():
        yield from _type_annotations(typ)


# ============================================================
# BACKEND CONTRACT
# ============================================================


@dataclass
class Generated:
    """Files produced for one module tree plus per-module failures."""

    files: list[tuple[str, str]] = field(default_factory=list)
    failures: list[UnresolvedReferenceError] = field(default_factory=list)


class Backend(Emitter):
    """Base for target-language generators.

    Subclasses set NAME and UNDERSTOOD (Other tags they render) and implement
    file_path() and emit_module(). Output depends only on the module, so
    generating twice yields identical text.
    """

    NAME: ClassVar[str] = ""
    UNDERSTOOD: ClassVar[frozenset[str]] = FRONTEND_TAGS

    def __init__(self, ctx: Context | None = None) -> None:
        super().__init__()
        self.ctx = ctx
        self.index = TypeIndex()
        self.path: tuple[str, ...] = ()
        self.where = ""
        self.local: frozenset[str] = frozenset()

    def generate(self, module: Module) -> list[tuple[str, str]]:
        """(file path, text) for every module in the tree. Raises the first
        UnresolvedReferenceError if any module failed."""
        result = self.generate_all(module)
        if result.failures:
            raise result.failures[0]
        return result.files

    def generate_all(self, module: Module) -> Generated:
        """Generate every module, collecting failures instead of raising."""
        units: list[tuple[tuple[str, ...], Module, list[Item]]] = [
            (path, mod, hoist(mod)) for path, mod in module.walk()
        ]
        self.index = TypeIndex.build([(path, items) for path, _, items in units])
        self.report_unknown(units)
        result = Generated()
        for path, mod, items in units:
            self.reset()
            self.path = path
            try:
                text = self.emit_module(mod, items)
            except UnresolvedReferenceError as e:
                logger.debug("%s backend: module %s failed: %s", self.NAME, "::".join(path) or mod.name, e)
                result.failures.append(e)
                continue
            result.files.append((self.file_path(path), text))
        return result

    def file_path(self, path: tuple[str, ...]) -> str:
        raise NotImplementedError

    def emit_module(self, module: Module, items: list[Item]) -> str:
        raise NotImplementedError

    def report_unknown(self, units: list[tuple[tuple[str, ...], Module, list[Item]]]) -> None:
        """One diagnostic per Other tag this backend does not render."""
        if self.ctx is None:
            return
        seen: set[str] = set()
        for path, _, items in units:
            for item in items:
                for ann in item_annotations(item):
                    if isinstance(ann, Other) and ann.tag not in self.UNDERSTOOD and ann.tag not in seen:
                        seen.add(ann.tag)
                        self.ctx.report(
                            UnknownAnnotation(
                                f"annotation '{ann.tag}' is not understood by the {self.NAME} backend; ignored",
                                qualify(path, item.name),
                            )
                        )

    # ---- helpers for subclasses ----

    def enter(self, item: Item, local: frozenset[str] = frozenset()) -> None:
        self.where = qualify(self.path, item.name)
        self.local = local

    def resolve(self, name: str) -> tuple[tuple[str, ...], str] | None:
        return self.index.resolve(name, self.path, self.local, self.where)

    def review(self, item: Item, prefix: str) -> None:
        for reason in needs_review(item):
            self.line(f"{prefix} REVIEW: {reason}" if reason else f"{prefix} REVIEW")

    def docs(self, text: str | None, prefix: str) -> None:
        if text:
            self.comment(prefix, text)


def is_native(item: Item) -> bool:
    """True for declarations that come from a native library."""
    if isinstance(item, Function):
        return item.annotation(CallingConvention) is not None
    if isinstance(item, TypeItem):
        if item.typ.annotation(Opaque) is not None or item.typ.annotation(Repr) is not None:
            return True
    return any(t.ref_name in NATIVE_REFS for typ in item.types() for t in walk_types(typ))


def is_ffi(module: Module) -> bool:
    """True when the tree describes a native library rather than an HTTP API."""
    return any(is_native(item) for _, mod in module.walk() for item in mod.items)
