"""PythonBackend: IR -> Python source.

HTTP trees become dataclass models and stub functions; native trees become
ctypes declarations whose classes carry the library's functions as
methods. One `__init__.py` per module.
"""

from __future__ import annotations

import keyword
import math

from ..ir import (
    Const,
    Deprecated,
    Doc,
    Enum,
    Field,
    FuncType,
    Function,
    HttpMethod,
    HttpPath,
    Intersection,
    Item,
    Length,
    LinkName,
    Module,
    Nullable,
    Opaque,
    Other,
    Param,
    Receiver,
    Ref,
    Rename,
    Repr,
    Struct,
    Type,
    TypeItem,
    Union,
    Variadic,
    Variant,
    find_annotation,
)
from ..serialize import value_to_py
from .util import (
    Backend,
    Generated,
    c_enum_values,
    escape_string,
    is_ffi,
    is_native,
    leaf,
    to_pascal,
    to_screaming_snake,
    to_snake,
)

# Python builtins that shouldn't be shadowed by parameter names
_PYTHON_BUILTINS = frozenset(
    {
        "all",
        "any",
        "bool",
        "bytes",
        "callable",
        "dict",
        "filter",
        "float",
        "format",
        "hash",
        "help",
        "id",
        "input",
        "int",
        "iter",
        "len",
        "list",
        "map",
        "max",
        "min",
        "next",
        "object",
        "open",
        "print",
        "property",
        "range",
        "set",
        "slice",
        "str",
        "sum",
        "super",
        "tuple",
        "type",
        "vars",
        "zip",
    }
)

_SCALARS: dict[str, str] = {
    "String": "str",
    "i8": "int",
    "i16": "int",
    "i32": "int",
    "i64": "int",
    "u8": "int",
    "u16": "int",
    "u32": "int",
    "u64": "int",
    "usize": "int",
    "isize": "int",
    "f32": "float",
    "f64": "float",
    "bool": "bool",
    "Unit": "None",
    "Any": "Any",
    "Unknown": "Any",
    "Never": "NoReturn",
    "ApiError": "ApiError",
}

_CTYPES: dict[str, str] = {
    "c_char": "ctypes.c_char",
    "c_schar": "ctypes.c_byte",
    "c_uchar": "ctypes.c_ubyte",
    "c_short": "ctypes.c_short",
    "c_ushort": "ctypes.c_ushort",
    "c_int": "ctypes.c_int",
    "c_uint": "ctypes.c_uint",
    "c_long": "ctypes.c_long",
    "c_ulong": "ctypes.c_ulong",
    "c_longlong": "ctypes.c_longlong",
    "c_ulonglong": "ctypes.c_ulonglong",
    "i8": "ctypes.c_int8",
    "i16": "ctypes.c_int16",
    "i32": "ctypes.c_int32",
    "i64": "ctypes.c_int64",
    "u8": "ctypes.c_uint8",
    "u16": "ctypes.c_uint16",
    "u32": "ctypes.c_uint32",
    "u64": "ctypes.c_uint64",
    "usize": "ctypes.c_size_t",
    "isize": "ctypes.c_ssize_t",
    "f32": "ctypes.c_float",
    "f64": "ctypes.c_double",
    "bool": "ctypes.c_bool",
    "String": "ctypes.c_char_p",
    "Unit": "None",
    "Never": "None",
}

_HTTP_PREAMBLE = '''T = TypeVar("T")
E = TypeVar("E")


@dataclass
class ApiError:
    """API error type."""

    message: str
    code: str | None = None


@dataclass
class Ok(Generic[T]):
    value: T


@dataclass
class Err(Generic[E]):
    error: E


Result = Union[Ok[T], Err[E]]'''


def _safe_name(name: str) -> str:
    """Rename identifiers that are keywords or shadow Python builtins."""
    if keyword.iskeyword(name) or name in _PYTHON_BUILTINS:
        return name + "_"
    return name


def _type_name(name: str) -> str:
    return name + "_" if keyword.iskeyword(name) else name


def _docstring_lines(text: str) -> list[str]:
    text = text.replace("\\", "\\\\").replace('"""', '\\"\\"\\"')
    if text.endswith('"'):
        text = text[:-1] + '\\"'
    lines = text.splitlines() or [""]
    if len(lines) == 1:
        return [f'"""{lines[0]}"""']
    return ['"""' + lines[0]] + lines[1:] + ['"""']


def _quote(text: str) -> str:
    return '"' + escape_string(text) + '"'


def _literal(value: object) -> str:
    if isinstance(value, str):
        return _quote(value)
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return f'float("{value}")'
    return repr(value)


class PythonBackend(Backend):
    """Emit Python packages from an IR module tree."""

    NAME = "python"

    def __init__(self, ctx=None) -> None:
        super().__init__(ctx)
        self.ffi = False
        self.runtime = False
        self.imports: dict[tuple[tuple[str, ...], str], str] = {}
        self.taken: set[str] = set()
        self.typing: set[str] = set()
        self.needs: set[str] = set()

    def generate_all(self, module: Module) -> Generated:
        self.ffi = is_ffi(module)
        return super().generate_all(module)

    def file_path(self, path: tuple[str, ...]) -> str:
        return "/".join(path + ("__init__.py",))

    def emit_module(self, module: Module, items: list[Item]) -> str:
        self.imports = {}
        self.taken = {item.name for item in items}
        self.typing = set()
        self.needs = set()
        if self.ffi:
            self._emit_native_body(items)
        else:
            self._emit_http_body(items)
        body = self.lines
        self.reset()
        self._emit_header(module)
        self.lines.extend(body)
        return self.output()

    def _emit_header(self, module: Module) -> None:
        self.lines.extend(_docstring_lines(module.metadata.docs or f"Bindings for {module.name}."))
        self.line()
        self.line("from __future__ import annotations")
        self.line()
        plain = []
        if self.ffi:
            plain.append("import ctypes")
        if "enum" in self.needs:
            plain.append("import enum")
        for text in plain:
            self.line(text)
        froms = []
        if not self.ffi:
            self.needs.add("dataclass")
            self.typing.update({"Generic", "TypeVar", "Union"})
        dataclass_names = sorted(n for n in ("dataclass", "field") if n in self.needs)
        if dataclass_names:
            froms.append(f"from dataclasses import {', '.join(dataclass_names)}")
        if self.typing:
            froms.append(f"from typing import {', '.join(sorted(self.typing))}")
        if plain and froms:
            self.line()
        for text in froms:
            self.line(text)
        if self.imports:
            self.line()
            for (module_path, name), alias in sorted(self.imports.items()):
                stmt = f"from {self._relative(module_path)} import {_type_name(name)}"
                if alias != _type_name(name):
                    stmt += f" as {alias}"
                self.line(stmt)
        self.line()
        if not self.ffi:
            self.line()
            self.lines.extend(_HTTP_PREAMBLE.splitlines())
            self.line()

    def _relative(self, module_path: tuple[str, ...]) -> str:
        common = 0
        while common < min(len(module_path), len(self.path)) and module_path[common] == self.path[common]:
            common += 1
        return "." * (len(self.path) - common + 1) + ".".join(module_path[common:])

    def _blank(self) -> None:
        self.line()
        self.line()

    # ── names ───────────────────────────────────────────────

    def _declared(self, module_path: tuple[str, ...], name: str) -> str:
        """Local spelling of a declared type, importing it when needed."""
        if module_path == self.path:
            return _type_name(name)
        key = (module_path, name)
        if key not in self.imports:
            alias = _type_name(name)
            if alias in self.taken or alias in self.imports.values():
                alias = "_".join(module_path + (name,))
            self.imports[key] = alias
        return self.imports[key]

    # ── HTTP types ──────────────────────────────────────────

    def _type(self, typ: Type) -> str:
        """Type hint. In runtime mode declared names are quoted and
        optionals use Optional[], so the text is valid as an expression."""
        kind = typ.kind
        if isinstance(kind, FuncType):
            self.typing.add("Callable")
            params = ", ".join(self._type(p.typ) for p in kind.params)
            return f"Callable[[{params}], {self._type(kind.ret)}]"
        if not isinstance(kind, Ref):
            if typ.name is None:
                raise ValueError("anonymous type in a use position")
            kind = Ref(typ.name)
        name = kind.name
        target = self.resolve(name)
        if target is not None:
            text = self._declared(*target)
            runtime, self.runtime = self.runtime, False
            try:
                if typ.args:
                    text += f"[{', '.join(self._type(a) for a in typ.args)}]"
            finally:
                self.runtime = runtime
            if runtime:
                text = f'"{text}"'
            nullable = typ.annotation(Nullable)
            if nullable is not None and nullable.nullable:
                return self._optional(text)
            return text
        args = [self._type(a) for a in typ.args]
        if name in self.local:
            text = name
        elif name == "Option":
            text = self._optional(args[0] if args else "Any")
            return text
        elif name == "Vec" or name == "Array":
            text = f"list[{args[0] if args else 'Any'}]"
        elif name == "Map":
            key, val = (["str"] + args)[-2:] if args else ("str", "Any")
            text = f"dict[{key}, {val}]"
        elif name == "Result":
            text = f"Result[{', '.join(args)}]" if args else "Result"
        elif name == "Ptr":
            self.typing.add("Any")
            text = "Any"
        elif name.startswith("c_"):
            text = "int"
        else:
            text = _SCALARS[name]
            if text in ("Any", "NoReturn"):
                self.typing.add(text)
        nullable = typ.annotation(Nullable)
        if nullable is not None and nullable.nullable:
            return self._optional(text)
        return text

    def _optional(self, text: str) -> str:
        if self.runtime:
            self.typing.add("Optional")
            return f"Optional[{text}]"
        return f"{text} | None"

    def _runtime_type(self, typ: Type) -> str:
        self.runtime = True
        try:
            return self._type(typ)
        finally:
            self.runtime = False

    def _generic_base(self, item: TypeItem) -> str:
        if not item.typ.params:
            return ""
        self.typing.add("Generic")
        return f"(Generic[{', '.join(tp.name for tp in item.typ.params)}])"

    # ── HTTP items ──────────────────────────────────────────

    def _emit_http_body(self, items: list[Item]) -> None:
        typevars = sorted(
            {tp.name for item in items if isinstance(item, TypeItem) for tp in item.typ.params}
            | {tp.name for item in items if isinstance(item, Function) for tp in item.type_params}
        )
        typevars = [t for t in typevars if t not in ("T", "E")]
        if typevars:
            self.typing.add("TypeVar")
            self._blank()
            for t in typevars:
                self.line(f'{t} = TypeVar("{t}")')
        for item in items:
            self._blank()
            if isinstance(item, TypeItem):
                self._emit_http_type(item)
            elif isinstance(item, Function):
                self._emit_stub(item)
            else:
                self._emit_const(item)

    def _emit_http_type(self, item: TypeItem) -> None:
        typ = item.typ
        self.enter(item, frozenset(tp.name for tp in typ.params))
        self.review(item, "#")
        if typ.annotation(Deprecated) is not None:
            self.line("# Deprecated.")
        name = _type_name(item.name)
        match typ.kind:
            case Struct(fields=fields):
                if typ.kind.is_newtype:
                    self.line("@dataclass(frozen=True)")
                    self.line(f"class {name}{self._generic_base(item)}:")
                    self._class_doc(typ.metadata.docs)
                    self.line(f"    value: {self._type(fields[0].typ)}")
                else:
                    self._dataclass(name + self._generic_base(item), typ.metadata.docs, fields)
                self.needs.add("dataclass")
            case Enum(variants=variants):
                if all(not v.fields for v in variants):
                    self._string_enum(name, typ.metadata.docs, variants)
                else:
                    self._variant_classes(item, name, variants)
            case Union(members=members):
                self.typing.add("Union")
                self.docs(typ.metadata.docs, "#")
                rendered = ", ".join(self._runtime_type(m) for m in members)
                self.line(f"{name} = Union[{rendered}]")
            case Intersection(members=members):
                fields = []
                for i, member in enumerate(members):
                    fname = to_snake(leaf(member.ref_name)) if member.ref_name else f"part{i}"
                    fields.append(Field(fname, member))
                self._dataclass(name, typ.metadata.docs, tuple(fields))
                self.needs.add("dataclass")
            case FuncType() | Ref():
                self.docs(typ.metadata.docs, "#")
                alias = Type(typ.kind, args=typ.args, annotations=typ.annotations)
                self.line(f"{name} = {self._runtime_type(alias)}")

    def _class_doc(self, docs: str | None) -> None:
        if docs:
            for text in _docstring_lines(docs):
                self.line(f"    {text}" if text else "")

    def _dataclass(self, header: str, docs: str | None, fields: tuple[Field, ...]) -> None:
        self.line("@dataclass")
        self.line(f"class {header}:")
        self._class_doc(docs)
        if docs and fields:
            self.line()
        if not fields:
            if not docs:
                self.line("    pass")
            return
        for i, f in enumerate(fields):
            original = f.name if f.name is not None else f"item{i}"
            attr = _type_name(to_snake(original))
            doc = find_annotation(f.annotations, Doc)
            if doc is not None:
                self.comment("    #:", doc.text)
            if find_annotation(f.annotations, Deprecated) is not None:
                self.line("    # Deprecated.")
            hint = self._type(f.typ)
            if attr != original and f.name is not None:
                self.needs.add("field")
                self.line(f'    {attr}: {hint} = field(metadata={{"wire": {_quote(original)}}})')
            else:
                self.line(f"    {attr}: {hint}")

    def _string_enum(self, name: str, docs: str | None, variants: tuple[Variant, ...]) -> None:
        self.needs.add("enum")
        self.line(f"class {name}(enum.Enum):")
        self._class_doc(docs)
        if docs and variants:
            self.line()
        if not variants:
            if not docs:
                self.line("    pass")
            return
        for v in variants:
            rename = find_annotation(v.annotations, Rename)
            value = rename.original if rename is not None else v.name
            doc = find_annotation(v.annotations, Doc)
            if doc is not None:
                self.comment("    #:", doc.text)
            self.line(f"    {_type_name(to_screaming_snake(v.name))} = {_quote(value)}")

    def _variant_classes(self, item: TypeItem, name: str, variants: tuple[Variant, ...]) -> None:
        """Data-carrying variants: one dataclass each plus a Union alias."""
        self.needs.add("dataclass")
        self.typing.add("Union")
        names = []
        for v in variants:
            cls = name + to_pascal(v.name)
            names.append(cls)
            self._dataclass(cls, None, v.fields)
            self._blank()
        self.docs(item.typ.metadata.docs, "#")
        self.line(f"{name} = Union[{', '.join(_quote(n) for n in names)}]")

    def _params(self, params: tuple[Param, ...], start: int = 0) -> list[str]:
        out = []
        defaults_ok = [False] * len(params)
        ok = True
        for i in range(len(params) - 1, -1, -1):
            ok = ok and params[i].default is not None
            defaults_ok[i] = ok
        for i, p in enumerate(params):
            pname = _safe_name(to_snake(p.name)) if p.name else f"arg{i + start}"
            text = f"{pname}: {self._param_type(p.typ)}"
            if defaults_ok[i]:
                text += f" = {_literal(value_to_py(p.default))}"
            out.append(text)
        return out

    def _param_type(self, typ: Type) -> str:
        if self.ffi:
            return self._ctype(typ, hint=True)
        return self._type(typ)

    def _emit_stub(self, fn: Function) -> None:
        self.enter(fn, frozenset(tp.name for tp in fn.type_params))
        self.review(fn, "#")
        if fn.annotation(Deprecated) is not None:
            self.line("# Deprecated.")
        args = ", ".join(self._params(fn.params))
        self.line(f"def {_safe_name(to_snake(fn.name))}({args}) -> {self._type(fn.ret)}:")
        doc = fn.metadata.docs or ""
        method = fn.annotation(HttpMethod)
        path = fn.annotation(HttpPath)
        if method is not None and path is not None:
            doc = f"{doc}\n\nHTTP: {method.method} {path.path}" if doc else f"HTTP: {method.method} {path.path}"
        self._class_doc(doc or None)
        self.line("    raise NotImplementedError")

    def _emit_const(self, item: Const) -> None:
        self.enter(item)
        self.review(item, "#")
        self.docs(item.metadata.docs, "#:")
        self.line(f"{_safe_name(item.name)} = {_literal(value_to_py(item.value))}")

    # ── ctypes ──────────────────────────────────────────────

    def _ctype(self, typ: Type, hint: bool = False) -> str:
        """ctypes expression for typ."""
        kind = typ.kind
        if isinstance(kind, FuncType):
            ret = self._ctype(kind.ret)
            params = [self._ctype(p.typ) for p in kind.params]
            return f"ctypes.CFUNCTYPE({', '.join([ret] + params)})"
        if not isinstance(kind, Ref):
            if typ.name is None:
                raise ValueError("anonymous type in a use position")
            kind = Ref(typ.name)
        name = kind.name
        target = self.resolve(name)
        if target is not None:
            decl = self.index.declaration(*target)
            if decl is not None and isinstance(decl.kind, Enum) and not hint:
                return "ctypes.c_int"
            return self._declared(*target)
        if name == "Ptr":
            if not typ.args or typ.args[0].ref_name in ("Unit", "Any", "Unknown"):
                return "ctypes.c_void_p"
            if typ.args[0].ref_name == "c_char":
                return "ctypes.c_char_p"
            return f"ctypes.POINTER({self._ctype(typ.args[0])})"
        if name == "Array":
            elem = self._ctype(typ.args[0]) if typ.args else "ctypes.c_ubyte"
            length = typ.annotation(Length)
            if length is None:
                return f"ctypes.POINTER({elem})"
            return f"({elem} * {length.length})"
        return _CTYPES.get(name, "ctypes.c_void_p")

    def _emit_native_body(self, items: list[Item]) -> None:
        self.needs.add("ctypes")
        consts = [i for i in items if isinstance(i, Const)]
        records = [i for i in items if isinstance(i, TypeItem) and isinstance(i.typ.kind, (Struct, Enum))]
        aliases = [i for i in items if isinstance(i, TypeItem) and i not in records]
        functions = [i for i in items if isinstance(i, Function)]
        methods: dict[str, list[Function]] = {}
        free: list[Function] = []
        for fn in functions:
            owner = self._local_owner(fn)
            if owner is None:
                free.append(fn)
            else:
                methods.setdefault(owner, []).append(fn)
        if consts:
            self._blank()
            for item in consts:
                self._emit_const(item)
        for item in records:
            self._blank()
            self._emit_record(item, methods.get(item.name, []))
        for item in aliases:
            self.enter(item)
            self._blank()
            self.review(item, "#")
            self.docs(item.typ.metadata.docs, "#")
            alias = Type(item.typ.kind, args=item.typ.args, annotations=item.typ.annotations)
            if isinstance(item.typ.kind, (Union, Intersection)):
                self.line(f"{_type_name(item.name)} = ctypes.c_void_p")
            else:
                self.line(f"{_type_name(item.name)} = {self._ctype(alias)}")
        layouts = [i for i in records if isinstance(i.typ.kind, Struct) and i.typ.kind.fields]
        if layouts:
            self._blank()
            for item in layouts:
                self._emit_layout(item)
        for fn in free:
            self._blank()
            self._emit_native_fn(fn, None)

    def _local_owner(self, fn: Function) -> str | None:
        recv = fn.annotation(Receiver)
        if not is_native(fn) or recv is None or recv.self_type is None:
            return None
        self.enter(fn)
        target = self.index.resolve(recv.self_type, (), frozenset(), self.where)
        if target is None or target[0] != self.path:
            return None
        return target[1]

    def _emit_record(self, item: TypeItem, methods: list[Function]) -> None:
        typ = item.typ
        self.enter(item)
        self.review(item, "#")
        name = _type_name(item.name)
        if isinstance(typ.kind, Enum):
            self.needs.add("enum")
            self.line(f"class {name}(enum.IntEnum):")
            self._class_doc(typ.metadata.docs)
            variants = typ.kind.variants
            for v, value in zip(variants, c_enum_values(variants)):
                expr = next((a.value for a in v.annotations if isinstance(a, Other) and a.tag == "discriminant_expr"), None)
                if value is not None:
                    self.line(f"    {_type_name(v.name)} = {value}")
                elif expr is not None:
                    self.line(f"    {_type_name(v.name)} = enum.auto()  # = {expr}")
                else:
                    self.line(f"    {_type_name(v.name)} = enum.auto()")
            if not variants and not typ.metadata.docs:
                self.line("    pass")
        else:
            repr_ann = typ.annotation(Repr)
            base = "ctypes.Union" if repr_ann is not None and repr_ann.repr == "union" else "ctypes.Structure"
            self.line(f"class {name}({base}):")
            docs = typ.metadata.docs
            if typ.annotation(Opaque) is not None:
                docs = f"{docs}\n\nOpaque handle." if docs else "Opaque handle."
            self._class_doc(docs)
            if not docs and not methods:
                self.line("    pass")
        for i, fn in enumerate(methods):
            if i or typ.metadata.docs or typ.annotation(Opaque) is not None or isinstance(typ.kind, Enum):
                self.line()
            self.indent += 1
            self._emit_native_fn(fn, item.name)
            self.indent -= 1

    def _emit_layout(self, item: TypeItem) -> None:
        self.enter(item)
        name = _type_name(item.name)
        self.line(f"{name}._fields_ = [")
        for i, f in enumerate(item.typ.kind.fields):
            fname = f.name if f.name is not None else f"item{i}"
            bits = next((a.value for a in f.annotations if isinstance(a, Other) and a.tag == "bitfield"), None)
            if bits is not None:
                self.line(f"    ({_quote(fname)}, {self._ctype(f.typ)}, {bits}),")
            else:
                self.line(f"    ({_quote(fname)}, {self._ctype(f.typ)}),")
        self.line("]")

    def _emit_native_fn(self, fn: Function, owner: str | None) -> None:
        self.enter(fn)
        self.review(fn, "#")
        recv = fn.annotation(Receiver)
        params = list(fn.params)
        decl: list[str] = []
        if owner is not None and recv is not None and recv.binding == "method" and params:
            params.pop(0)
            decl.append("self")
        elif owner is not None:
            self.line("@staticmethod")
        decl += self._params(tuple(params), start=len(fn.params) - len(params))
        if fn.annotation(Variadic) is not None:
            decl.append("*args")
        ret = self._ctype(fn.ret, hint=True)
        self.line(f"def {_safe_name(fn.name)}({', '.join(decl)}) -> {ret}:")
        link = fn.annotation(LinkName)
        symbol = link.symbol if link is not None else fn.name
        doc = f"{fn.metadata.docs}\n\nNative symbol: {symbol}" if fn.metadata.docs else f"Native symbol: {symbol}"
        self._class_doc(doc)
        self.line(f"    raise NotImplementedError({_quote(symbol)})")
