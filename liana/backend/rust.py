"""RustBackend: IR -> Rust source.

HTTP trees become serde models plus `pub async fn` stubs, one `mod.rs` per
module. Native trees become #[repr(C)] declarations, `extern` blocks and
`impl` wrappers grouped by receiver type.
"""

from __future__ import annotations

import math

from ..ir import (
    Bool,
    Bound,
    CallingConvention,
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
    Number,
    Opaque,
    Other,
    Ownership,
    Param,
    ReadOnly,
    Receiver,
    Ref,
    Rename,
    Repr,
    String,
    Struct,
    Type,
    TypeItem,
    TypeParam,
    Union,
    Variadic,
    find_annotation,
)
from .util import (
    Backend,
    Generated,
    c_enum_values,
    escape_string,
    is_ffi,
    is_native,
    leaf,
    to_pascal,
    to_snake,
)

RUST_RESERVED = frozenset({
    "as", "async", "await", "break", "const", "continue", "crate", "dyn",
    "else", "enum", "extern", "false", "fn", "for", "if", "impl", "in",
    "let", "loop", "match", "mod", "move", "mut", "pub", "ref", "return",
    "self", "Self", "static", "struct", "super", "trait", "true", "type",
    "union", "unsafe", "use", "where", "while", "abstract", "become", "box",
    "do", "final", "macro", "override", "priv", "try", "typeof", "unsized",
    "virtual", "yield",
})

# Keywords that cannot be written as raw identifiers.
_NO_RAW = frozenset({"self", "Self", "super", "crate"})

_SCALARS: dict[str, str] = {
    "String": "String",
    "i8": "i8",
    "i16": "i16",
    "i32": "i32",
    "i64": "i64",
    "u8": "u8",
    "u16": "u16",
    "u32": "u32",
    "u64": "u64",
    "usize": "usize",
    "isize": "isize",
    "f32": "f32",
    "f64": "f64",
    "bool": "bool",
    "Unit": "()",
    "Any": "serde_json::Value",
    "Unknown": "serde_json::Value",
    "Never": "!",
    "ApiError": "ApiError",
    "c_char": "std::os::raw::c_char",
    "c_schar": "std::os::raw::c_schar",
    "c_uchar": "std::os::raw::c_uchar",
    "c_short": "std::os::raw::c_short",
    "c_ushort": "std::os::raw::c_ushort",
    "c_int": "std::os::raw::c_int",
    "c_uint": "std::os::raw::c_uint",
    "c_long": "std::os::raw::c_long",
    "c_ulong": "std::os::raw::c_ulong",
    "c_longlong": "std::os::raw::c_longlong",
    "c_ulonglong": "std::os::raw::c_ulonglong",
}

_GENERICS: dict[str, str] = {
    "Option": "Option",
    "Vec": "Vec",
    "Map": "std::collections::HashMap",
    "Result": "Result",
}

_ABIS: dict[str, str] = {
    "cdecl": "C",
    "stdcall": "stdcall",
    "fastcall": "fastcall",
    "vectorcall": "vectorcall",
}

SERDE_DERIVE = "#[derive(Debug, Clone, PartialEq, Serialize, Deserialize)]"


def _ident(name: str) -> str:
    """Escape Rust keywords: r#type, self_."""
    if name in RUST_RESERVED:
        if name in _NO_RAW:
            return name + "_"
        return "r#" + name
    return name


def _snake(name: str) -> str:
    return _ident(to_snake(name))


def _float(value: float, typ: str) -> str:
    if math.isnan(value):
        return f"{typ}::NAN"
    if math.isinf(value):
        return f"{typ}::INFINITY" if value > 0 else f"{typ}::NEG_INFINITY"
    text = repr(value)
    if "." not in text and "e" not in text:
        text += ".0"
    return text


class RustBackend(Backend):
    """Emit Rust modules from an IR module tree."""

    NAME = "rust"

    def __init__(self, ctx=None) -> None:
        super().__init__(ctx)
        self.ffi = False

    def generate_all(self, module: Module) -> Generated:
        self.ffi = is_ffi(module)
        return super().generate_all(module)

    def file_path(self, path: tuple[str, ...]) -> str:
        return "/".join(path + ("mod.rs",))

    def emit_module(self, module: Module, items: list[Item]) -> str:
        if module.metadata.docs:
            self.comment("//!", module.metadata.docs)
            self.line()
        self._preamble()
        for sub in module.submodules:
            self.line(f"pub mod {_ident(sub.name)};")
        if module.submodules:
            self.line()
        natives: list[Function] = []
        for item in items:
            if isinstance(item, TypeItem):
                self._emit_type(item)
            elif isinstance(item, Const):
                self._emit_const(item)
            elif is_native(item):
                natives.append(item)
            else:
                self._emit_stub(item)
        if natives:
            self._emit_extern(natives)
            self._emit_impls(natives)
        return self.output()

    def _preamble(self) -> None:
        if self.ffi:
            self.line("#![allow(non_camel_case_types, non_snake_case, non_upper_case_globals, dead_code)]")
            self.line()
            return
        self.line("use serde::{Deserialize, Serialize};")
        self.line()
        self.line("/// API error type.")
        self.line(SERDE_DERIVE)
        self.line("pub struct ApiError {")
        self.line("    pub message: String,")
        self.line("    pub code: Option<String>,")
        self.line("}")
        self.line()

    # ── types ───────────────────────────────────────────────

    def _path(self, module_path: tuple[str, ...], name: str) -> str:
        """Path to a declaration, relative to the module being emitted."""
        common = 0
        while common < min(len(module_path), len(self.path)) and module_path[common] == self.path[common]:
            common += 1
        parts = ["super"] * (len(self.path) - common)
        parts += [_ident(p) for p in module_path[common:]]
        parts.append(_ident(name))
        return "::".join(parts)

    def _type(self, typ: Type) -> str:
        kind = typ.kind
        if isinstance(kind, FuncType):
            return self._fn_type(kind, typ)
        if not isinstance(kind, Ref):
            if typ.name is None:
                raise ValueError("anonymous type in a use position")
            kind = Ref(typ.name)
        name = kind.name
        args = [self._type(a) for a in typ.args]
        target = self.resolve(name)
        if target is not None:
            base = self._path(*target)
        elif name in self.local:
            base = name
        elif name == "Ptr":
            inner = "std::ffi::c_void"
            if typ.args and not typ.args[0].is_ref("Unit"):
                inner = args[0]
            mutability = "const" if typ.annotation(ReadOnly) is not None else "mut"
            return f"*{mutability} {inner}"
        elif name == "Array":
            elem = args[0] if args else "u8"
            length = typ.annotation(Length)
            if length is None:
                return f"*mut {elem}"
            return f"[{elem}; {length.length}]"
        elif name in _GENERICS:
            base = _GENERICS[name]
        else:
            base = _SCALARS[name]
        rendered = f"{base}<{', '.join(args)}>" if args else base
        nullable = typ.annotation(Nullable)
        if nullable is not None and nullable.nullable and name != "Option":
            rendered = f"Option<{rendered}>"
        return rendered

    def _fn_type(self, kind: FuncType, typ: Type) -> str:
        params = [self._type(p.typ) for p in kind.params]
        if typ.annotation(Variadic) is not None:
            params.append("...")
        ret = "" if kind.ret.is_ref("Unit") else f" -> {self._type(kind.ret)}"
        if self.ffi:
            return f'Option<unsafe extern "C" fn({", ".join(params)}){ret}>'
        return f"fn({', '.join(params)}){ret}"

    def _generics(self, params: tuple[TypeParam, ...], defaults: bool = True) -> str:
        if not params:
            return ""
        parts = []
        for tp in params:
            text = tp.name
            bounds = [self._type(b.typ) for b in tp.bounds if isinstance(b, Bound)]
            if bounds:
                text += ": " + " + ".join(bounds)
            if defaults and tp.default is not None:
                text += f" = {self._type(tp.default)}"
            parts.append(text)
        return f"<{', '.join(parts)}>"

    def _derive(self, copy: bool = False) -> str:
        if self.ffi:
            return "#[derive(Debug, Clone, Copy, PartialEq, Eq)]" if copy else "#[derive(Debug, Clone)]"
        return SERDE_DERIVE

    def _emit_type(self, item: TypeItem) -> None:
        typ = item.typ
        self.enter(item, frozenset(tp.name for tp in typ.params))
        name = _ident(item.name) + self._generics(typ.params)
        self.review(item, "//")
        self.docs(typ.metadata.docs, "///")
        if typ.annotation(Deprecated) is not None:
            self.line("#[deprecated]")
        match typ.kind:
            case Struct(fields=fields):
                if self.ffi:
                    self._emit_c_struct(typ, name, fields)
                else:
                    self._emit_struct(name, fields)
            case Enum(variants=variants):
                self._emit_enum(name, variants)
            case Union(members=members):
                self.line(self._derive())
                if not self.ffi:
                    self.line("#[serde(untagged)]")
                self.line(f"pub enum {name} {{")
                used: set[str] = set()
                for i, member in enumerate(members):
                    variant = to_pascal(leaf(member.ref_name)) if member.ref_name and not member.args else ""
                    if not variant or variant in used:
                        variant = f"Variant{i}"
                    used.add(variant)
                    self.line(f"    {variant}({self._type(member)}),")
                self.line("}")
            case Intersection(members=members):
                self.line(self._derive())
                self.line(f"pub struct {name} {{")
                used = set()
                for i, member in enumerate(members):
                    field_name = _snake(leaf(member.ref_name)) if member.ref_name else f"part{i}"
                    if field_name in used:
                        field_name = f"part{i}"
                    used.add(field_name)
                    if not self.ffi:
                        self.line("    #[serde(flatten)]")
                    self.line(f"    pub {field_name}: {self._type(member)},")
                self.line("}")
            case FuncType():
                self.line(f"pub type {name} = {self._type(Type(typ.kind, annotations=typ.annotations))};")
            case Ref():
                alias = Type(typ.kind, args=typ.args, annotations=typ.annotations)
                self.line(f"pub type {name} = {self._type(alias)};")
        self.line()

    def _field_line(self, f: Field, index: int, serde: bool) -> None:
        doc = find_annotation(f.annotations, Doc)
        if doc is not None:
            self.comment("    ///", doc.text)
        if find_annotation(f.annotations, Deprecated) is not None:
            self.line("    #[deprecated]")
        original = f.name if f.name is not None else f"field{index}"
        spelled = to_snake(original) if serde else original
        field_name = _ident(spelled)
        if serde and spelled != original:
            self.line(f'    #[serde(rename = "{escape_string(original)}")]')
        self.line(f"    pub {field_name}: {self._type(f.typ)},")

    def _emit_struct(self, name: str, fields: tuple[Field, ...]) -> None:
        self.line(SERDE_DERIVE)
        if not fields:
            self.line(f"pub struct {name};")
        elif all(f.name is None for f in fields):
            types = ", ".join(f"pub {self._type(f.typ)}" for f in fields)
            self.line(f"pub struct {name}({types});")
        else:
            self.line(f"pub struct {name} {{")
            for i, f in enumerate(fields):
                self._field_line(f, i, serde=True)
            self.line("}")

    def _emit_c_struct(self, typ: Type, name: str, fields: tuple[Field, ...]) -> None:
        self.line("#[repr(C)]")
        if typ.annotation(Opaque) is not None or not fields:
            self.line(f"pub struct {name} {{")
            self.line("    _private: [u8; 0],")
            self.line("}")
            return
        keyword = "struct"
        repr_ann = typ.annotation(Repr)
        if repr_ann is not None and repr_ann.repr == "union":
            keyword = "union"
        self.line("#[derive(Clone, Copy)]")
        self.line(f"pub {keyword} {name} {{")
        for i, f in enumerate(fields):
            for ann in f.annotations:
                if isinstance(ann, Other) and ann.tag == "bitfield":
                    self.line(f"    // bitfield: {ann.value} bits")
            self._field_line(f, i, serde=False)
        self.line("}")

    def _emit_enum(self, name: str, variants) -> None:
        c_like = self.ffi and all(not v.fields for v in variants)
        if c_like:
            self.line("#[repr(C)]")
            self.line(self._derive(copy=True))
            self.line(f"pub enum {name} {{")
            for v, value in zip(variants, c_enum_values(variants)):
                expr = next((a.value for a in v.annotations if isinstance(a, Other) and a.tag == "discriminant_expr"), None)
                if value is not None:
                    self.line(f"    {_ident(v.name)} = {value},")
                elif expr is not None:
                    self.line(f"    {_ident(v.name)}, // = {expr}")
                else:
                    self.line(f"    {_ident(v.name)},")
            self.line("}")
            return
        self.line(self._derive())
        self.line(f"pub enum {name} {{")
        for v in variants:
            variant = _ident(to_pascal(v.name) or v.name)
            doc = find_annotation(v.annotations, Doc)
            if doc is not None:
                self.comment("    ///", doc.text)
            rename = find_annotation(v.annotations, Rename)
            original = rename.original if rename is not None else v.name
            if not self.ffi and original != variant:
                self.line(f'    #[serde(rename = "{escape_string(original)}")]')
            if not v.fields:
                self.line(f"    {variant},")
            elif all(f.name is None for f in v.fields):
                self.line(f"    {variant}({', '.join(self._type(f.typ) for f in v.fields)}),")
            else:
                self.line(f"    {variant} {{")
                for i, f in enumerate(v.fields):
                    self.line(f"        {_snake(f.name or f'field{i}')}: {self._type(f.typ)},")
                self.line("    },")
        self.line("}")

    # ── consts ──────────────────────────────────────────────

    def _emit_const(self, item: Const) -> None:
        self.enter(item)
        self.review(item, "//")
        self.docs(item.metadata.docs, "///")
        value = item.value
        typ = item.typ
        if isinstance(value, String):
            self.line(f'pub const {_ident(item.name)}: &str = "{escape_string(value.value)}";')
        elif isinstance(value, Bool):
            self.line(f"pub const {_ident(item.name)}: bool = {'true' if value.value else 'false'};")
        elif isinstance(value, Number):
            rust_type = self._type(typ)
            if isinstance(value.value, float):
                text = _float(value.value, rust_type)
            else:
                text = str(value.value)
            self.line(f"pub const {_ident(item.name)}: {rust_type} = {text};")
        else:
            self.line(f"// REVIEW: const {item.name} has a value Rust consts cannot express")
        self.line()

    # ── functions ───────────────────────────────────────────

    def _params(self, params: tuple[Param, ...]) -> list[str]:
        out = []
        for i, p in enumerate(params):
            out.append(f"{_snake(p.name) if p.name else f'arg{i}'}: {self._type(p.typ)}")
        return out

    def _ret(self, typ: Type) -> str:
        nullable = typ.annotation(Nullable)
        if typ.is_ref("Unit") and (nullable is None or not nullable.nullable):
            return ""
        return f" -> {self._type(typ)}"

    def _emit_stub(self, fn: Function) -> None:
        self.enter(fn, frozenset(tp.name for tp in fn.type_params))
        self.review(fn, "//")
        self.docs(fn.metadata.docs, "///")
        method = fn.annotation(HttpMethod)
        path = fn.annotation(HttpPath)
        if method is not None and path is not None:
            self.line(f"/// HTTP: {method.method} {path.path}")
        if fn.annotation(Deprecated) is not None:
            self.line("#[deprecated]")
        generics = self._generics(fn.type_params, defaults=False)
        args = ", ".join(self._params(fn.params))
        self.line(f"pub async fn {_snake(fn.name)}{generics}({args}){self._ret(fn.ret)} {{")
        self.line("    todo!()")
        self.line("}")
        self.line()

    def _emit_extern(self, natives: list[Function]) -> None:
        abis: list[str] = []
        groups: dict[str, list[Function]] = {}
        for fn in natives:
            conv = fn.annotation(CallingConvention)
            abi = _ABIS.get(conv.convention if conv is not None else "cdecl", "C")
            if abi not in groups:
                abis.append(abi)
                groups[abi] = []
            groups[abi].append(fn)
        for abi in abis:
            self.line(f'extern "{abi}" {{')
            self.indent += 1
            for fn in groups[abi]:
                self._emit_foreign(fn)
            self.indent -= 1
            self.line("}")
            self.line()

    def _emit_foreign(self, fn: Function) -> None:
        self.enter(fn)
        self.review(fn, "//")
        self.docs(fn.metadata.docs, "///")
        ownership = self._ownership_note(fn)
        if ownership:
            self.line(f"/// Ownership: {ownership}")
        link = fn.annotation(LinkName)
        if link is not None and link.symbol != fn.name:
            self.line(f'#[link_name = "{escape_string(link.symbol)}"]')
        if fn.annotation(Deprecated) is not None:
            self.line("#[deprecated]")
        params = self._params(fn.params)
        if fn.annotation(Variadic) is not None:
            params.append("...")
        self.line(f"pub fn {_ident(fn.name)}({', '.join(params)}){self._ret(fn.ret)};")

    def _ownership_note(self, fn: Function) -> str:
        notes = []
        for i, p in enumerate(fn.params):
            own = p.typ.annotation(Ownership)
            if own is not None:
                notes.append(f"{p.name or f'arg{i}'} {own.mode}")
        own = fn.ret.annotation(Ownership)
        if own is not None:
            notes.append(f"return {own.mode}")
        return ", ".join(notes)

    def _emit_impls(self, natives: list[Function]) -> None:
        owners: list[str] = []
        groups: dict[str, list[Function]] = {}
        for fn in natives:
            recv = fn.annotation(Receiver)
            if recv is None or recv.self_type is None or fn.annotation(Variadic) is not None:
                continue
            if recv.self_type not in groups:
                owners.append(recv.self_type)
                groups[recv.self_type] = []
            groups[recv.self_type].append(fn)
        for owner in owners:
            self.enter(groups[owner][0])
            target = self.index.resolve(owner, (), frozenset(), self.where)
            if target is None:
                continue
            self.line(f"impl {self._path(*target)} {{")
            for i, fn in enumerate(groups[owner]):
                if i:
                    self.line()
                self._emit_wrapper(fn)
            self.line("}")
            self.line()

    def _emit_wrapper(self, fn: Function) -> None:
        self.enter(fn)
        recv = fn.annotation(Receiver)
        params = list(fn.params)
        args: list[str] = []
        decl: list[str] = []
        if recv.binding == "method" and params:
            first = params.pop(0).typ
            if first.is_ref("Ptr"):
                if first.annotation(ReadOnly) is not None:
                    decl.append("&self")
                    args.append("self as *const Self")
                else:
                    decl.append("&mut self")
                    args.append("self as *mut Self")
            else:
                decl.append("self")
                args.append("self")
        offset = len(fn.params) - len(params)
        for i, p in enumerate(params, offset):
            pname = _snake(p.name) if p.name else f"arg{i}"
            decl.append(f"{pname}: {self._type(p.typ)}")
            args.append(pname)
        self.line(f"    pub unsafe fn {_ident(fn.name)}({', '.join(decl)}){self._ret(fn.ret)} {{")
        self.line(f"        {_ident(fn.name)}({', '.join(args)})")
        self.line("    }")
