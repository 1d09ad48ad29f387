"""Serialization of IR objects to JSON/YAML-compatible structures and back.

Encoded form omits None fields and empty collections. Type kinds carry a
"_type" discriminator. Wherever a type is expected on input, a type
expression string such as "Result<User, ApiError>" is accepted as well.
"""

from __future__ import annotations

import re

from .ir import (
    Annotation,
    AnnotationValue,
    Bool,
    Const,
    Enum,
    Field,
    FuncType,
    Function,
    Generated,
    Intersection,
    Item,
    List,
    Metadata,
    Module,
    Null,
    Number,
    Object,
    Overridden,
    Param,
    Provenance,
    Ref,
    SourceLocation,
    String,
    Struct,
    Type,
    TypeItem,
    TypeKind,
    TypeParam,
    Union,
    Value,
    Variant,
    make_annotation,
)


# ============================================================
# VALUES
# ============================================================


def value_to_py(value: Value) -> object:
    """Plain Python data for a Value."""
    if isinstance(value, Null):
        return None
    if isinstance(value, Bool):
        return value.value
    if isinstance(value, Number):
        return value.value
    if isinstance(value, String):
        return value.value
    if isinstance(value, List):
        return [value_to_py(v) for v in value.items]
    if isinstance(value, Object):
        return {k: value_to_py(v) for k, v in value.entries}
    raise ValueError(f"not a value: {value!r}")


def value_from_py(data: object) -> Value:
    """Value for plain Python data (as loaded from JSON or YAML)."""
    if data is None:
        return Null()
    if isinstance(data, bool):
        return Bool(data)
    if isinstance(data, (int, float)):
        return Number(data)
    if isinstance(data, str):
        return String(data)
    if isinstance(data, (list, tuple)):
        return List(tuple(value_from_py(x) for x in data))
    if isinstance(data, dict):
        return Object(tuple((str(k), value_from_py(v)) for k, v in data.items()))
    raise ValueError(f"cannot convert {type(data).__name__} to a value")


# ============================================================
# TYPE EXPRESSIONS
# ============================================================

_TOKEN = re.compile(r"\s*(?:([A-Za-z_][A-Za-z0-9_]*(?:::[A-Za-z_][A-Za-z0-9_]*)*)|(.))")


def parse_type_expr(text: str) -> Type:
    """Parse "Name" or "Name<Arg, ...>" into a Ref type."""
    tokens: list[str] = []
    pos = 0
    stripped = text.strip()
    while pos < len(stripped):
        m = _TOKEN.match(stripped, pos)
        if m is None:
            break
        pos = m.end()
        tok = m.group(1) or m.group(2)
        if tok is None:
            break
        tokens.append(tok)
    if not tokens:
        raise ValueError("empty type expression")
    typ, rest = _parse_type_tokens(tokens, 0, text)
    if rest != len(tokens):
        raise ValueError(f"unexpected '{tokens[rest]}' in type expression '{text}'")
    return typ


def _parse_type_tokens(tokens: list[str], i: int, text: str) -> tuple[Type, int]:
    if i >= len(tokens) or not (tokens[i][0].isalpha() or tokens[i][0] == "_"):
        raise ValueError(f"expected a type name in '{text}'")
    name = tokens[i]
    i += 1
    args: list[Type] = []
    if i < len(tokens) and tokens[i] == "<":
        i += 1
        while True:
            arg, i = _parse_type_tokens(tokens, i, text)
            args.append(arg)
            if i < len(tokens) and tokens[i] == ",":
                i += 1
                continue
            if i < len(tokens) and tokens[i] == ">":
                i += 1
                break
            raise ValueError(f"unterminated type arguments in '{text}'")
    return Type(Ref(name), args=tuple(args)), i


def format_type(typ: Type) -> str:
    """Compact human-readable rendering, the inverse of parse_type_expr for refs."""
    kind = typ.kind
    if isinstance(kind, Ref):
        if typ.args:
            return kind.name + "<" + ", ".join(format_type(a) for a in typ.args) + ">"
        return kind.name
    if typ.name is not None:
        return typ.name
    if isinstance(kind, Struct):
        parts = []
        for f in kind.fields:
            if f.name is None:
                parts.append(format_type(f.typ))
            else:
                parts.append(f"{f.name}: {format_type(f.typ)}")
        return "{" + ", ".join(parts) + "}"
    if isinstance(kind, Enum):
        return "enum{" + ", ".join(v.name for v in kind.variants) + "}"
    if isinstance(kind, FuncType):
        params = ", ".join(format_type(p.typ) for p in kind.params)
        return f"fn({params}) -> {format_type(kind.ret)}"
    if isinstance(kind, Union):
        return " | ".join(format_type(m) for m in kind.members)
    if isinstance(kind, Intersection):
        return " & ".join(format_type(m) for m in kind.members)
    return "?"


# ============================================================
# ENCODING
# ============================================================


def _put(d: dict[str, object], key: str, value: object) -> None:
    if value is None:
        return
    if isinstance(value, (list, dict, tuple)) and not value:
        return
    d[key] = value


def annotation_payload_to_py(value: AnnotationValue | None) -> object:
    if isinstance(value, Type):
        return type_to_dict(value)
    if isinstance(value, tuple):
        return [annotation_payload_to_py(v) for v in value]
    return value


def annotation_to_dict(ann: Annotation) -> dict[str, object]:
    d: dict[str, object] = {"kind": ann.kind}
    payload = ann.payload()
    if payload is not None:
        d["value"] = annotation_payload_to_py(payload)
    return d


def _annotations(anns: tuple[Annotation, ...]) -> list[dict[str, object]]:
    return [annotation_to_dict(a) for a in anns]


def metadata_to_dict(meta: Metadata) -> dict[str, object]:
    d: dict[str, object] = {}
    _put(d, "docs", meta.docs)
    if meta.source is not None:
        src: dict[str, object] = {"file": meta.source.file}
        _put(src, "line", meta.source.line)
        _put(src, "column", meta.source.column)
        d["source"] = src
    _put(d, "confidence", meta.confidence)
    if isinstance(meta.provenance, Overridden):
        d["provenance"] = {"overridden": meta.provenance.source}
    _put(d, "extra", {k: value_to_py(v) for k, v in meta.extra.items()})
    return d


def field_to_dict(f: Field) -> dict[str, object]:
    d: dict[str, object] = {}
    _put(d, "name", f.name)
    d["type"] = type_to_dict(f.typ)
    _put(d, "annotations", _annotations(f.annotations))
    return d


def param_to_dict(p: Param) -> dict[str, object]:
    d: dict[str, object] = {}
    _put(d, "name", p.name)
    d["type"] = type_to_dict(p.typ)
    if p.default is not None:
        d["default"] = value_to_py(p.default)
    _put(d, "annotations", _annotations(p.annotations))
    return d


def type_param_to_dict(tp: TypeParam) -> dict[str, object]:
    d: dict[str, object] = {"name": tp.name}
    _put(d, "bounds", _annotations(tp.bounds))
    if tp.default is not None:
        d["default"] = type_to_dict(tp.default)
    return d


def kind_to_dict(kind: TypeKind) -> dict[str, object]:
    if isinstance(kind, Ref):
        return {"_type": "Ref", "name": kind.name}
    if isinstance(kind, Struct):
        return {"_type": "Struct", "fields": [field_to_dict(f) for f in kind.fields]}
    if isinstance(kind, Enum):
        variants = []
        for v in kind.variants:
            vd: dict[str, object] = {"name": v.name}
            _put(vd, "fields", [field_to_dict(f) for f in v.fields])
            _put(vd, "annotations", _annotations(v.annotations))
            variants.append(vd)
        return {"_type": "Enum", "variants": variants}
    if isinstance(kind, FuncType):
        return {
            "_type": "Function",
            "params": [param_to_dict(p) for p in kind.params],
            "ret": type_to_dict(kind.ret),
        }
    if isinstance(kind, Union):
        return {"_type": "Union", "members": [type_to_dict(m) for m in kind.members]}
    if isinstance(kind, Intersection):
        return {"_type": "Intersection", "members": [type_to_dict(m) for m in kind.members]}
    raise ValueError(f"unknown type kind: {kind!r}")


def type_to_dict(typ: Type) -> dict[str, object]:
    d: dict[str, object] = {"kind": kind_to_dict(typ.kind)}
    _put(d, "name", typ.name)
    _put(d, "params", [type_param_to_dict(tp) for tp in typ.params])
    _put(d, "args", [type_to_dict(a) for a in typ.args])
    _put(d, "annotations", _annotations(typ.annotations))
    _put(d, "metadata", metadata_to_dict(typ.metadata))
    return d


def item_to_dict(item: Item) -> dict[str, object]:
    if isinstance(item, TypeItem):
        return {"item": "type", "type": type_to_dict(item.typ)}
    if isinstance(item, Function):
        d: dict[str, object] = {"item": "function", "name": item.name}
        _put(d, "type_params", [type_param_to_dict(tp) for tp in item.type_params])
        _put(d, "params", [param_to_dict(p) for p in item.params])
        d["ret"] = type_to_dict(item.ret)
        _put(d, "annotations", _annotations(item.annotations))
        _put(d, "metadata", metadata_to_dict(item.metadata))
        return d
    d = {"item": "const", "name": item.name, "type": type_to_dict(item.typ)}
    d["value"] = value_to_py(item.value)
    _put(d, "annotations", _annotations(item.annotations))
    _put(d, "metadata", metadata_to_dict(item.metadata))
    return d


def module_to_dict(module: Module) -> dict[str, object]:
    """Serialize IR Module to dict."""
    d: dict[str, object] = {"name": module.name}
    _put(d, "items", [item_to_dict(i) for i in module.items])
    _put(d, "submodules", [module_to_dict(m) for m in module.submodules])
    _put(d, "annotations", _annotations(module.annotations))
    _put(d, "metadata", metadata_to_dict(module.metadata))
    return d


# ============================================================
# DECODING
# ============================================================


def _mapping(data: object, what: str) -> dict:
    if not isinstance(data, dict):
        raise ValueError(f"{what} must be a mapping, got {type(data).__name__}")
    return data


def _sequence(data: object, what: str) -> list:
    if data is None:
        return []
    if not isinstance(data, list):
        raise ValueError(f"{what} must be a list, got {type(data).__name__}")
    return data


def _optional_str(data: dict, key: str, what: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{what}.{key} must be a string")
    return value


def annotation_payload_from_py(data: object) -> AnnotationValue | None:
    if isinstance(data, dict):
        return type_from_dict(data)
    if isinstance(data, list):
        return tuple(annotation_payload_from_py(x) for x in data)
    if data is None or isinstance(data, (str, int, float, bool)):
        return data
    raise ValueError(f"unsupported annotation value: {data!r}")


def annotation_from_dict(data: object) -> Annotation:
    """Decode an annotation. Unknown kinds become Other, never an error."""
    if isinstance(data, str):
        return make_annotation(data)
    d = _mapping(data, "annotation")
    kind = d.get("kind")
    if not isinstance(kind, str) or not kind:
        raise ValueError("annotation needs a 'kind' string")
    return make_annotation(kind, annotation_payload_from_py(d.get("value")))


def _annotations_from(data: object, what: str) -> tuple[Annotation, ...]:
    return tuple(annotation_from_dict(a) for a in _sequence(data, what + ".annotations"))


def metadata_from_dict(data: object) -> Metadata:
    if data is None:
        return Metadata()
    d = _mapping(data, "metadata")
    source = None
    if d.get("source") is not None:
        src = d["source"]
        if isinstance(src, str):
            source = SourceLocation(src)
        else:
            src = _mapping(src, "metadata.source")
            source = SourceLocation(str(src.get("file", "")), src.get("line"), src.get("column"))
    confidence = d.get("confidence")
    if confidence is not None:
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            raise ValueError("metadata.confidence must be a number")
        if not 0.0 <= confidence <= 1.0:
            raise ValueError("metadata.confidence must be within [0, 1]")
        confidence = float(confidence)
    provenance: Provenance = Generated()
    prov = d.get("provenance")
    if isinstance(prov, dict) and "overridden" in prov:
        provenance = Overridden(str(prov["overridden"]))
    elif prov not in (None, "generated"):
        raise ValueError(f"unknown provenance: {prov!r}")
    extra = {str(k): value_from_py(v) for k, v in _mapping(d.get("extra") or {}, "metadata.extra").items()}
    return Metadata(_optional_str(d, "docs", "metadata"), source, confidence, provenance, extra)


def field_from_dict(data: object) -> Field:
    d = _mapping(data, "field")
    if "type" not in d:
        raise ValueError("field needs a 'type'")
    return Field(
        _optional_str(d, "name", "field"),
        type_from_dict(d["type"]),
        _annotations_from(d.get("annotations"), "field"),
    )


def variant_from_dict(data: object) -> Variant:
    if isinstance(data, str):
        return Variant(data)
    d = _mapping(data, "variant")
    name = d.get("name")
    if not isinstance(name, str) or not name:
        raise ValueError("variant needs a 'name'")
    return Variant(
        name,
        tuple(field_from_dict(f) for f in _sequence(d.get("fields"), "variant.fields")),
        _annotations_from(d.get("annotations"), "variant"),
    )


def param_from_dict(data: object) -> Param:
    d = _mapping(data, "param")
    if "type" not in d:
        raise ValueError("param needs a 'type'")
    default = value_from_py(d["default"]) if "default" in d else None
    return Param(
        _optional_str(d, "name", "param"),
        type_from_dict(d["type"]),
        default,
        _annotations_from(d.get("annotations"), "param"),
    )


def type_param_from_dict(data: object) -> TypeParam:
    if isinstance(data, str):
        return TypeParam(data)
    d = _mapping(data, "type param")
    name = d.get("name")
    if not isinstance(name, str) or not name:
        raise ValueError("type param needs a 'name'")
    default = type_from_dict(d["default"]) if d.get("default") is not None else None
    return TypeParam(name, _annotations_from(d.get("bounds"), "type param"), default)


def kind_from_dict(data: object) -> TypeKind:
    d = _mapping(data, "type kind")
    tag = d.get("_type")
    if tag == "Ref":
        name = d.get("name")
        if not isinstance(name, str) or not name:
            raise ValueError("Ref needs a 'name'")
        return Ref(name)
    if tag == "Struct":
        return Struct(tuple(field_from_dict(f) for f in _sequence(d.get("fields"), "Struct.fields")))
    if tag == "Enum":
        return Enum(tuple(variant_from_dict(v) for v in _sequence(d.get("variants"), "Enum.variants")))
    if tag == "Function":
        if "ret" not in d:
            raise ValueError("Function kind needs 'ret'")
        params = tuple(param_from_dict(p) for p in _sequence(d.get("params"), "Function.params"))
        return FuncType(params, type_from_dict(d["ret"]))
    if tag == "Union":
        return Union(tuple(type_from_dict(m) for m in _sequence(d.get("members"), "Union.members")))
    if tag == "Intersection":
        members = _sequence(d.get("members"), "Intersection.members")
        return Intersection(tuple(type_from_dict(m) for m in members))
    raise ValueError(f"unknown type kind: {tag!r}")


def type_from_dict(data: object) -> Type:
    """Decode a type from its dict form or a type expression string."""
    if isinstance(data, str):
        return parse_type_expr(data)
    d = _mapping(data, "type")
    if "kind" not in d:
        raise ValueError("type needs a 'kind'")
    return Type(
        kind_from_dict(d["kind"]),
        _optional_str(d, "name", "type"),
        tuple(type_param_from_dict(tp) for tp in _sequence(d.get("params"), "type.params")),
        tuple(type_from_dict(a) for a in _sequence(d.get("args"), "type.args")),
        _annotations_from(d.get("annotations"), "type"),
        metadata_from_dict(d.get("metadata")),
    )


def item_from_dict(data: object) -> Item:
    d = _mapping(data, "item")
    tag = d.get("item")
    if tag == "type":
        typ = type_from_dict(d.get("type"))
        if typ.name is None:
            raise ValueError("type item needs a named type")
        return TypeItem(typ)
    name = d.get("name")
    if not isinstance(name, str) or not name:
        raise ValueError(f"{tag} item needs a 'name'")
    if tag == "function":
        if "ret" not in d:
            raise ValueError("function item needs 'ret'")
        return Function(
            name,
            tuple(param_from_dict(p) for p in _sequence(d.get("params"), "function.params")),
            type_from_dict(d["ret"]),
            tuple(type_param_from_dict(tp) for tp in _sequence(d.get("type_params"), "function.type_params")),
            _annotations_from(d.get("annotations"), "function"),
            metadata_from_dict(d.get("metadata")),
        )
    if tag == "const":
        if "type" not in d:
            raise ValueError("const item needs a 'type'")
        return Const(
            name,
            type_from_dict(d["type"]),
            value_from_py(d.get("value")),
            _annotations_from(d.get("annotations"), "const"),
            metadata_from_dict(d.get("metadata")),
        )
    raise ValueError(f"unknown item tag: {tag!r}")


def module_from_dict(data: object) -> Module:
    d = _mapping(data, "module")
    name = d.get("name")
    if not isinstance(name, str):
        raise ValueError("module needs a 'name'")
    return Module(
        name,
        [item_from_dict(i) for i in _sequence(d.get("items"), "module.items")],
        [module_from_dict(m) for m in _sequence(d.get("submodules"), "module.submodules")],
        _annotations_from(d.get("annotations"), "module"),
        metadata_from_dict(d.get("metadata")),
    )
