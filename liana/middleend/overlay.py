"""Overlay engine: hand-maintained overrides merged into generated IR.

An overlay document is YAML or JSON:

    overrides:
      fix-user-id:
        target: User.id
        operation: replace-type
        payload: Uuid
      drop-legacy:
        target: legacyLogin
        operation: remove-item

Records apply in document order. Targets are "sub::module::Item" with an
optional ".member" (struct field, enum variant or function parameter).
Every patched item is stamped Overridden("<document>#<key>"); stamps are
replaced, never stacked, so applying an overlay twice equals applying it once.

| operation         | target                        | payload                    |
|-------------------|-------------------------------|----------------------------|
| replace-type      | type, Item.field, Enum.Variant, Function.param, const | type (dict or "Expr<T>") / variant |
| replace-signature | function                      | {params, ret, type_params} |
| replace-doc       | item or member                | string or null             |
| add-item          | module::Name                  | item dict                  |
| remove-item       | item                          | none                       |
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path

from ..context import Context
from ..diagnostics import FatalParseError, OverlayError, OverrideFailed, StaleOverrideWarning
from ..frontend.document import load_document
from ..ir import (
    Const,
    Doc,
    Enum,
    Function,
    Item,
    Metadata,
    Module,
    Overridden,
    Struct,
    TypeItem,
    Value,
    drop_annotation,
    set_annotation,
)
from ..serialize import (
    item_from_dict,
    param_from_dict,
    type_from_dict,
    type_param_from_dict,
    value_from_py,
    value_to_py,
    variant_from_dict,
)

OPERATIONS = ("replace-type", "replace-signature", "replace-doc", "add-item", "remove-item")


@dataclass
class Override:
    """One record. problem is set when the record itself is malformed."""

    key: str
    target: str
    operation: str
    payload: Value | None = None
    problem: str | None = None


@dataclass
class Overlay:
    document: str
    overrides: list[Override] = field(default_factory=list)

    def source(self, key: str) -> str:
        return f"{self.document}#{key}"


def overlay_from_dict(data: object, document: str) -> Overlay:
    """Build an Overlay from decoded data. Raises OverlayError when the
    document as a whole is malformed; single bad records are kept with a
    problem and reported when applied."""
    if data is None:
        return Overlay(document)
    if not isinstance(data, dict):
        raise OverlayError(f"{document}: overlay must be a mapping")
    unknown = sorted(set(data) - {"overrides"})
    if unknown:
        raise OverlayError(f"{document}: unknown top-level keys: {', '.join(map(str, unknown))}")
    records = data.get("overrides")
    if records is None:
        return Overlay(document)
    if not isinstance(records, dict):
        raise OverlayError(f"{document}: 'overrides' must be a mapping of key to record")
    overlay = Overlay(document)
    for key, record in records.items():
        key = str(key)
        if not isinstance(record, dict):
            overlay.overrides.append(Override(key, "", "", problem="record must be a mapping"))
            continue
        target = record.get("target")
        operation = record.get("operation")
        problem = None
        if not isinstance(target, str) or not target:
            problem = "record needs a 'target' string"
        elif operation not in OPERATIONS:
            problem = f"unknown operation {operation!r}"
        payload = None
        if "payload" in record:
            try:
                payload = value_from_py(record["payload"])
            except ValueError as e:
                problem = problem or f"bad payload: {e}"
        overlay.overrides.append(
            Override(key, target if isinstance(target, str) else "", str(operation or ""), payload, problem)
        )
    return overlay


def load_overlay(text: str, document: str) -> Overlay:
    try:
        data = load_document(text, document)
    except FatalParseError as e:
        raise OverlayError(str(e)) from e
    return overlay_from_dict(data, document)


def read_overlay(path: str | Path) -> Overlay:
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise OverlayError(f"cannot open overlay '{p}': {e.strerror}") from e
    return load_overlay(text, p.name)


# ============================================================
# TARGETS
# ============================================================


def _parse_target(root: Module, target: str) -> tuple[tuple[str, ...], str, str | None]:
    parts = target.split("::")
    last = parts.pop()
    if parts and parts[0] == root.name and root.submodule(root.name) is None:
        parts = parts[1:]
    name, _, member = last.partition(".")
    return tuple(parts), name, member or None


def _stamp(meta: Metadata, source: str) -> Metadata:
    return replace(meta, provenance=Overridden(source))


def _stamped(item: Item, source: str) -> Item:
    if isinstance(item, TypeItem):
        return TypeItem(item.typ.with_metadata(_stamp(item.typ.metadata, source)))
    return replace(item, metadata=_stamp(item.metadata, source))


class _Failed(Exception):
    pass


class _Stale(Exception):
    pass


# ============================================================
# APPLICATION
# ============================================================


def apply_overlay(module: Module, overlay: Overlay, ctx: Context) -> Module:
    """Patched copy of module. The input module is left untouched."""
    out = module.copy()
    for record in overlay.overrides:
        where = record.target or record.key
        if record.problem is not None:
            ctx.report(OverrideFailed(f"override '{record.key}': {record.problem}", where))
            continue
        try:
            _apply(out, record, overlay.source(record.key))
        except _Stale:
            ctx.report(
                StaleOverrideWarning(
                    f"override '{record.key}' targets '{record.target}', which no longer exists",
                    record.target,
                )
            )
        except _Failed as e:
            ctx.report(OverrideFailed(f"override '{record.key}': {e}", where))
    return out


def _payload(record: Override) -> object:
    if record.payload is None:
        return None
    return value_to_py(record.payload)


def _apply(root: Module, record: Override, source: str) -> None:
    path, name, member = _parse_target(root, record.target)
    module = root.resolve(path)
    if module is None:
        raise _Stale()
    payload = _payload(record)
    if record.operation == "add-item":
        _add_item(module, name, member, payload, source)
        return
    index = module.index_of(name)
    if index < 0:
        raise _Stale()
    item = module.items[index]
    try:
        if record.operation == "remove-item":
            if member is not None:
                raise _Failed("remove-item takes an item path, not a member")
            del module.items[index]
            return
        if record.operation == "replace-type":
            patched = _replace_type(item, member, payload)
        elif record.operation == "replace-signature":
            patched = _replace_signature(item, member, payload)
        else:
            patched = _replace_doc(item, member, payload)
    except (TypeError, ValueError) as e:
        raise _Failed(f"bad payload: {e}") from e
    module.items[index] = _stamped(patched, source)


def _add_item(module: Module, name: str, member: str | None, payload: object, source: str) -> None:
    if member is not None:
        raise _Failed("add-item takes an item path, not a member")
    try:
        item = item_from_dict(payload)
    except (TypeError, ValueError) as e:
        raise _Failed(f"bad payload: {e}") from e
    if item.name != name:
        raise _Failed(f"payload declares '{item.name}' but the target names '{name}'")
    item = _stamped(item, source)
    index = module.index_of(name)
    if index < 0:
        module.items.append(item)
        return
    existing = module.items[index]
    provenance = existing.metadata.provenance
    if isinstance(provenance, Overridden) and provenance.source == source:
        module.items[index] = item
        return
    raise _Failed(f"'{name}' already exists in generated content")


def _replace_type(item: Item, member: str | None, payload: object) -> Item:
    if isinstance(item, TypeItem):
        typ = item.typ
        if member is None:
            new = type_from_dict(payload)
            meta = typ.metadata if new.metadata.is_empty() else new.metadata
            return TypeItem(replace(new, name=new.name or typ.name, metadata=meta))
        kind = typ.kind
        if isinstance(kind, Struct):
            fields = list(kind.fields)
            for i, f in enumerate(fields):
                if f.name == member:
                    fields[i] = replace(f, typ=type_from_dict(payload))
                    return TypeItem(replace(typ, kind=Struct(tuple(fields))))
        elif isinstance(kind, Enum):
            variants = list(kind.variants)
            for i, v in enumerate(variants):
                if v.name == member:
                    variants[i] = variant_from_dict(payload)
                    return TypeItem(replace(typ, kind=Enum(tuple(variants))))
        raise _Stale()
    if isinstance(item, Function):
        if member is None:
            raise _Failed("replace-type on a function needs a parameter; use replace-signature")
        if member == "return":
            return replace(item, ret=type_from_dict(payload))
        params = list(item.params)
        for i, p in enumerate(params):
            if p.name == member:
                params[i] = replace(p, typ=type_from_dict(payload))
                return replace(item, params=tuple(params))
        raise _Stale()
    if isinstance(item, Const):
        if member is not None:
            raise _Stale()
        return replace(item, typ=type_from_dict(payload))
    raise _Failed("unsupported target")


def _replace_signature(item: Item, member: str | None, payload: object) -> Item:
    if not isinstance(item, Function) or member is not None:
        raise _Failed("replace-signature needs a function target")
    if not isinstance(payload, dict):
        raise _Failed("replace-signature payload must be a mapping")
    unknown = sorted(set(payload) - {"params", "ret", "type_params"})
    if unknown:
        raise _Failed(f"unknown signature keys: {', '.join(unknown)}")
    params = item.params
    if "params" in payload:
        raw = payload["params"] or []
        if not isinstance(raw, list):
            raise _Failed("'params' must be a list")
        params = tuple(param_from_dict(p) for p in raw)
    ret = type_from_dict(payload["ret"]) if "ret" in payload else item.ret
    type_params = item.type_params
    if "type_params" in payload:
        raw = payload["type_params"] or []
        if not isinstance(raw, list):
            raise _Failed("'type_params' must be a list")
        type_params = tuple(type_param_from_dict(tp) for tp in raw)
    return replace(item, params=params, ret=ret, type_params=type_params)


def _with_doc(annotations: tuple, text: object) -> tuple:
    if text is None:
        return drop_annotation(annotations, Doc)
    return set_annotation(annotations, Doc(str(text)))


def _replace_doc(item: Item, member: str | None, payload: object) -> Item:
    if payload is not None and not isinstance(payload, str):
        raise _Failed("replace-doc payload must be a string or null")
    if member is None:
        if isinstance(item, TypeItem):
            return TypeItem(item.typ.with_metadata(replace(item.typ.metadata, docs=payload)))
        return replace(item, metadata=replace(item.metadata, docs=payload))
    if isinstance(item, TypeItem):
        typ = item.typ
        kind = typ.kind
        if isinstance(kind, Struct):
            fields = list(kind.fields)
            for i, f in enumerate(fields):
                if f.name == member:
                    fields[i] = replace(f, annotations=_with_doc(f.annotations, payload))
                    return TypeItem(replace(typ, kind=Struct(tuple(fields))))
        elif isinstance(kind, Enum):
            variants = list(kind.variants)
            for i, v in enumerate(variants):
                if v.name == member:
                    variants[i] = replace(v, annotations=_with_doc(v.annotations, payload))
                    return TypeItem(replace(typ, kind=Enum(tuple(variants))))
        raise _Stale()
    if isinstance(item, Function):
        params = list(item.params)
        for i, p in enumerate(params):
            if p.name == member:
                params[i] = replace(p, annotations=_with_doc(p.annotations, payload))
                return replace(item, params=tuple(params))
    raise _Stale()
