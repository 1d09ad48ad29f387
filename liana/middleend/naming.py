"""Namespace and convention mapping for flat, prefix-named APIs.

C-style libraries name everything `lib_area_verb`. A NamingStrategy says
which prefixes to strip, which prefixes map to which submodule, and which
type is the receiver ("self") of each namespace. The mapper only removes
and regroups parts of existing names; it never makes up new ones.

Example (wlroots):
    strip_prefix: wlr_
    modules: {wlr_output_: output}

    wlr_output_create(void)              -> output::create   static
    wlr_output_destroy(struct wlr_output*) -> output::destroy method of output
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace

from ..context import Context
from ..diagnostics import NamingConflict
from ..frontend.document import to_pascal
from ..ir import (
    Function,
    LinkName,
    Module,
    Receiver,
    Ref,
    Type,
    TypeItem,
    set_annotation,
    transform,
)

CASES = ("keep", "pascal")


@dataclass
class NamingStrategy:
    """Declarative renaming rules for one binding.

    strip_prefix: literal prefix removed from every matching name
    strip_pattern: regular expression removed from the start of names
    modules: name prefix -> submodule path ("a::b")
    self_types: submodule path ("" for the root) -> receiver type name
    case: "pascal" rewrites type names to PascalCase, "keep" leaves them
    """

    strip_prefix: str | None = None
    strip_pattern: str | None = None
    modules: dict[str, str] = field(default_factory=dict)
    self_types: dict[str, str] = field(default_factory=dict)
    case: str = "keep"

    def __post_init__(self) -> None:
        if self.case not in CASES:
            raise ValueError(f"unknown naming case '{self.case}'")
        if self.strip_pattern is not None:
            try:
                re.compile(self.strip_pattern)
            except re.error as e:
                raise ValueError(f"invalid strip_pattern: {e}") from e

    def is_empty(self) -> bool:
        return (
            not self.strip_prefix
            and not self.strip_pattern
            and not self.modules
            and not self.self_types
            and self.case == "keep"
        )

    @classmethod
    def from_dict(cls, data: object) -> NamingStrategy:
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("naming strategy must be a mapping")
        known = {"strip_prefix", "strip_pattern", "modules", "self_types", "case"}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"unknown naming keys: {', '.join(unknown)}")
        for key in ("strip_prefix", "strip_pattern", "case"):
            if data.get(key) is not None and not isinstance(data[key], str):
                raise ValueError(f"naming.{key} must be a string")
        for key in ("modules", "self_types"):
            table = data.get(key) or {}
            if not isinstance(table, dict) or not all(
                isinstance(k, str) and isinstance(v, str) for k, v in table.items()
            ):
                raise ValueError(f"naming.{key} must map strings to strings")
        return cls(
            data.get("strip_prefix"),
            data.get("strip_pattern"),
            dict(data.get("modules") or {}),
            dict(data.get("self_types") or {}),
            data.get("case") or "keep",
        )

    def strip(self, name: str) -> str:
        if self.strip_prefix and name.startswith(self.strip_prefix):
            name = name[len(self.strip_prefix) :]
        if self.strip_pattern:
            m = re.match(self.strip_pattern, name)
            if m is not None:
                name = name[m.end() :]
        return name

    def module_for(self, name: str) -> tuple[str, str] | None:
        """(prefix, module path) of the longest module prefix that name extends."""
        best = None
        for prefix, path in self.modules.items():
            if name.startswith(prefix) and len(name) > len(prefix):
                if best is None or len(prefix) > len(best[0]):
                    best = (prefix, path)
        return best

    def stem_of(self, name: str) -> str | None:
        """Module path whose prefix, minus its separator, is exactly name."""
        for prefix, path in self.modules.items():
            if prefix.rstrip("_") == name:
                return path
        return None


def _split(path: str) -> tuple[str, ...]:
    return tuple(p for p in path.split("::") if p)


def _qualified(path: tuple[str, ...], name: str) -> str:
    return "::".join(path + (name,))


@dataclass
class _Move:
    item: object
    source: tuple[str, ...]
    target: tuple[str, ...]
    old: str
    new: str


def map_names(module: Module, strategy: NamingStrategy, ctx: Context) -> Module:
    """Rename and regroup items per strategy, in place. Returns the module."""
    if strategy.is_empty():
        return module
    moves: list[_Move] = []
    taken: dict[tuple[str, ...], set[str]] = {}
    for path, mod in module.walk():
        taken.setdefault(path, set()).update(item.name for item in mod.items)

    stems: dict[tuple[str, ...], str] = {}
    for path, mod in module.walk():
        for item in list(mod.items):
            old = item.name
            mapped = strategy.module_for(old)
            if mapped is not None:
                prefix, target_path = mapped
                target = path + _split(target_path)
                new = old[len(prefix) :]
            else:
                target = path
                new = strategy.strip(old)
                stem_ns = strategy.stem_of(old)
                if stem_ns is not None and isinstance(item, TypeItem):
                    stems[path + _split(stem_ns)] = _qualified(path, old)
            if isinstance(item, TypeItem) and strategy.case == "pascal":
                new = to_pascal(new)
            moves.append(_Move(item, path, target, old, new))

    # submodule names share the namespace of item names in both targets
    for path in {m.target for m in moves} | {p for p, _ in module.walk()}:
        for depth in range(1, len(path) + 1):
            taken.setdefault(path[: depth - 1], set()).add(path[depth - 1])

    renames: dict[str, str] = {}
    for move in moves:
        if move.new == move.old and move.target == move.source:
            continue
        where = _qualified(move.source, move.old)
        if not move.new.isidentifier():
            ctx.report(NamingConflict(f"rename to '{move.new}' is not a valid name; kept", where))
            move.new, move.target = move.old, move.source
            continue
        names = taken.setdefault(move.target, set())
        if move.new in names:
            ctx.report(
                NamingConflict(f"'{_qualified(move.target, move.new)}' already exists; kept", where)
            )
            move.new, move.target = move.old, move.source
            continue
        taken[move.source].discard(move.old)
        names.add(move.new)
        renames[where] = _qualified(move.target, move.new)

    def rewrite(t: Type) -> Type:
        if isinstance(t.kind, Ref) and t.kind.name in renames:
            return replace(t, kind=Ref(renames[t.kind.name]))
        return t

    self_types = _self_types(strategy, stems, renames)

    for _, mod in list(module.walk()):
        mod.items = []
    for move in moves:
        item = _rewrite_item(move.item, rewrite)
        if isinstance(item, TypeItem):
            if move.new != move.old:
                item = TypeItem(replace(item.typ, name=move.new))
        elif isinstance(item, Function):
            annotations = item.annotations
            if move.new != move.old and item.annotation(LinkName) is None:
                annotations = set_annotation(annotations, LinkName(move.old))
            annotations = set_annotation(annotations, _receiver(item, self_types.get(move.target)))
            item = replace(item, name=move.new, annotations=annotations)
        else:
            item = replace(item, name=move.new)
        module.ensure(move.target).items.append(item)
    return module


def _self_types(
    strategy: NamingStrategy, stems: dict[tuple[str, ...], str], renames: dict[str, str]
) -> dict[tuple[str, ...], str]:
    """Namespace path -> qualified (post-rename) self type name."""
    found = {ns: renames.get(name, name) for ns, name in stems.items()}
    for ns, name in strategy.self_types.items():
        found[_split(ns)] = renames.get(name, name)
    return found


def _receiver(fn: Function, self_type: str | None) -> Receiver:
    if self_type is None:
        return Receiver("static")
    if fn.params:
        typ = fn.params[0].typ
        if typ.is_ref("Ptr") and typ.args:
            typ = typ.args[0]
        if typ.ref_name == self_type:
            return Receiver("method", self_type)
    return Receiver("static", self_type)


def _rewrite_item(item, rewrite):
    if isinstance(item, TypeItem):
        return TypeItem(transform(item.typ, rewrite))
    if isinstance(item, Function):
        params = tuple(replace(p, typ=transform(p.typ, rewrite)) for p in item.params)
        return replace(item, params=params, ret=transform(item.ret, rewrite))
    return replace(item, typ=transform(item.typ, rewrite))
