"""Liana IR - unified representation for HTTP and FFI API surfaces.

This module defines the complete IR vocabulary and serves as its reference.
Each node's docstring documents its semantics and invariants.

Architecture:
    Schema -> Frontend (openapi | cheader) -> [IR] -> Middleend (confidence,
    naming, overlay) -> Backend -> Target source

Types and everything reachable from a Type are frozen: passes never edit a
node in place, they build replacements with dataclasses.replace(). Modules
and items are plain containers that passes may rearrange.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Callable, ClassVar, Iterator


# ============================================================
# VALUES
#
# Runtime values used for parameter defaults, constants and overlay
# payloads. Object entries are kept sorted so key order never matters.
# ============================================================


@dataclass(frozen=True)
class Value:
    """Base for all values. Abstract."""


@dataclass(frozen=True)
class Null(Value):
    """The null value."""


@dataclass(frozen=True)
class Bool(Value):
    value: bool


@dataclass(frozen=True)
class Number(Value):
    """Integer or floating point number. Bools are never Numbers."""

    value: int | float


@dataclass(frozen=True)
class String(Value):
    value: str


@dataclass(frozen=True)
class List(Value):
    items: tuple[Value, ...] = ()


@dataclass(frozen=True)
class Object(Value):
    """String-keyed mapping.

    Invariants:
    - entries are sorted by key, so two objects built from the same pairs
      in different orders compare equal
    - keys are unique
    """

    entries: tuple[tuple[str, Value], ...] = ()

    def __post_init__(self) -> None:
        merged: dict[str, Value] = {}
        for key, val in self.entries:
            merged[key] = val
        object.__setattr__(self, "entries", tuple(sorted(merged.items())))

    def get(self, key: str, default: Value | None = None) -> Value | None:
        for k, v in self.entries:
            if k == key:
                return v
        return default

    def keys(self) -> list[str]:
        return [k for k, _ in self.entries]


NULL = Null()


# ============================================================
# METADATA
#
# Everything here is excluded from structural equality: two types that
# differ only in docs, source location, confidence or provenance are the
# same type.
# ============================================================


@dataclass(frozen=True)
class SourceLocation:
    """Where a node came from.

    line/column are None when the source format has no positions (JSON).
    """

    file: str
    line: int | None = None
    column: int | None = None

    def __str__(self) -> str:
        if self.line is None:
            return self.file
        if self.column is None:
            return f"{self.file}:{self.line}"
        return f"{self.file}:{self.line}:{self.column}"


@dataclass(frozen=True)
class Provenance:
    """Base for provenance tags. Abstract."""


@dataclass(frozen=True)
class Generated(Provenance):
    """Content derived from the schema document."""


@dataclass(frozen=True)
class Overridden(Provenance):
    """Content patched by an overlay record.

    source is "<overlay document>#<override key>".
    """

    source: str


GENERATED = Generated()


@dataclass(frozen=True)
class Metadata:
    """Documentation, location, confidence and provenance of a node.

    Invariants:
    - confidence is None or within [0.0, 1.0]
    - confidence is only set on nodes produced by heuristic translation
    - extra is never mutated after construction; build a new Metadata
    """

    docs: str | None = None
    source: SourceLocation | None = None
    confidence: float | None = None
    provenance: Provenance = GENERATED
    extra: dict[str, Value] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return (
            self.docs is None
            and self.source is None
            and self.confidence is None
            and isinstance(self.provenance, Generated)
            and not self.extra
        )

    @property
    def heuristic(self) -> str | None:
        """Name of the heuristic rule that produced this node, if any."""
        tag = self.extra.get("heuristic")
        if isinstance(tag, String):
            return tag.value
        return None

    @property
    def overridden(self) -> bool:
        return isinstance(self.provenance, Overridden)

    def with_extra(self, **entries: Value) -> Metadata:
        merged = dict(self.extra)
        merged.update(entries)
        return replace(self, extra=merged)


def heuristic(rule: str, evidence: str | None = None, docs: str | None = None) -> Metadata:
    """Metadata marking a node as the product of a heuristic rule."""
    extra: dict[str, Value] = {"heuristic": String(rule)}
    if evidence is not None:
        extra["evidence"] = String(evidence)
    return Metadata(docs=docs, extra=extra)


# ============================================================
# ANNOTATIONS
#
# The single extension point for bounds, constraints and modifiers.
# Well-known kinds get their own class; anything else decodes to Other.
# The model gives no kind any meaning: producers and backends agree on
# semantics by convention, and backends ignore kinds they do not know.
# ============================================================


@dataclass(frozen=True)
class Annotation:
    """Base for all annotations. Abstract.

    Subclasses set KIND and implement payload()/from_payload() so that
    every annotation serializes as {"kind": KIND, "value": payload}.
    """

    KIND: ClassVar[str] = ""

    @property
    def kind(self) -> str:
        return self.KIND

    def payload(self) -> AnnotationValue | None:
        return None

    @classmethod
    def from_payload(cls, value: AnnotationValue | None) -> Annotation:
        return cls()


@dataclass(frozen=True)
class HttpMethod(Annotation):
    """HTTP verb of an operation, upper-case."""

    KIND: ClassVar[str] = "http_method"
    method: str

    def payload(self) -> AnnotationValue | None:
        return self.method

    @classmethod
    def from_payload(cls, value: AnnotationValue | None) -> Annotation:
        return cls(str(value).upper())


@dataclass(frozen=True)
class HttpPath(Annotation):
    """Path template of an operation, e.g. /users/{id}."""

    KIND: ClassVar[str] = "http_path"
    path: str

    def payload(self) -> AnnotationValue | None:
        return self.path

    @classmethod
    def from_payload(cls, value: AnnotationValue | None) -> Annotation:
        return cls(str(value))


@dataclass(frozen=True)
class HttpLocation(Annotation):
    """Where a parameter travels: path, query, header, cookie or body."""

    KIND: ClassVar[str] = "http_location"
    location: str

    def payload(self) -> AnnotationValue | None:
        return self.location

    @classmethod
    def from_payload(cls, value: AnnotationValue | None) -> Annotation:
        return cls(str(value))


@dataclass(frozen=True)
class CallingConvention(Annotation):
    """Native calling convention of an FFI function (cdecl, stdcall, ...)."""

    KIND: ClassVar[str] = "calling_convention"
    convention: str

    def payload(self) -> AnnotationValue | None:
        return self.convention

    @classmethod
    def from_payload(cls, value: AnnotationValue | None) -> Annotation:
        return cls(str(value))


@dataclass(frozen=True)
class Nullable(Annotation):
    """Whether a pointer or value may be absent."""

    KIND: ClassVar[str] = "nullable"
    nullable: bool = True

    def payload(self) -> AnnotationValue | None:
        return self.nullable

    @classmethod
    def from_payload(cls, value: AnnotationValue | None) -> Annotation:
        return cls(True if value is None else bool(value))


@dataclass(frozen=True)
class Ownership(Annotation):
    """Ownership of a pointer crossing an FFI boundary.

    | mode     | Meaning                                         |
    |----------|-------------------------------------------------|
    | owned    | Caller receives ownership and must release it   |
    | borrowed | Callee only looks; caller keeps ownership       |
    | consumed | Callee takes ownership (destructors)            |
    """

    KIND: ClassVar[str] = "ownership"
    mode: str

    def payload(self) -> AnnotationValue | None:
        return self.mode

    @classmethod
    def from_payload(cls, value: AnnotationValue | None) -> Annotation:
        return cls(str(value))


@dataclass(frozen=True)
class ReadOnly(Annotation):
    """On a Ptr instantiation: the pointee is const."""

    KIND: ClassVar[str] = "const"


@dataclass(frozen=True)
class Format(Annotation):
    """Wire format refinement of a string or number (uuid, date-time, ...)."""

    KIND: ClassVar[str] = "format"
    format: str

    def payload(self) -> AnnotationValue | None:
        return self.format

    @classmethod
    def from_payload(cls, value: AnnotationValue | None) -> Annotation:
        return cls(str(value))


@dataclass(frozen=True)
class Rename(Annotation):
    """Original (wire or native) spelling of a renamed node."""

    KIND: ClassVar[str] = "rename"
    original: str

    def payload(self) -> AnnotationValue | None:
        return self.original

    @classmethod
    def from_payload(cls, value: AnnotationValue | None) -> Annotation:
        return cls(str(value))


@dataclass(frozen=True)
class Bound(Annotation):
    """Type bound on a generic parameter: T: Bound."""

    KIND: ClassVar[str] = "bound"
    typ: Type

    def payload(self) -> AnnotationValue | None:
        return self.typ

    @classmethod
    def from_payload(cls, value: AnnotationValue | None) -> Annotation:
        if not isinstance(value, Type):
            raise ValueError("bound annotation needs a type value")
        return cls(value)


@dataclass(frozen=True)
class Doc(Annotation):
    """Documentation for members (fields, variants, params) without metadata."""

    KIND: ClassVar[str] = "doc"
    text: str

    def payload(self) -> AnnotationValue | None:
        return self.text

    @classmethod
    def from_payload(cls, value: AnnotationValue | None) -> Annotation:
        return cls(str(value))


@dataclass(frozen=True)
class Receiver(Annotation):
    """How a backend binds a function: as a method of self_type or static.

    binding is "method" or "static". self_type is the qualified name of
    the namespace type, or None for free functions.
    """

    KIND: ClassVar[str] = "receiver"
    binding: str
    self_type: str | None = None

    def payload(self) -> AnnotationValue | None:
        if self.self_type is None:
            return (self.binding,)
        return (self.binding, self.self_type)

    @classmethod
    def from_payload(cls, value: AnnotationValue | None) -> Annotation:
        if isinstance(value, str):
            return cls(value)
        if isinstance(value, tuple) and len(value) in (1, 2):
            self_type = str(value[1]) if len(value) == 2 else None
            return cls(str(value[0]), self_type)
        raise ValueError("receiver annotation needs [binding, self_type]")


@dataclass(frozen=True)
class LinkName(Annotation):
    """Native symbol an FFI function links against."""

    KIND: ClassVar[str] = "link_name"
    symbol: str

    def payload(self) -> AnnotationValue | None:
        return self.symbol

    @classmethod
    def from_payload(cls, value: AnnotationValue | None) -> Annotation:
        return cls(str(value))


@dataclass(frozen=True)
class Deprecated(Annotation):
    KIND: ClassVar[str] = "deprecated"


@dataclass(frozen=True)
class Opaque(Annotation):
    """Struct whose layout is hidden (forward-declared only)."""

    KIND: ClassVar[str] = "opaque"


@dataclass(frozen=True)
class Variadic(Annotation):
    """Function accepts trailing C varargs."""

    KIND: ClassVar[str] = "variadic"


@dataclass(frozen=True)
class Repr(Annotation):
    """Memory representation of a struct-like type ("union" for C unions)."""

    KIND: ClassVar[str] = "repr"
    repr: str

    def payload(self) -> AnnotationValue | None:
        return self.repr

    @classmethod
    def from_payload(cls, value: AnnotationValue | None) -> Annotation:
        return cls(str(value))


@dataclass(frozen=True)
class Discriminant(Annotation):
    """Explicit integer value of an enum variant."""

    KIND: ClassVar[str] = "discriminant"
    value: int

    def payload(self) -> AnnotationValue | None:
        return self.value

    @classmethod
    def from_payload(cls, value: AnnotationValue | None) -> Annotation:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("discriminant annotation needs a number")
        return cls(int(value))


@dataclass(frozen=True)
class Length(Annotation):
    """Element count of a fixed-size Array instantiation."""

    KIND: ClassVar[str] = "length"
    length: int

    def payload(self) -> AnnotationValue | None:
        return self.length

    @classmethod
    def from_payload(cls, value: AnnotationValue | None) -> Annotation:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("length annotation needs a number")
        return cls(int(value))


@dataclass(frozen=True)
class NeedsReview(Annotation):
    """Node was translated heuristically below the review threshold."""

    KIND: ClassVar[str] = "needs_review"
    reason: str = ""

    def payload(self) -> AnnotationValue | None:
        return self.reason

    @classmethod
    def from_payload(cls, value: AnnotationValue | None) -> Annotation:
        return cls("" if value is None else str(value))


@dataclass(frozen=True)
class Other(Annotation):
    """Annotation of a kind no backend is required to understand."""

    tag: str
    value: AnnotationValue | None = None

    @property
    def kind(self) -> str:
        return self.tag

    def payload(self) -> AnnotationValue | None:
        return self.value

    # Payloads compare by type as well as value: 1, 1.0 and True differ.
    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Other):
            return NotImplemented
        return self.tag == other.tag and _tagged(self.value) == _tagged(other.value)

    def __hash__(self) -> int:
        return hash((self.tag, _tagged(self.value)))


def _tagged(value: object) -> object:
    if isinstance(value, tuple):
        return ("tuple", tuple(_tagged(v) for v in value))
    return (type(value).__name__, value)


KNOWN_ANNOTATIONS: dict[str, type[Annotation]] = {
    cls.KIND: cls
    for cls in (
        HttpMethod,
        HttpPath,
        HttpLocation,
        CallingConvention,
        Nullable,
        Ownership,
        ReadOnly,
        Format,
        Rename,
        Bound,
        Doc,
        Receiver,
        LinkName,
        Deprecated,
        Opaque,
        Variadic,
        Repr,
        Discriminant,
        Length,
        NeedsReview,
    )
}


def make_annotation(kind: str, value: AnnotationValue | None = None) -> Annotation:
    """Build an annotation from its kind string. Unknown kinds become Other."""
    cls = KNOWN_ANNOTATIONS.get(kind)
    if cls is None:
        return Other(kind, value)
    return cls.from_payload(value)


def _same_slot(a: Annotation, b: Annotation) -> bool:
    if isinstance(a, Other) or isinstance(b, Other):
        return isinstance(a, Other) and isinstance(b, Other) and a.tag == b.tag
    return type(a) is type(b)


def find_annotation(annotations: tuple[Annotation, ...], cls: type[Annotation]) -> Annotation | None:
    """First annotation of the given class, or None."""
    for ann in annotations:
        if isinstance(ann, cls):
            return ann
    return None


def set_annotation(annotations: tuple[Annotation, ...], ann: Annotation) -> tuple[Annotation, ...]:
    """Replace the annotation of the same kind, or append it."""
    out: list[Annotation] = []
    placed = False
    for existing in annotations:
        if _same_slot(existing, ann):
            if not placed:
                out.append(ann)
                placed = True
            continue
        out.append(existing)
    if not placed:
        out.append(ann)
    return tuple(out)


def drop_annotation(annotations: tuple[Annotation, ...], cls: type[Annotation]) -> tuple[Annotation, ...]:
    return tuple(a for a in annotations if not isinstance(a, cls))


# ============================================================
# TYPES
#
# One universal node for anything type-shaped. The kind carries the
# shape; the name is None for anonymous structural types.
# ============================================================


@dataclass(frozen=True)
class TypeKind:
    """Base for all type kinds. Abstract."""


@dataclass(frozen=True)
class Ref(TypeKind):
    """Reference to a named type: builtin (String, i64, Ptr, ...) or declared.

    Qualified names use "::" separators relative to the root module.
    Generic instantiations carry their arguments in Type.args.
    """

    name: str


@dataclass(frozen=True)
class Struct(TypeKind):
    """Product type.

    | Fields                 | Shape                  |
    |------------------------|------------------------|
    | none                   | unit struct            |
    | one positional         | newtype wrapper        |
    | all positional         | tuple struct           |
    | all named              | record struct          |
    """

    fields: tuple[Field, ...] = ()

    @property
    def is_newtype(self) -> bool:
        return len(self.fields) == 1 and self.fields[0].name is None

    @property
    def is_tuple(self) -> bool:
        return bool(self.fields) and all(f.name is None for f in self.fields)


@dataclass(frozen=True)
class Enum(TypeKind):
    """Sum type with named variants."""

    variants: tuple[Variant, ...] = ()


@dataclass(frozen=True)
class FuncType(TypeKind):
    """Function or callback type."""

    params: tuple[Param, ...]
    ret: Type


@dataclass(frozen=True)
class Union(TypeKind):
    """One of the member types."""

    members: tuple[Type, ...] = ()


@dataclass(frozen=True)
class Intersection(TypeKind):
    """All of the member types at once."""

    members: tuple[Type, ...] = ()


@dataclass(frozen=True)
class Type:
    """The universal type node.

    Invariants:
    - equality and hashing cover kind, name, params, args and annotations;
      metadata never takes part, so confidence or doc differences do not
      fork identity
    - args is non-empty only for Ref kinds (generic instantiation)
    - params is non-empty only for named (declared) types
    """

    kind: TypeKind
    name: str | None = None
    params: tuple[TypeParam, ...] = ()
    args: tuple[Type, ...] = ()
    annotations: tuple[Annotation, ...] = ()
    metadata: Metadata = field(default_factory=Metadata, compare=False)

    def __hash__(self) -> int:
        cached = self.__dict__.get("_hash")
        if cached is None:
            cached = hash((self.kind, self.name, self.params, self.args, self.annotations))
            object.__setattr__(self, "_hash", cached)
        return cached

    @property
    def ref_name(self) -> str | None:
        """Referenced name when this is a Ref, else None."""
        if isinstance(self.kind, Ref):
            return self.kind.name
        return None

    def is_ref(self, name: str) -> bool:
        return isinstance(self.kind, Ref) and self.kind.name == name

    def annotation(self, cls: type[Annotation]) -> Annotation | None:
        return find_annotation(self.annotations, cls)

    def annotate(self, ann: Annotation) -> Type:
        return replace(self, annotations=set_annotation(self.annotations, ann))

    def with_metadata(self, metadata: Metadata) -> Type:
        return replace(self, metadata=metadata)

    def children(self) -> Iterator[Type]:
        """Directly nested types, in declaration order."""
        kind = self.kind
        if isinstance(kind, Struct):
            for f in kind.fields:
                yield f.typ
        elif isinstance(kind, Enum):
            for v in kind.variants:
                for f in v.fields:
                    yield f.typ
        elif isinstance(kind, FuncType):
            for p in kind.params:
                yield p.typ
            yield kind.ret
        elif isinstance(kind, (Union, Intersection)):
            yield from kind.members
        for tp in self.params:
            if tp.default is not None:
                yield tp.default
        yield from self.args


@dataclass(frozen=True)
class TypeParam:
    """Generic slot of a declared type: name, bounds, optional default."""

    name: str
    bounds: tuple[Annotation, ...] = ()
    default: Type | None = None


@dataclass(frozen=True)
class Field:
    """Struct or variant member. name None means positional."""

    name: str | None
    typ: Type
    annotations: tuple[Annotation, ...] = ()


@dataclass(frozen=True)
class Variant:
    """Enum variant.

    Empty fields make a unit variant, all-positional a tuple variant,
    all-named a struct variant.
    """

    name: str
    fields: tuple[Field, ...] = ()
    annotations: tuple[Annotation, ...] = ()


@dataclass(frozen=True)
class Param:
    """Function parameter. name None means unnamed (C prototypes)."""

    name: str | None
    typ: Type
    default: Value | None = None
    annotations: tuple[Annotation, ...] = ()


AnnotationValue = Type | str | int | float | bool | tuple


def ref(name: str, *args: Type) -> Type:
    """Reference to a named type, optionally instantiated: ref("Vec", t)."""
    return Type(Ref(name), args=tuple(args))


UNIT = ref("Unit")
ANY = ref("Any")
UNKNOWN = ref("Unknown")
STRING = ref("String")


def transform(typ: Type, fn: Callable[[Type], Type]) -> Type:
    """Rebuild typ bottom-up, applying fn to every node after its children."""
    kind = typ.kind
    if isinstance(kind, Struct):
        kind = Struct(tuple(replace(f, typ=transform(f.typ, fn)) for f in kind.fields))
    elif isinstance(kind, Enum):
        kind = Enum(
            tuple(
                replace(v, fields=tuple(replace(f, typ=transform(f.typ, fn)) for f in v.fields))
                for v in kind.variants
            )
        )
    elif isinstance(kind, FuncType):
        kind = FuncType(
            tuple(replace(p, typ=transform(p.typ, fn)) for p in kind.params),
            transform(kind.ret, fn),
        )
    elif isinstance(kind, Union):
        kind = Union(tuple(transform(m, fn) for m in kind.members))
    elif isinstance(kind, Intersection):
        kind = Intersection(tuple(transform(m, fn) for m in kind.members))
    params = tuple(
        replace(tp, default=transform(tp.default, fn)) if tp.default is not None else tp
        for tp in typ.params
    )
    args = tuple(transform(a, fn) for a in typ.args)
    return fn(replace(typ, kind=kind, params=params, args=args))


def walk_types(typ: Type) -> Iterator[Type]:
    """Pre-order iteration over typ and every nested type."""
    yield typ
    for child in typ.children():
        yield from walk_types(child)


# ============================================================
# ITEMS AND MODULES
# ============================================================


@dataclass
class TypeItem:
    """Declaration of a named type.

    Invariants:
    - typ.name is set
    """

    typ: Type

    @property
    def name(self) -> str:
        return self.typ.name or ""

    @property
    def metadata(self) -> Metadata:
        return self.typ.metadata

    @property
    def annotations(self) -> tuple[Annotation, ...]:
        return self.typ.annotations

    def types(self) -> Iterator[Type]:
        yield self.typ


@dataclass
class Function:
    """Callable declaration: an HTTP operation or a native function.

    Invariants:
    - name is non-empty
    - signature is the function-kind Type of this declaration
    """

    name: str
    params: tuple[Param, ...]
    ret: Type
    type_params: tuple[TypeParam, ...] = ()
    annotations: tuple[Annotation, ...] = ()
    metadata: Metadata = field(default_factory=Metadata)

    @property
    def signature(self) -> Type:
        return Type(
            FuncType(self.params, self.ret),
            name=self.name,
            params=self.type_params,
            annotations=self.annotations,
            metadata=self.metadata,
        )

    def annotation(self, cls: type[Annotation]) -> Annotation | None:
        return find_annotation(self.annotations, cls)

    def types(self) -> Iterator[Type]:
        for p in self.params:
            yield p.typ
        yield self.ret


@dataclass
class Const:
    """Named constant with a type and a value."""

    name: str
    typ: Type
    value: Value
    annotations: tuple[Annotation, ...] = ()
    metadata: Metadata = field(default_factory=Metadata)

    def types(self) -> Iterator[Type]:
        yield self.typ


Item = TypeItem | Function | Const


def item_kind(item: Item) -> str:
    if isinstance(item, TypeItem):
        return "type"
    if isinstance(item, Function):
        return "function"
    return "const"


def item_with_metadata(item: Item, metadata: Metadata) -> Item:
    """Copy of item carrying new metadata."""
    if isinstance(item, TypeItem):
        return TypeItem(item.typ.with_metadata(metadata))
    return replace(item, metadata=metadata)


@dataclass
class Module:
    """A generated unit: items plus nested submodules.

    Invariants:
    - item names are unique within a module
    - submodule names are unique within a module
    - qualified names ("a::b::Item") are relative to the root module
    """

    name: str
    items: list[Item] = field(default_factory=list)
    submodules: list[Module] = field(default_factory=list)
    annotations: tuple[Annotation, ...] = ()
    metadata: Metadata = field(default_factory=Metadata)

    def find(self, name: str) -> Item | None:
        for item in self.items:
            if item.name == name:
                return item
        return None

    def index_of(self, name: str) -> int:
        for i, item in enumerate(self.items):
            if item.name == name:
                return i
        return -1

    def submodule(self, name: str) -> Module | None:
        for sub in self.submodules:
            if sub.name == name:
                return sub
        return None

    def resolve(self, path: tuple[str, ...]) -> Module | None:
        """Submodule at a path relative to this module ("" path is self)."""
        current: Module | None = self
        for part in path:
            if current is None:
                return None
            current = current.submodule(part)
        return current

    def ensure(self, path: tuple[str, ...]) -> Module:
        """Submodule at path, creating missing levels."""
        current = self
        for part in path:
            sub = current.submodule(part)
            if sub is None:
                sub = Module(part)
                current.submodules.append(sub)
            current = sub
        return current

    def walk(self, prefix: tuple[str, ...] = ()) -> Iterator[tuple[tuple[str, ...], Module]]:
        """Pre-order iteration yielding (path, module); the root has path ()."""
        yield prefix, self
        for sub in self.submodules:
            yield from sub.walk(prefix + (sub.name,))

    def copy(self) -> Module:
        """Copy of the container structure. Frozen nodes are shared."""
        return Module(
            self.name,
            [replace(item) for item in self.items],
            [sub.copy() for sub in self.submodules],
            self.annotations,
            self.metadata,
        )
