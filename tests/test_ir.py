"""IR model tests: type identity, annotations, module containers."""

from liana.ir import (
    Const,
    Doc,
    Enum,
    Field,
    Function,
    LinkName,
    Metadata,
    Module,
    Nullable,
    Number,
    Object,
    Other,
    Receiver,
    Ref,
    String,
    Struct,
    Type,
    TypeItem,
    Variant,
    drop_annotation,
    heuristic,
    make_annotation,
    ref,
    set_annotation,
    transform,
    walk_types,
)


def _user() -> TypeItem:
    return TypeItem(
        Type(Struct((Field("id", ref("String")), Field("tags", ref("Vec", ref("String"))))), "User")
    )


def test_type_equality_ignores_metadata():
    a = ref("Vec", ref("String"))
    b = ref("Vec", ref("String")).with_metadata(Metadata(docs="Tag list."))
    assert a == b
    assert hash(a) == hash(b)


def test_type_equality_covers_annotations():
    plain = ref("String")
    nullable = plain.annotate(Nullable())
    assert plain != nullable
    assert nullable.annotation(Nullable) == Nullable(True)


def test_heuristic_metadata():
    meta = heuristic("inline_enum", "inline enum of a, b")
    assert meta.heuristic == "inline_enum"
    assert meta.extra["evidence"] == String("inline enum of a, b")
    assert not meta.is_empty()
    assert Metadata().heuristic is None


def test_set_annotation_replaces_same_kind():
    anns = (Doc("old"), LinkName("wlr_log"))
    anns = set_annotation(anns, Doc("new"))
    assert anns == (Doc("new"), LinkName("wlr_log"))
    anns = set_annotation(anns, Receiver("static"))
    assert anns[-1] == Receiver("static")


def test_set_annotation_other_slots_by_tag():
    anns = (Other("bitfield", 3), Other("x-go-name", "Foo"))
    anns = set_annotation(anns, Other("bitfield", 5))
    assert anns == (Other("bitfield", 5), Other("x-go-name", "Foo"))


def test_drop_annotation():
    anns = (Doc("a"), Nullable(), Doc("b"))
    assert drop_annotation(anns, Doc) == (Nullable(),)


def test_make_annotation_known_and_unknown():
    assert make_annotation("nullable", False) == Nullable(False)
    assert make_annotation("receiver", ("method", "Output")) == Receiver("method", "Output")
    unknown = make_annotation("x-rate-limit", 10)
    assert isinstance(unknown, Other)
    assert unknown.kind == "x-rate-limit"
    assert unknown.payload() == 10


def test_object_entries_sorted():
    a = Object((("b", Number(1)), ("a", Number(2))))
    b = Object((("a", Number(2)), ("b", Number(1))))
    assert a == b
    assert a.keys() == ["a", "b"]
    assert a.get("missing") is None


def test_walk_types_preorder():
    user = _user().typ
    names = [t.ref_name for t in walk_types(user)]
    assert names == [None, "String", "Vec", "String"]


def test_transform_rebuilds_bottom_up():
    user = _user().typ

    def rename(t: Type) -> Type:
        if t.is_ref("String"):
            return ref("Text")
        return t

    out = transform(user, rename)
    assert out.kind.fields[0].typ == ref("Text")
    assert out.kind.fields[1].typ == ref("Vec", ref("Text"))
    assert user.kind.fields[0].typ == ref("String")


def test_struct_shapes():
    assert Struct((Field(None, ref("String")),)).is_newtype
    assert Struct((Field(None, ref("i32")), Field(None, ref("i32")))).is_tuple
    assert not Struct((Field("x", ref("i32")),)).is_tuple


def test_function_signature():
    fn = Function("getUser", (), ref("User"), annotations=(LinkName("get_user"),))
    sig = fn.signature
    assert sig.name == "getUser"
    assert sig.kind.ret == ref("User")
    assert fn.annotation(LinkName).symbol == "get_user"


def test_module_find_and_index():
    module = Module("api", [_user(), Const("MAX", ref("i64"), Number(3))])
    assert module.find("MAX").value == Number(3)
    assert module.index_of("User") == 0
    assert module.index_of("Nope") == -1
    assert module.find("Nope") is None


def test_module_ensure_resolve_walk():
    root = Module("api")
    leaf = root.ensure(("a", "b"))
    leaf.items.append(TypeItem(Type(Enum((Variant("On"),)), "Mode")))
    assert root.resolve(("a", "b")) is leaf
    assert root.resolve(("a", "c")) is None
    assert root.ensure(("a",)) is root.submodule("a")
    assert [path for path, _ in root.walk()] == [(), ("a",), ("a", "b")]


def test_module_copy_is_independent():
    root = Module("api", [_user()])
    root.ensure(("models",))
    copied = root.copy()
    copied.items.clear()
    copied.submodules[0].items.append(_user())
    assert len(root.items) == 1
    assert root.submodules[0].items == []


def test_ref_kind():
    t = ref("Map", ref("String"), ref("i64"))
    assert isinstance(t.kind, Ref)
    assert t.ref_name == "Map"
    assert t.is_ref("Map")
    assert len(t.args) == 2
