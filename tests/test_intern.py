"""Structural interning tests."""

from liana.intern import Interner
from liana.ir import Field, Metadata, Module, Nullable, Other, Struct, Type, TypeItem, ref


def test_equal_types_share_an_id():
    interner = Interner()
    a = interner.intern(ref("Vec", ref("String")))
    b = interner.intern(ref("Vec", ref("String")))
    assert a == b


def test_different_types_get_different_ids():
    interner = Interner()
    assert interner.intern(ref("String")) != interner.intern(ref("String").annotate(Nullable()))


def test_annotation_payload_types_stay_distinct():
    interner = Interner()
    ids = {
        interner.intern(ref("i64").annotate(Other("max", value)))
        for value in (1, True, 1.0, "1", (1,), (True,))
    }
    assert len(ids) == 6
    assert interner.intern(ref("i64").annotate(Other("max", 1))) in ids


def test_metadata_does_not_fork_identity():
    interner = Interner()
    plain = ref("i64")
    documented = ref("i64").with_metadata(Metadata(docs="Count."))
    assert interner.intern(plain) == interner.intern(documented)
    assert interner.canonical(documented) is plain


def test_ids_are_dense_and_nested_types_registered():
    interner = Interner()
    outer = interner.intern(ref("Vec", ref("String")))
    assert len(interner) == 2
    assert ref("String") in interner
    assert interner.get(outer) == ref("Vec", ref("String"))
    assert sorted([outer, interner.intern(ref("String"))]) == [0, 1]


def test_share_returns_canonical_instance():
    interner = Interner()
    first = ref("String")
    second = ref("String")
    interner.intern(first)
    assert interner.share(second) is first


def test_share_keeps_documented_types():
    interner = Interner()
    interner.intern(ref("String"))
    documented = ref("String").with_metadata(Metadata(docs="Display name."))
    assert interner.share(documented) is documented


def test_contains_handles_unhashable():
    interner = Interner()
    assert [] not in interner


def test_intern_module_counts_new_nodes():
    interner = Interner()
    user = TypeItem(Type(Struct((Field("id", ref("String")),)), "User"))
    module = Module("api", [user])
    assert interner.intern_module(module) == 2
    assert interner.intern_module(module) == 0
