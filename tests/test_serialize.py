"""IR serialization tests."""

import pytest

from liana.frontend import ParseOptions, parse_openapi
from liana.ir import (
    Const,
    Function,
    Number,
    Other,
    Overridden,
    Receiver,
    Struct,
    TypeItem,
    ref,
)
from liana.serialize import (
    format_type,
    item_from_dict,
    metadata_from_dict,
    module_from_dict,
    module_to_dict,
    parse_type_expr,
    type_from_dict,
    type_to_dict,
    value_from_py,
    value_to_py,
)


def test_parse_type_expr_nested():
    typ = parse_type_expr("Result<Vec<User>, ApiError>")
    assert typ == ref("Result", ref("Vec", ref("User")), ref("ApiError"))


def test_parse_type_expr_qualified():
    assert parse_type_expr("models::User") == ref("models::User")


@pytest.mark.parametrize("text", ["", "Vec<", "Vec<String", "Map<String,>", "a b"])
def test_parse_type_expr_rejects(text):
    with pytest.raises(ValueError):
        parse_type_expr(text)


def test_format_type():
    assert format_type(ref("Map", ref("String"), ref("i64"))) == "Map<String, i64>"


def test_type_dict_omits_empty_fields():
    assert type_to_dict(ref("String")) == {"kind": {"_type": "Ref", "name": "String"}}


def test_type_from_dict_accepts_expressions():
    data = {"kind": {"_type": "Struct", "fields": [{"name": "id", "type": "Uuid"}]}, "name": "User"}
    typ = type_from_dict(data)
    assert typ.name == "User"
    assert isinstance(typ.kind, Struct)
    assert typ.kind.fields[0].typ == ref("Uuid")


def test_unknown_kind_is_an_error():
    with pytest.raises(ValueError, match="unknown type kind"):
        type_from_dict({"kind": {"_type": "Tuple"}})


def test_unknown_annotation_becomes_other():
    typ = type_from_dict({"kind": {"_type": "Ref", "name": "i64"}, "annotations": [{"kind": "x-unit", "value": "ms"}]})
    assert typ.annotations == (Other("x-unit", "ms"),)


def test_item_from_dict_function():
    item = item_from_dict(
        {
            "item": "function",
            "name": "destroy",
            "params": [{"name": "output", "type": "Ptr<Output>"}],
            "ret": "Unit",
            "annotations": [{"kind": "receiver", "value": ["method", "Output"]}],
        }
    )
    assert isinstance(item, Function)
    assert item.params[0].typ == ref("Ptr", ref("Output"))
    assert item.annotation(Receiver) == Receiver("method", "Output")


def test_item_from_dict_const():
    item = item_from_dict({"item": "const", "name": "MAX", "type": "i64", "value": 32})
    assert isinstance(item, Const)
    assert item.value == Number(32)


def test_item_from_dict_rejects_anonymous_type():
    with pytest.raises(ValueError, match="named type"):
        item_from_dict({"item": "type", "type": {"kind": {"_type": "Struct"}}})


def test_metadata_provenance_and_confidence():
    meta = metadata_from_dict({"confidence": 0.5, "provenance": {"overridden": "overlay.yaml#fix"}})
    assert meta.confidence == 0.5
    assert meta.provenance == Overridden("overlay.yaml#fix")
    with pytest.raises(ValueError):
        metadata_from_dict({"confidence": 1.5})


def test_values_round_trip_plain_data():
    data = {"b": [1, 2.5, None, True], "a": "x"}
    assert value_to_py(value_from_py(data)) == {"a": "x", "b": [1, 2.5, None, True]}


def test_module_dict_is_stable(ctx, users_doc):
    module = parse_openapi(users_doc, ctx, ParseOptions("users.json")).module
    data = module_to_dict(module)
    assert data["name"] == "users"
    assert [i["item"] for i in data["items"]] == ["type", "type", "type", "function"]
    assert module_to_dict(module_from_dict(data)) == data


def test_alias_item_keeps_its_name():
    data = {"item": "type", "type": {"kind": {"_type": "Ref", "name": "String"}, "name": "Name"}}
    item = item_from_dict(data)
    assert isinstance(item, TypeItem)
    assert item.name == "Name"
    assert module_to_dict(module_from_dict({"name": "m", "items": [data]}))["items"] == [data]
