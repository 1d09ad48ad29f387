"""OpenAPI frontend tests."""

import pytest

from liana.diagnostics import FatalParseError
from liana.frontend import ParseOptions, parse_openapi
from liana.ir import (
    Doc,
    Enum,
    Function,
    HttpLocation,
    HttpMethod,
    HttpPath,
    Intersection,
    Rename,
    Struct,
    TypeItem,
    Union,
)
from liana.serialize import format_type


def _parse(doc, ctx):
    return parse_openapi(doc, ctx, ParseOptions("openapi.json")).module


def _minimal(**extra) -> dict:
    doc = {"openapi": "3.0.3", "info": {"title": "Pets", "version": "1"}, "paths": {}}
    doc.update(extra)
    return doc


def test_get_user_operation(ctx, users_doc):
    module = _parse(users_doc, ctx)
    assert module.name == "users"
    assert [item.name for item in module.items] == ["User", "GetUserPath", "GetUserQuery", "getUser"]

    fn = module.find("getUser")
    assert isinstance(fn, Function)
    assert fn.annotation(HttpMethod) == HttpMethod("GET")
    assert fn.annotation(HttpPath) == HttpPath("/users/{id}")
    assert [(p.name, format_type(p.typ)) for p in fn.params] == [("path", "GetUserPath"), ("query", "GetUserQuery")]
    assert format_type(fn.ret) == "Result<User, ApiError>"
    assert fn.metadata.docs == "Fetch one user."
    assert ctx.diagnostics.ok()


def test_parameter_sets(ctx, users_doc):
    module = _parse(users_doc, ctx)
    path_fields = module.find("GetUserPath").typ.kind.fields
    assert [(f.name, format_type(f.typ)) for f in path_fields] == [("id", "String")]
    assert path_fields[0].annotations == (HttpLocation("path"),)
    query_fields = module.find("GetUserQuery").typ.kind.fields
    assert [(f.name, format_type(f.typ)) for f in query_fields] == [("verbose", "Option<bool>")]


def test_optional_properties(ctx, users_doc):
    user = _parse(users_doc, ctx).find("User")
    assert isinstance(user, TypeItem)
    assert user.metadata.docs == "A registered user."
    assert [(f.name, format_type(f.typ)) for f in user.typ.kind.fields] == [
        ("id", "String"),
        ("displayName", "Option<String>"),
    ]


def test_header_parameters_get_their_own_struct(ctx, users_doc):
    op = users_doc["paths"]["/users/{id}"]["get"]
    op["parameters"].append({"name": "X-Trace", "in": "header", "schema": {"type": "string"}})
    module = _parse(users_doc, ctx)
    assert module.find("GetUserHeaders") is not None
    assert [p.name for p in module.find("getUser").params] == ["path", "query", "headers"]


def test_request_body_and_created_response(ctx):
    doc = _minimal(
        paths={
            "/pets": {
                "post": {
                    "operationId": "addPet",
                    "requestBody": {
                        "content": {"application/json": {"schema": {"$ref": "#/components/schemas/Pet"}}}
                    },
                    "responses": {
                        "201": {"content": {"application/json": {"schema": {"$ref": "#/components/schemas/Pet"}}}}
                    },
                }
            }
        },
        components={"schemas": {"Pet": {"type": "object", "properties": {"name": {"type": "string"}}}}},
    )
    fn = _parse(doc, ctx).find("addPet")
    body = fn.params[-1]
    assert body.name == "body"
    assert body.annotations == (HttpLocation("body"),)
    assert format_type(fn.ret) == "Result<Pet, ApiError>"


def test_no_content_response_is_unit(ctx):
    doc = _minimal(paths={"/pets/{id}": {"delete": {"operationId": "deletePet", "responses": {"204": {}}}}})
    fn = _parse(doc, ctx).find("deletePet")
    assert format_type(fn.ret) == "Result<Unit, ApiError>"


def test_missing_operation_id_is_synthesized(ctx):
    doc = _minimal(paths={"/pets": {"get": {"responses": {}}}})
    fn = _parse(doc, ctx).items[-1]
    assert fn.name == "get__pets"
    assert fn.metadata.heuristic == "synthesized_name"


def test_string_enum(ctx):
    doc = _minimal(components={"schemas": {"Status": {"type": "string", "enum": ["in-stock", "sold"]}}})
    status = _parse(doc, ctx).find("Status").typ
    assert isinstance(status.kind, Enum)
    assert [v.name for v in status.kind.variants] == ["InStock", "Sold"]
    assert status.kind.variants[0].annotations == (Rename("in-stock"),)
    assert status.metadata.heuristic is None


def test_inline_enum_is_marked_heuristic(ctx):
    schema = {"type": "object", "properties": {"state": {"type": "string", "enum": ["on", "off"]}}}
    doc = _minimal(components={"schemas": {"Switch": schema}})
    field = _parse(doc, ctx).find("Switch").typ.kind.fields[0]
    inner = field.typ.args[0]
    assert isinstance(inner.kind, Enum)
    assert inner.metadata.heuristic == "inline_enum"


def test_composition(ctx):
    doc = _minimal(
        components={
            "schemas": {
                "A": {"type": "object", "properties": {"a": {"type": "string"}}},
                "AnyOfIt": {"oneOf": [{"$ref": "#/components/schemas/A"}, {"type": "integer"}]},
                "Both": {"allOf": [{"$ref": "#/components/schemas/A"}, {"type": "object", "properties": {}}]},
                "MaybeA": {"oneOf": [{"$ref": "#/components/schemas/A"}, {"type": "null"}]},
            }
        }
    )
    module = _parse(doc, ctx)
    assert isinstance(module.find("AnyOfIt").typ.kind, Union)
    assert isinstance(module.find("Both").typ.kind, Intersection)
    maybe = module.find("MaybeA").typ
    assert len(maybe.kind.members) == 1


def test_maps_arrays_and_formats(ctx):
    schema = {
        "type": "object",
        "required": ["labels", "ids", "at", "ratio"],
        "properties": {
            "labels": {"type": "object", "additionalProperties": {"type": "string"}},
            "ids": {"type": "array", "items": {"type": "integer", "format": "int32"}},
            "at": {"type": "string", "format": "date-time", "description": "Creation time."},
            "ratio": {"type": "number", "format": "float"},
        },
    }
    fields = _parse(_minimal(components={"schemas": {"Row": schema}}), ctx).find("Row").typ.kind.fields
    assert [format_type(f.typ) for f in fields] == ["Map<String, String>", "Vec<i32>", "String", "f32"]
    assert fields[2].annotations == (Doc("Creation time."),)


def test_swagger_definitions(ctx):
    doc = {
        "swagger": "2.0",
        "info": {"title": "Legacy Store", "version": "1"},
        "paths": {},
        "definitions": {"Order": {"type": "object", "properties": {"id": {"type": "integer"}}}},
    }
    module = _parse(doc, ctx)
    assert module.name == "legacy_store"
    assert isinstance(module.find("Order").typ.kind, Struct)


def test_unresolvable_parameter_is_skipped_with_warning(ctx, users_doc):
    op = users_doc["paths"]["/users/{id}"]["get"]
    op["parameters"].append({"$ref": "#/components/parameters/Missing"})
    module = _parse(users_doc, ctx)
    assert module.find("getUser") is not None
    warnings = ctx.diagnostics.with_code("local-parse")
    assert len(warnings) == 1
    assert "Missing" in warnings[0].message


def test_yaml_text_input(ctx):
    text = "openapi: 3.0.3\ninfo:\n  title: Tiny\n  version: '1'\npaths: {}\n"
    module = parse_openapi(text, ctx, ParseOptions("tiny.yaml")).module
    assert module.name == "tiny"
    assert module.items == []


def test_module_name_override(ctx, users_doc):
    module = parse_openapi(users_doc, ctx, ParseOptions("users.json", module_name="accounts")).module
    assert module.name == "accounts"


@pytest.mark.parametrize(
    "doc",
    [
        [],
        {"info": {"title": "x"}, "paths": {}},
        {"openapi": "3.0.0", "paths": {}},
        {"openapi": "3.0.0", "info": {"title": "x"}},
    ],
)
def test_structurally_invalid_documents(ctx, doc):
    with pytest.raises(FatalParseError):
        _parse(doc, ctx)


def test_invalid_json_text(ctx):
    with pytest.raises(FatalParseError) as exc:
        parse_openapi('{"openapi": ', ctx, ParseOptions("broken.json"))
    assert exc.value.line == 1


def test_path_level_parameters_are_merged(ctx):
    shared = [{"name": "id", "in": "path", "required": True, "schema": {"type": "integer"}}]
    own = [{"name": "id", "in": "path", "required": True, "schema": {"type": "string"}}]
    doc = _minimal(
        paths={
            "/pets/{id}": {
                "parameters": shared,
                "get": {"operationId": "getPet", "parameters": own, "responses": {}},
                "delete": {"operationId": "deletePet", "responses": {}},
            }
        }
    )
    module = _parse(doc, ctx)
    assert [format_type(f.typ) for f in module.find("GetPetPath").typ.kind.fields] == ["String"]
    assert [format_type(f.typ) for f in module.find("DeletePetPath").typ.kind.fields] == ["i64"]


def test_untyped_schema_falls_back_to_any(ctx):
    doc = _minimal(components={"schemas": {"Blob": {"description": "Anything at all."}}})
    blob = _parse(doc, ctx).find("Blob")
    assert format_type(blob.typ) == "Any"
    assert blob.typ.metadata.heuristic == "untyped_schema"


def test_parameter_struct_avoids_schema_names(ctx):
    doc = _minimal(
        paths={
            "/a/{id}": {
                "get": {
                    "operationId": "getA",
                    "parameters": [{"name": "id", "in": "path", "required": True, "schema": {"type": "string"}}],
                    "responses": {},
                }
            }
        },
        components={"schemas": {"GetAPath": {"type": "object", "properties": {"unrelated": {"type": "boolean"}}}}},
    )
    module = _parse(doc, ctx)
    fn = module.find("getA")
    assert [format_type(p.typ) for p in fn.params] == ["GetAPath2", "GetAQuery"]
    assert [f.name for f in module.find("GetAPath2").typ.kind.fields] == ["id"]
    assert [f.name for f in module.find("GetAPath").typ.kind.fields] == ["unrelated"]
    assert "'GetAPath' is already declared; using 'GetAPath2'" in [d.message for d in ctx.diagnostics.warnings()]
