"""OpenAPI (2 and 3) documents to IR.

Schemas become named TypeItems, operations become Functions preceded by
their parameter-set structs. Anonymous schemas are inlined where they are
used; backends name them when they need a declaration.

| OpenAPI                      | IR                                   |
|------------------------------|--------------------------------------|
| string                       | String (+ format)                    |
| string enum                  | Enum of unit variants (+ rename)     |
| integer (int32)              | i64 (i32)                            |
| number (float)               | f64 (f32)                            |
| boolean                      | bool                                 |
| array                        | Vec<item>                            |
| object with properties       | Struct (optional -> Option<T>)       |
| object, additionalProperties | Map<String, V>                       |
| oneOf / anyOf                | Union                                |
| allOf                        | Intersection                         |
| not / untyped                | Any                                  |
| $ref                         | Ref(name)                            |
"""

from __future__ import annotations

from ..context import Context
from ..diagnostics import FatalParseError, LocalParseWarning
from ..ir import (
    ANY,
    Annotation,
    Deprecated,
    Doc,
    Enum,
    Field,
    Format,
    Function,
    HttpLocation,
    HttpMethod,
    HttpPath,
    Intersection,
    Metadata,
    Module,
    Nullable,
    Other,
    Param,
    Rename,
    SourceLocation,
    Struct,
    Type,
    TypeItem,
    Union,
    Variant,
    heuristic,
    ref,
)
from .document import ParseOptions, ParseResult, load_document, to_module_name, to_pascal

HTTP_METHODS = ("get", "post", "put", "delete", "patch", "head", "options", "trace")

PARAM_LOCATIONS = ("path", "query", "header", "cookie")

# Location -> (function param name, struct suffix, always present)
_PARAM_SETS = {
    "path": ("path", "Path", True),
    "query": ("query", "Query", True),
    "header": ("headers", "Headers", False),
    "cookie": ("cookies", "Cookies", False),
}

_SCHEMA_REF_PREFIXES = ("#/components/schemas/", "#/definitions/")


def parse_openapi(document: object, ctx: Context, options: ParseOptions | None = None) -> ParseResult:
    """Translate a decoded (or raw text) OpenAPI document into a root Module.

    Raises FatalParseError when the document lacks the top-level structure
    of an OpenAPI or Swagger document.
    """
    if options is None:
        options = ParseOptions()
    if isinstance(document, str):
        document = load_document(document, options.source)
    converter = _Converter(document, ctx, options)
    module = converter.convert()
    ctx.interner.intern_module(module)
    return ParseResult(module, converter.diagnostics)


def _is_json_media(media_type: str) -> bool:
    base = media_type.split(";", 1)[0].strip().lower()
    return base == "application/json" or base.endswith("+json")


class _Converter:
    def __init__(self, doc: object, ctx: Context, options: ParseOptions) -> None:
        self.ctx = ctx
        self.options = options
        self.diagnostics: list = []
        self.items: list = []
        self.names: set[str] = set()
        self.doc = self._validate(doc)
        components = self.doc.get("components")
        self.components: dict = components if isinstance(components, dict) else {}

    # ------------------------------------------------------------
    # document structure
    # ------------------------------------------------------------

    def _validate(self, doc: object) -> dict:
        source = self.options.source
        if not isinstance(doc, dict):
            raise FatalParseError(f"{source}: document must be a mapping")
        if "openapi" not in doc and "swagger" not in doc:
            raise FatalParseError(f"{source}: missing 'openapi' or 'swagger' version field")
        info = doc.get("info")
        if not isinstance(info, dict) or not isinstance(info.get("title"), str):
            raise FatalParseError(f"{source}: 'info.title' is required")
        if not isinstance(doc.get("paths"), dict):
            raise FatalParseError(f"{source}: 'paths' must be a mapping")
        return doc

    def warn(self, message: str, where: str) -> None:
        diag = LocalParseWarning(message, where)
        self.diagnostics.append(diag)
        self.ctx.report(diag)

    def placeholder(self, message: str, where: str) -> Type:
        self.warn(message, where)
        return ref("Unknown").with_metadata(heuristic("unknown_fragment", message))

    def share(self, name: str, *args: Type) -> Type:
        return self.ctx.interner.share(ref(name, *args))

    def convert(self) -> Module:
        info = self.doc["info"]
        name = self.options.module_name or to_module_name(info["title"]) or "api"
        schemas = self.components.get("schemas") if "components" in self.doc else self.doc.get("definitions")
        if schemas is None:
            schemas = {}
        if not isinstance(schemas, dict):
            self.warn("schema definitions must be a mapping", "#/components/schemas")
            schemas = {}
        for schema_name, schema in schemas.items():
            where = f"#/components/schemas/{schema_name}"
            typ = self.convert_schema(schema, where, name=str(schema_name))
            self.add_item(TypeItem(typ), where)
        for path, path_item in self.doc["paths"].items():
            self.convert_path_item(str(path), path_item)
        docs = info.get("description") if isinstance(info.get("description"), str) else None
        return Module(
            name,
            self.items,
            metadata=Metadata(docs=docs, source=SourceLocation(self.options.source)),
        )

    def add_item(self, item, where: str) -> None:
        if item.name in self.names:
            self.warn(f"duplicate declaration '{item.name}' skipped", where)
            return
        self.names.add(item.name)
        self.items.append(item)

    def fresh_name(self, name: str, where: str) -> str:
        """name, or name with the smallest numeric suffix not yet declared."""
        if name not in self.names:
            return name
        n = 2
        while f"{name}{n}" in self.names:
            n += 1
        self.warn(f"'{name}' is already declared; using '{name}{n}'", where)
        return f"{name}{n}"

    # ------------------------------------------------------------
    # schemas
    # ------------------------------------------------------------

    def resolve_component(self, node: object, section: str, where: str) -> object:
        """Follow a $ref into components/<section> (or the Swagger 2 equivalent)."""
        seen: set[str] = set()
        while isinstance(node, dict) and "$ref" in node:
            target = node["$ref"]
            if not isinstance(target, str) or target in seen:
                self.warn(f"unresolvable reference {target!r}", where)
                return None
            seen.add(target)
            for prefix, table in (
                (f"#/components/{section}/", self.components.get(section)),
                (f"#/{section}/", self.doc.get(section)),
            ):
                if target.startswith(prefix) and isinstance(table, dict):
                    node = table.get(target[len(prefix):])
                    break
            else:
                self.warn(f"unresolvable reference '{target}'", where)
                return None
            if node is None:
                self.warn(f"reference '{target}' names nothing", where)
                return None
        return node

    def convert_schema(self, schema: object, where: str, name: str | None = None) -> Type:
        if not isinstance(schema, dict):
            typ = self.placeholder("schema must be a mapping", where)
            return typ if name is None else Type(typ.kind, name, metadata=typ.metadata)
        typ, nullable = self._schema_shape(schema, where, name)
        annotations = list(typ.annotations)
        if schema.get("deprecated") is True:
            annotations.append(Deprecated())
        if nullable and name is not None:
            annotations.append(Nullable())
        docs = schema.get("description") if isinstance(schema.get("description"), str) else None
        meta = typ.metadata
        if docs is not None:
            meta = Metadata(docs=docs, source=meta.source, confidence=meta.confidence, extra=meta.extra)
        typ = Type(typ.kind, name, typ.params, typ.args, tuple(annotations), meta)
        if nullable and name is None:
            return self.share("Option", typ)
        if meta.is_empty():
            return self.ctx.interner.share(typ)
        return typ

    def _schema_shape(self, schema: dict, where: str, name: str | None) -> tuple[Type, bool]:
        """Translated type (unnamed) and whether the schema admits null."""
        nullable = schema.get("nullable") is True
        if "$ref" in schema:
            target = schema["$ref"]
            if isinstance(target, str):
                for prefix in _SCHEMA_REF_PREFIXES:
                    if target.startswith(prefix) and len(target) > len(prefix):
                        return ref(target[len(prefix):]), nullable
            return self.placeholder(f"unsupported reference {target!r}", where), nullable
        for key, kind in (("oneOf", Union), ("anyOf", Union), ("allOf", Intersection)):
            if key in schema:
                members = schema[key]
                if not isinstance(members, list):
                    return self.placeholder(f"'{key}' must be a list", where), nullable
                converted = []
                for i, member in enumerate(members):
                    if isinstance(member, dict) and member.get("type") == "null":
                        nullable = True
                        continue
                    converted.append(self.convert_schema(member, f"{where}/{key}/{i}"))
                return Type(kind(tuple(converted))), nullable
        if "not" in schema:
            return ANY, nullable
        schema_type = schema.get("type")
        if isinstance(schema_type, list):
            kinds = [t for t in schema_type if t != "null"]
            nullable = nullable or len(kinds) != len(schema_type)
            if len(kinds) == 1:
                schema_type = kinds[0]
            elif not kinds:
                return ANY, nullable
            else:
                members = tuple(self.convert_schema({**schema, "type": t}, where) for t in kinds)
                return Type(Union(members)), nullable
        if "enum" in schema and schema_type in (None, "string"):
            values = schema["enum"]
            if isinstance(values, list) and values and all(isinstance(v, str) or v is None for v in values):
                nullable = nullable or None in values
                return self._string_enum([v for v in values if v is not None], where, name), nullable
        if schema_type is None:
            if isinstance(schema.get("properties"), dict):
                return self._object(schema, where, name), nullable
            return ANY.with_metadata(heuristic("untyped_schema", "schema declares no type")), nullable
        if schema_type == "string":
            fmt = schema.get("format")
            if isinstance(fmt, str):
                return ref("String").annotate(Format(fmt)), nullable
            return self.share("String"), nullable
        if schema_type == "integer":
            typ = self.share("i32" if schema.get("format") == "int32" else "i64")
            return self._allowed_values(typ, schema), nullable
        if schema_type == "number":
            typ = self.share("f32" if schema.get("format") == "float" else "f64")
            return self._allowed_values(typ, schema), nullable
        if schema_type == "boolean":
            return self.share("bool"), nullable
        if schema_type == "array":
            items = schema.get("items")
            if items is None:
                item = ANY.with_metadata(heuristic("untyped_schema", "array declares no items"))
            else:
                item = self.convert_schema(items, where + "/items")
            return ref("Vec", item), nullable
        if schema_type == "object":
            return self._object(schema, where, name), nullable
        if schema_type == "null":
            return self.share("Unit"), False
        return self.placeholder(f"unrecognized schema type {schema_type!r}", where), nullable

    def _allowed_values(self, typ: Type, schema: dict) -> Type:
        values = schema.get("enum")
        if isinstance(values, list) and values and all(isinstance(v, (int, float)) for v in values):
            return typ.annotate(Other("allowed_values", tuple(values)))
        return typ

    def _string_enum(self, values: list[str], where: str, name: str | None) -> Type:
        variants = []
        taken: set[str] = set()
        for value in values:
            variant_name = to_pascal(value)
            if not variant_name or not variant_name[0].isalpha():
                variant_name = "Value" + variant_name
            base = variant_name
            n = 2
            while variant_name in taken:
                variant_name = f"{base}{n}"
                n += 1
            taken.add(variant_name)
            variants.append(Variant(variant_name, annotations=(Rename(value),)))
        typ = Type(Enum(tuple(variants)))
        if name is None:
            evidence = "inline enum of " + ", ".join(values[:4]) + (", ..." if len(values) > 4 else "")
            typ = typ.with_metadata(heuristic("inline_enum", evidence))
        return typ

    def _object(self, schema: dict, where: str, name: str | None) -> Type:
        properties = schema.get("properties")
        additional = schema.get("additionalProperties")
        if not properties and additional not in (None, False):
            if isinstance(additional, dict):
                value = self.convert_schema(additional, where + "/additionalProperties")
            else:
                value = ANY
            return ref("Map", self.share("String"), value)
        if properties is None:
            properties = {}
        if not isinstance(properties, dict):
            return self.placeholder("'properties' must be a mapping", where)
        required = schema.get("required")
        required_names = set(required) if isinstance(required, list) else set()
        fields = []
        for prop, prop_schema in properties.items():
            prop_where = f"{where}/properties/{prop}"
            typ = self.convert_schema(prop_schema, prop_where)
            if prop not in required_names and not typ.is_ref("Option"):
                typ = self.share("Option", typ)
            annotations: list[Annotation] = []
            if isinstance(prop_schema, dict):
                if isinstance(prop_schema.get("description"), str):
                    annotations.append(Doc(prop_schema["description"]))
                if prop_schema.get("deprecated") is True:
                    annotations.append(Deprecated())
            fields.append(Field(str(prop), typ, tuple(annotations)))
        return Type(Struct(tuple(fields)))

    # ------------------------------------------------------------
    # operations
    # ------------------------------------------------------------

    def convert_path_item(self, path: str, path_item: object) -> None:
        if not isinstance(path_item, dict):
            self.warn("path item must be a mapping", path)
            return
        if "$ref" in path_item:
            self.warn("path item references are not supported", path)
            return
        shared = path_item.get("parameters") or []
        if not isinstance(shared, list):
            self.warn("'parameters' must be a list", path)
            shared = []
        for method in HTTP_METHODS:
            if method not in path_item:
                continue
            op = path_item[method]
            where = f"{method.upper()} {path}"
            if not isinstance(op, dict):
                self.warn("operation must be a mapping", where)
                continue
            self.convert_operation(path, method, op, shared, where)

    def convert_operation(self, path: str, method: str, op: dict, shared: list, where: str) -> None:
        op_id = op.get("operationId")
        meta_extra = None
        if isinstance(op_id, str) and op_id:
            name = op_id
        else:
            name = to_module_name(f"{method}_{path}")
            meta_extra = heuristic("synthesized_name", f"no operationId for {method.upper()} {path}")
        if name in self.names:
            self.warn(f"duplicate operation name '{name}' skipped", where)
            return
        pascal = to_pascal(name)
        params = self._merged_parameters(shared, op.get("parameters") or [], where)
        sets: dict[str, list[Field]] = {loc: [] for loc in PARAM_LOCATIONS}
        body: Type | None = None
        for param in params:
            location = param["in"]
            if location == "body":
                body = self.convert_schema(param.get("schema"), f"{where} body")
                continue
            typ = self._parameter_type(param, f"{where} {param['name']}")
            if location != "path" and param.get("required") is not True and not typ.is_ref("Option"):
                typ = self.share("Option", typ)
            annotations: list[Annotation] = [HttpLocation(location)]
            if isinstance(param.get("description"), str):
                annotations.append(Doc(param["description"]))
            if param.get("deprecated") is True:
                annotations.append(Deprecated())
            sets[location].append(Field(param["name"], typ, tuple(annotations)))

        fn_params: list[Param] = []
        for location in PARAM_LOCATIONS:
            param_name, suffix, always = _PARAM_SETS[location]
            if not sets[location] and not always:
                continue
            struct_name = self.fresh_name(pascal + suffix, where)
            self.add_item(TypeItem(Type(Struct(tuple(sets[location])), struct_name)), where)
            fn_params.append(Param(param_name, ref(struct_name), annotations=(HttpLocation(location),)))

        request_body = op.get("requestBody")
        if request_body is not None:
            body = self._request_body(request_body, where)
        if body is not None:
            fn_params.append(Param("body", body, annotations=(HttpLocation("body"),)))

        ret = ref("Result", self._response_type(op.get("responses"), where), self.share("ApiError"))
        annotations: list[Annotation] = [HttpMethod(method.upper()), HttpPath(path)]
        if op.get("deprecated") is True:
            annotations.append(Deprecated())
        docs = op.get("description") or op.get("summary")
        meta = meta_extra if meta_extra is not None else Metadata()
        meta = Metadata(
            docs=docs if isinstance(docs, str) else None,
            source=SourceLocation(self.options.source),
            extra=meta.extra,
        )
        self.add_item(Function(name, tuple(fn_params), ret, annotations=tuple(annotations), metadata=meta), where)

    def _merged_parameters(self, shared: list, own: object, where: str) -> list[dict]:
        if not isinstance(own, list):
            self.warn("'parameters' must be a list", where)
            own = []
        merged: dict[tuple[str, str], dict] = {}
        for raw in list(shared) + list(own):
            param = self.resolve_component(raw, "parameters", where)
            if param is None:
                continue
            if not isinstance(param, dict):
                self.warn("parameter must be a mapping", where)
                continue
            name = param.get("name")
            location = param.get("in")
            if not isinstance(name, str) or not name:
                self.warn("parameter without a name skipped", where)
                continue
            if location not in PARAM_LOCATIONS and location != "body":
                self.warn(f"parameter '{name}' has unsupported location {location!r}", where)
                continue
            merged[(name, location)] = param
        return list(merged.values())

    def _parameter_type(self, param: dict, where: str) -> Type:
        if "schema" in param:
            return self.convert_schema(param["schema"], where)
        if "type" in param:
            return self.convert_schema(param, where)
        content = param.get("content")
        if isinstance(content, dict):
            for media_type, media in content.items():
                if _is_json_media(str(media_type)) and isinstance(media, dict) and "schema" in media:
                    return self.convert_schema(media["schema"], where)
        return self.share("String")

    def _request_body(self, raw: object, where: str) -> Type | None:
        body = self.resolve_component(raw, "requestBodies", where)
        if not isinstance(body, dict):
            return None
        content = body.get("content")
        if not isinstance(content, dict):
            return None
        for media_type, media in content.items():
            if _is_json_media(str(media_type)) and isinstance(media, dict) and "schema" in media:
                return self.convert_schema(media["schema"], f"{where} body")
        return None

    def _response_type(self, responses: object, where: str) -> Type:
        if not isinstance(responses, dict):
            return self.share("Unit")
        chosen = None
        keys = [str(k) for k in responses]
        if "200" in keys:
            chosen = "200"
        else:
            for key in keys:
                if len(key) == 3 and key.startswith("2"):
                    chosen = key
                    break
            if chosen is None and "default" in keys:
                chosen = "default"
        if chosen is None:
            return self.share("Unit")
        raw = responses.get(chosen, responses.get(int(chosen)) if chosen.isdigit() else None)
        response = self.resolve_component(raw, "responses", where)
        if not isinstance(response, dict):
            return self.share("Unit")
        if "schema" in response:
            return self.convert_schema(response["schema"], f"{where} {chosen}")
        content = response.get("content")
        if isinstance(content, dict):
            for media_type, media in content.items():
                if _is_json_media(str(media_type)) and isinstance(media, dict) and "schema" in media:
                    return self.convert_schema(media["schema"], f"{where} {chosen}")
        return self.share("Unit")


