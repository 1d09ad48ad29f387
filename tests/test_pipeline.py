"""Pipeline driver tests."""

import json

import pytest

from liana.config import ApiConfig
from liana.diagnostics import FatalParseError
from liana.middleend import NamingStrategy
from liana.middleend.overlay import overlay_from_dict
from liana.pipeline import build_ir, generate_targets, parse_file, run


@pytest.fixture
def schema(tmp_path, users_doc):
    path = tmp_path / "openapi.json"
    path.write_text(json.dumps(users_doc))
    return path


@pytest.fixture
def header(tmp_path, wlr_header):
    path = tmp_path / "wlr_output.h"
    path.write_text(wlr_header)
    return path


def test_parse_file_infers_kind(ctx, schema, header):
    assert parse_file(schema, ctx).name == "users"
    assert parse_file(header, ctx).name == "wlr_output"


def test_build_ir_applies_naming(ctx, header, wlr_naming):
    config = ApiConfig(naming=NamingStrategy.from_dict(wlr_naming))
    module = build_ir(header, ctx, config)
    assert module.resolve(("output",)) is not None
    assert module.find("Output") is not None


def test_run_writes_one_tree_per_target(ctx, schema, tmp_path):
    out = tmp_path / "generated"
    result = run(schema, out, ctx, ApiConfig(targets=["rust", "python"]))
    assert [t.target for t in result.targets] == ["rust", "python"]
    assert (out / "rust" / "mod.rs").is_file()
    assert (out / "python" / "__init__.py").is_file()
    assert result.written == [out / "rust", out / "python"]
    assert ctx.diagnostics.ok()


def test_parallel_and_serial_output_match(ctx, schema):
    module = build_ir(schema, ctx)
    together = generate_targets(module, ["rust", "python"], ctx)
    apart = generate_targets(module, ["rust"], ctx) + generate_targets(module, ["python"], ctx)
    assert [t.files for t in together] == [t.files for t in apart]


def test_un_nested_run(ctx, schema, tmp_path):
    out = tmp_path / "bindings"
    run(schema, out, ctx, ApiConfig(targets=["python"]), nested=False)
    assert (out / "__init__.py").is_file()


def test_un_nested_run_needs_one_target(ctx, schema, tmp_path):
    with pytest.raises(ValueError):
        run(schema, tmp_path / "out", ctx, ApiConfig(targets=["rust", "python"]), nested=False)


def test_fatal_parse_error_writes_nothing(ctx, tmp_path):
    path = tmp_path / "openapi.json"
    path.write_text('{"openapi": "3.0.3", "info": ')
    out = tmp_path / "generated"
    with pytest.raises(FatalParseError):
        run(path, out, ctx)
    assert not out.exists()


def test_unresolved_reference_is_an_error(ctx, schema, tmp_path):
    overlay = overlay_from_dict(
        {"overrides": {"drop": {"target": "User", "operation": "remove-item"}}}, "overlay.yaml"
    )
    result = run(schema, tmp_path / "generated", ctx, overlay=overlay)
    errors = ctx.diagnostics.errors()
    assert len(errors) == 1
    assert errors[0].code == "unresolved-reference"
    assert errors[0].path == "getUser"
    assert result.targets[0].files == []
