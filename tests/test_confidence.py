"""Confidence scoring tests."""

import pytest

from liana.frontend import ParseOptions, parse_cheader, parse_openapi
from liana.ir import Field, Module, NeedsReview, Struct, Type, TypeItem, ref
from liana.middleend import needs_review, score_module
from liana.middleend.confidence import rule_score
from liana.serialize import module_to_dict

HEADER = """\
struct ctx;
struct ctx *ctx_new(void);
void ctx_use(struct ctx *c);
void ctx_read(const struct ctx *c);
"""


def _header(ctx) -> Module:
    return parse_cheader(HEADER, ctx, ParseOptions("ctx.h")).module


def test_low_confidence_is_flagged_not_dropped(ctx):
    module = score_module(_header(ctx), ctx)
    assert [item.name for item in module.items] == ["ctx", "ctx_new", "ctx_use", "ctx_read"]
    use = module.find("ctx_use")
    assert needs_review(use) == ["pointer_ownership: default_borrow"]
    assert use.params[0].typ.metadata.confidence == 0.5


def test_high_confidence_is_not_flagged(ctx):
    module = score_module(_header(ctx), ctx)
    assert needs_review(module.find("ctx_new")) == []
    assert needs_review(module.find("ctx_read")) == []
    assert module.find("ctx_read").params[0].typ.metadata.confidence == 0.9


def test_flags_are_reported_as_notes(ctx):
    score_module(_header(ctx), ctx)
    notes = ctx.diagnostics.with_code("low-confidence")
    assert len(notes) == 1
    assert notes[0].severity == "note"
    assert notes[0].path == "ctx_use(c)"
    assert ctx.diagnostics.ok()


def test_threshold_controls_flagging(ctx):
    module = score_module(_header(ctx), ctx, threshold=0.4)
    assert needs_review(module.find("ctx_use")) == []
    module = score_module(_header(ctx), ctx, threshold=0.95)
    assert needs_review(module.find("ctx_read")) == ["pointer_ownership: const_pointee"]


def test_scoring_is_idempotent(ctx):
    once = score_module(_header(ctx), ctx)
    first = module_to_dict(once)
    twice = score_module(once, ctx)
    assert module_to_dict(twice) == first


def test_inline_enum_flagged(ctx):
    doc = {
        "openapi": "3.0.3",
        "info": {"title": "Accounts", "version": "1"},
        "paths": {},
        "components": {
            "schemas": {
                "Account": {"type": "object", "properties": {"state": {"type": "string", "enum": ["a", "b"]}}}
            }
        },
    }
    module = score_module(parse_openapi(doc, ctx).module, ctx)
    assert needs_review(module.find("Account")) == ["inline_enum: inline enum of a, b"]


def test_plain_types_are_left_alone(ctx):
    user = TypeItem(Type(Struct((Field("id", ref("String")),)), "User"))
    module = score_module(Module("m", [user]), ctx)
    typ = module.items[0].typ
    assert typ.metadata.confidence is None
    assert typ.annotation(NeedsReview) is None
    assert len(ctx.diagnostics) == 0


def test_rule_scores():
    assert rule_score("untyped_schema", None) == 0.4
    assert rule_score("pointer_ownership", "destructor_suffix") == 0.85
    assert rule_score("pointer_ownership", "made_up") == 0.5
    assert rule_score("never_heard_of_it", None) == 0.5


def test_threshold_out_of_range(ctx):
    with pytest.raises(ValueError):
        score_module(Module("m"), ctx, threshold=1.5)
