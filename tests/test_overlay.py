"""Overlay engine tests."""

import pytest

from liana.diagnostics import OverlayError
from liana.frontend import ParseOptions, parse_openapi
from liana.ir import Doc, Overridden, Struct
from liana.middleend import apply_overlay, load_overlay
from liana.middleend.overlay import overlay_from_dict
from liana.serialize import format_type, module_to_dict

UUID_ITEM = {
    "item": "type",
    "type": {"name": "Uuid", "kind": {"_type": "Struct", "fields": [{"type": "String"}]}},
}


def _users(ctx, users_doc):
    return parse_openapi(users_doc, ctx, ParseOptions("openapi.json")).module


def _overlay(records: dict):
    return overlay_from_dict({"overrides": records}, "overlay.yaml")


def _uuid_overlay():
    return _overlay(
        {
            "uuid-type": {"target": "Uuid", "operation": "add-item", "payload": UUID_ITEM},
            "user-id": {"target": "User.id", "operation": "replace-type", "payload": "Uuid"},
        }
    )


def test_replace_field_type_and_add_item(ctx, users_doc):
    module = apply_overlay(_users(ctx, users_doc), _uuid_overlay(), ctx)
    user = module.find("User")
    assert format_type(user.typ.kind.fields[0].typ) == "Uuid"
    uuid = module.find("Uuid")
    assert uuid.typ.kind.is_newtype
    assert ctx.diagnostics.ok()
    assert len(ctx.diagnostics) == 0


def test_patched_items_are_stamped(ctx, users_doc):
    module = apply_overlay(_users(ctx, users_doc), _uuid_overlay(), ctx)
    assert module.find("User").metadata.provenance == Overridden("overlay.yaml#user-id")
    assert module.find("Uuid").metadata.provenance == Overridden("overlay.yaml#uuid-type")
    assert module.find("getUser").metadata.provenance != Overridden("overlay.yaml#user-id")


def test_applying_twice_equals_applying_once(ctx, users_doc):
    overlay = _uuid_overlay()
    once = apply_overlay(_users(ctx, users_doc), overlay, ctx)
    twice = apply_overlay(once, overlay, ctx)
    assert module_to_dict(twice) == module_to_dict(once)
    assert ctx.diagnostics.ok()


def test_input_module_is_untouched(ctx, users_doc):
    module = _users(ctx, users_doc)
    before = module_to_dict(module)
    apply_overlay(module, _uuid_overlay(), ctx)
    assert module_to_dict(module) == before


def test_stale_target_warns_and_continues(ctx, users_doc):
    overlay = _overlay(
        {
            "gone": {"target": "Account.id", "operation": "replace-type", "payload": "Uuid"},
            "doc": {"target": "User", "operation": "replace-doc", "payload": "Someone."},
        }
    )
    module = apply_overlay(_users(ctx, users_doc), overlay, ctx)
    stale = ctx.diagnostics.with_code("stale-override")
    assert len(stale) == 1
    assert stale[0].path == "Account.id"
    assert "'gone'" in stale[0].message
    assert module.find("User").metadata.docs == "Someone."
    assert ctx.diagnostics.ok()


def test_stale_member_warns(ctx, users_doc):
    overlay = _overlay({"old": {"target": "User.email", "operation": "replace-type", "payload": "String"}})
    apply_overlay(_users(ctx, users_doc), overlay, ctx)
    assert len(ctx.diagnostics.with_code("stale-override")) == 1


def test_add_item_conflict_fails(ctx, users_doc):
    payload = {"item": "type", "type": {"name": "User", "kind": {"_type": "Struct"}}}
    overlay = _overlay({"dup": {"target": "User", "operation": "add-item", "payload": payload}})
    module = apply_overlay(_users(ctx, users_doc), overlay, ctx)
    failed = ctx.diagnostics.with_code("override-failed")
    assert len(failed) == 1
    assert "already exists in generated content" in failed[0].message
    assert [f.name for f in module.find("User").typ.kind.fields] == ["id", "displayName"]


def test_remove_item(ctx, users_doc):
    overlay = _overlay({"drop": {"target": "GetUserQuery", "operation": "remove-item"}})
    module = apply_overlay(_users(ctx, users_doc), overlay, ctx)
    assert module.find("GetUserQuery") is None
    assert module.find("getUser") is not None


def test_replace_doc_on_member(ctx, users_doc):
    overlay = _overlay({"doc": {"target": "User.id", "operation": "replace-doc", "payload": "Primary key."}})
    module = apply_overlay(_users(ctx, users_doc), overlay, ctx)
    assert module.find("User").typ.kind.fields[0].annotations == (Doc("Primary key."),)


def test_replace_signature(ctx, users_doc):
    payload = {"params": [{"name": "id", "type": "String"}], "ret": "Result<Option<User>, ApiError>"}
    overlay = _overlay({"sig": {"target": "getUser", "operation": "replace-signature", "payload": payload}})
    fn = apply_overlay(_users(ctx, users_doc), overlay, ctx).find("getUser")
    assert [p.name for p in fn.params] == ["id"]
    assert format_type(fn.ret) == "Result<Option<User>, ApiError>"


def test_replace_whole_type(ctx, users_doc):
    payload = {"kind": {"_type": "Struct", "fields": [{"name": "id", "type": "i64"}]}}
    overlay = _overlay({"user": {"target": "User", "operation": "replace-type", "payload": payload}})
    user = apply_overlay(_users(ctx, users_doc), overlay, ctx).find("User")
    assert user.name == "User"
    assert isinstance(user.typ.kind, Struct)
    assert user.metadata.docs == "A registered user."


def test_root_prefixed_target(ctx, users_doc):
    overlay = _overlay({"fix": {"target": "users::User.id", "operation": "replace-type", "payload": "i64"}})
    module = apply_overlay(_users(ctx, users_doc), overlay, ctx)
    assert format_type(module.find("User").typ.kind.fields[0].typ) == "i64"


@pytest.mark.parametrize(
    "record",
    [
        "not a mapping",
        {"operation": "remove-item"},
        {"target": "User", "operation": "rename"},
        {"target": "getUser", "operation": "replace-signature", "payload": {"type_params": 3}},
        {"target": "getUser", "operation": "replace-signature", "payload": {"type_params": [3]}},
        {"target": "getUser", "operation": "replace-signature", "payload": {"params": [{"type": 3}]}},
    ],
)
def test_malformed_record_fails_alone(ctx, users_doc, record):
    overlay = _overlay({"bad": record, "ok": {"target": "GetUserQuery", "operation": "remove-item"}})
    module = apply_overlay(_users(ctx, users_doc), overlay, ctx)
    assert len(ctx.diagnostics.with_code("override-failed")) == 1
    assert module.find("GetUserQuery") is None


def test_load_overlay_from_yaml():
    text = "overrides:\n  fix:\n    target: User.id\n    operation: replace-type\n    payload: Uuid\n"
    overlay = load_overlay(text, "overlay.yaml")
    assert [(o.key, o.target, o.operation) for o in overlay.overrides] == [("fix", "User.id", "replace-type")]
    assert overlay.source("fix") == "overlay.yaml#fix"


@pytest.mark.parametrize(
    "text",
    [
        "overrides: [1, 2]\n",
        "- just\n- a list\n",
        "overides: {}\n",
        '{"overrides": ',
    ],
)
def test_malformed_overlay_documents(text):
    name = "overlay.json" if text.startswith("{") else "overlay.yaml"
    with pytest.raises(OverlayError):
        load_overlay(text, name)


def test_empty_overlay():
    assert load_overlay("", "overlay.yaml").overrides == []
