"""Python backend tests."""

from dataclasses import replace

import pytest

from conftest import contains_normalized
from liana.backend import get_backend
from liana.diagnostics import UnresolvedReferenceError
from liana.frontend import ParseOptions, parse_cheader
from liana.ir import Field, Function, Module, Other, Param, Struct, Type, TypeItem, ref
from liana.middleend import NamingStrategy, map_names


def _files(module, ctx=None) -> dict[str, str]:
    return dict(get_backend("python", ctx).generate(module))


def test_http_models(users_module):
    text = _files(users_module)["__init__.py"]
    assert text.startswith('"""Bindings for users."""\n')
    assert "from dataclasses import dataclass, field" in text
    assert contains_normalized(
        text,
        """
        @dataclass
        class User:
            \"\"\"A registered user.\"\"\"

            id: str
            display_name: str | None = field(metadata={"wire": "displayName"})
        """,
    )


def test_http_stub(users_module):
    text = _files(users_module)["__init__.py"]
    assert contains_normalized(
        text,
        """
        def get_user(path: GetUserPath, query: GetUserQuery) -> Result[User, ApiError]:
            \"\"\"Fetch one user.

            HTTP: GET /users/{id}
            \"\"\"
            raise NotImplementedError
        """,
    )


def test_result_preamble(users_module):
    text = _files(users_module)["__init__.py"]
    assert "class ApiError:" in text
    assert "Result = Union[Ok[T], Err[E]]" in text


def test_generation_is_deterministic(users_module):
    assert _files(users_module) == _files(users_module)


def test_newtype():
    uuid = TypeItem(Type(Struct((Field(None, ref("String")),)), "Uuid"))
    text = _files(Module("ids", [uuid]))["__init__.py"]
    assert contains_normalized(
        text,
        """
        @dataclass(frozen=True)
        class Uuid:
            value: str
        """,
    )


def test_missing_type_raises():
    module = Module("users", [Function("getUser", (), ref("Result", ref("User"), ref("ApiError")))])
    with pytest.raises(UnresolvedReferenceError) as exc:
        get_backend("python").generate(module)
    assert exc.value.name == "User"


def test_submodule_imports_are_relative():
    models = Module("models", [TypeItem(Type(Struct((Field("id", ref("i64")),)), "Pet"))])
    module = Module("api", [Function("getPet", (), ref("models::Pet"))], submodules=[models])
    files = _files(module)
    assert sorted(files) == ["__init__.py", "models/__init__.py"]
    assert "from .models import Pet" in files["__init__.py"]
    assert "def get_pet() -> Pet:" in files["__init__.py"]


def test_ffi_root_package(wlr_bindings):
    text = _files(wlr_bindings)["__init__.py"]
    assert "import ctypes" in text
    assert "from dataclasses" not in text
    assert 'WLR_NAME = "wlroots"' in text
    assert contains_normalized(
        text,
        """
        class Output(ctypes.Structure):
            \"\"\"A physical output.

            Opaque handle.
            \"\"\"
        """,
    )
    assert contains_normalized(
        text,
        """
        class Direction(enum.IntEnum):
            WLR_DIRECTION_UP = 1
            WLR_DIRECTION_DOWN = 2
            WLR_DIRECTION_LEFT = 3
        """,
    )
    assert "FrameCb = ctypes.CFUNCTYPE(None, ctypes.POINTER(Output), ctypes.c_void_p)" in text
    assert contains_normalized(
        text,
        """
        Box._fields_ = [
            ("x", ctypes.c_int),
            ("y", ctypes.c_int),
            ("width", ctypes.c_int),
            ("height", ctypes.c_int),
        ]
        """,
    )
    assert contains_normalized(
        text,
        """
        def log(fmt: ctypes.c_char_p, *args) -> ctypes.c_int:
            \"\"\"Native symbol: wlr_log\"\"\"
            raise NotImplementedError("wlr_log")
        """,
    )


def test_ffi_namespace_package(wlr_bindings):
    text = _files(wlr_bindings)["output/__init__.py"]
    assert "from .. import Output" in text
    assert contains_normalized(
        text,
        """
        def destroy(output: ctypes.POINTER(Output)) -> None:
            \"\"\"Native symbol: wlr_output_destroy\"\"\"
            raise NotImplementedError("wlr_output_destroy")
        """,
    )
    assert "# REVIEW: pointer_ownership: default_borrow" in text


def test_functions_become_methods_of_a_local_receiver(ctx):
    header = "struct seat;\nvoid seat_ping(struct seat *s);\nstruct seat *seat_new(void);\n"
    raw = parse_cheader(header, ctx, ParseOptions("seat.h")).module
    module = map_names(raw, NamingStrategy(self_types={"": "seat"}), ctx)
    text = _files(module)["__init__.py"]
    assert contains_normalized(
        text,
        """
        class seat(ctypes.Structure):
            \"\"\"Opaque handle.\"\"\"

            def seat_ping(self) -> None:
                \"\"\"Native symbol: seat_ping\"\"\"
                raise NotImplementedError("seat_ping")

            @staticmethod
            def seat_new() -> ctypes.POINTER(seat):
        """,
    )


def _vendor_module(*extra) -> Module:
    def tagged(typ: Type) -> Type:
        return replace(typ, annotations=typ.annotations + extra)

    user = TypeItem(tagged(Type(Struct((Field("id", tagged(ref("i64")), extra),)), "User")))
    user_param = Param("user", tagged(ref("User")), annotations=extra)
    ping = Function("ping", (user_param,), tagged(ref("Unit")), annotations=extra)
    return Module("api", [user, ping])


def test_unknown_annotations_do_not_change_output():
    plain = _files(_vendor_module())
    assert "def ping(user: User) -> None:" in plain["__init__.py"]
    assert _files(_vendor_module(Other("x-vendor"), Other("x-limit", 3))) == plain


def test_keyword_attributes_are_escaped_and_builtins_kept():
    fields = (Field("id", ref("String")), Field("type", ref("String")), Field("class", ref("String")))
    text = _files(Module("items", [TypeItem(Type(Struct(fields), "Item"))]))["__init__.py"]
    assert contains_normalized(
        text,
        """
        @dataclass
        class Item:
            id: str
            type: str
            class_: str = field(metadata={"wire": "class"})
        """,
    )
