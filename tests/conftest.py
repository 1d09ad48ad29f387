"""Pytest configuration for the liana test suite."""

import copy
from pathlib import Path

import pytest

from liana.context import Context
from liana.frontend import ParseOptions, parse_cheader, parse_openapi
from liana.ir import Module
from liana.middleend import NamingStrategy, refine

CODEGEN_DIR = Path(__file__).parent / "codegen"

USERS_DOC = {
    "openapi": "3.0.3",
    "info": {"title": "Users", "version": "1.0.0"},
    "paths": {
        "/users/{id}": {
            "get": {
                "operationId": "getUser",
                "summary": "Fetch one user.",
                "parameters": [
                    {"name": "id", "in": "path", "required": True, "schema": {"type": "string"}},
                    {"name": "verbose", "in": "query", "schema": {"type": "boolean"}},
                ],
                "responses": {
                    "200": {
                        "description": "The user",
                        "content": {
                            "application/json": {"schema": {"$ref": "#/components/schemas/User"}}
                        },
                    },
                    "404": {"description": "Not found"},
                },
            }
        }
    },
    "components": {
        "schemas": {
            "User": {
                "type": "object",
                "description": "A registered user.",
                "required": ["id"],
                "properties": {
                    "id": {"type": "string"},
                    "displayName": {"type": "string"},
                },
            }
        }
    },
}

WLR_HEADER = """\
#ifndef WLR_OUTPUT_H
#define WLR_OUTPUT_H

#include <stdint.h>

#define WLR_VERSION_MAJOR 0
#define WLR_NAME "wlroots"

/** A physical output. */
struct wlr_output;

enum wlr_direction {
    WLR_DIRECTION_UP = 1,
    WLR_DIRECTION_DOWN = 2,
    WLR_DIRECTION_LEFT,
};

struct wlr_box {
    int x, y;
    int width, height;
};

typedef void (*wlr_frame_cb)(struct wlr_output *output, void *data);

/** Create a headless output. */
struct wlr_output *wlr_output_create(void);
void wlr_output_destroy(struct wlr_output *output);
int __stdcall wlr_output_set_scale(struct wlr_output *output, float scale);
int wlr_log(const char *fmt, ...);

#endif
"""

WLR_NAMING = {
    "strip_prefix": "wlr_",
    "modules": {"wlr_output_": "output"},
    "case": "pascal",
}


def parse_codegen_file(path: Path) -> list[tuple[str, str, list[tuple[str, str]]]]:
    """Parse .tests file into (name, input, [(lang, expected), ...]) tuples.

    A language may have several expected blocks; each must appear.
    """
    lines = path.read_text().split("\n")
    result: list[tuple[str, str, list[tuple[str, str]]]] = []
    i = 0
    while i < len(lines):
        line = lines[i]
        if line.startswith("=== "):
            test_name = line[4:].strip()
            i += 1
            input_lines: list[str] = []
            while i < len(lines) and not lines[i].startswith("---"):
                input_lines.append(lines[i])
                i += 1
            expected: list[tuple[str, str]] = []
            while i < len(lines) and lines[i].startswith("--- "):
                lang = lines[i][4:].strip()
                i += 1
                expected_lines: list[str] = []
                while i < len(lines) and not lines[i].startswith("---"):
                    expected_lines.append(lines[i])
                    i += 1
                expected.append((lang, "\n".join(expected_lines)))
            if i < len(lines) and lines[i] == "---":
                i += 1
            result.append((test_name, "\n".join(input_lines), expected))
        else:
            i += 1
    return result


def discover_codegen_tests(test_dir: Path) -> list[tuple[str, str, str, str, str]]:
    """Find all codegen tests, returns (test_id, input, kind, lang, expected).

    The file stem names the frontend: openapi.tests, cheader.tests.
    """
    results = []
    for test_file in sorted(test_dir.glob("*.tests")):
        kind = test_file.stem
        for name, input_text, blocks in parse_codegen_file(test_file):
            for lang, expected in blocks:
                test_id = f"{kind}/{name}[{lang}]"
                results.append((test_id, input_text, kind, lang, expected))
    return results


def contains_normalized(haystack: str, needle: str) -> bool:
    """Check if needle appears in haystack, normalizing line-by-line whitespace."""
    needle_lines = [line.strip() for line in needle.strip().split("\n") if line.strip()]
    haystack_lines = [line.strip() for line in haystack.split("\n") if line.strip()]
    if not needle_lines:
        return True
    for i in range(len(haystack_lines)):
        if haystack_lines[i] == needle_lines[0]:
            match = True
            for j in range(1, len(needle_lines)):
                if i + j >= len(haystack_lines) or haystack_lines[i + j] != needle_lines[j]:
                    match = False
                    break
            if match:
                return True
    return False


def pytest_addoption(parser):
    """Add --target option for filtering codegen targets."""
    parser.addoption(
        "--target",
        action="append",
        default=[],
        help="Run only specified targets (can be used multiple times)",
    )


def pytest_generate_tests(metafunc):
    """Parametrize codegen tests over (case, target) combinations."""
    if "codegen_input" in metafunc.fixturenames:
        tests = discover_codegen_tests(CODEGEN_DIR)
        target_filter = metafunc.config.getoption("target")
        if target_filter:
            tests = [t for t in tests if t[3] in target_filter]
        params = [
            pytest.param(inp, kind, lang, exp, id=tid) for tid, inp, kind, lang, exp in tests
        ]
        metafunc.parametrize("codegen_input,codegen_kind,codegen_lang,codegen_expected", params)


@pytest.fixture
def ctx() -> Context:
    return Context()


@pytest.fixture
def users_doc() -> dict:
    """Fresh copy of the single-operation users API."""
    return copy.deepcopy(USERS_DOC)


@pytest.fixture
def wlr_header() -> str:
    return WLR_HEADER


@pytest.fixture
def wlr_naming() -> dict:
    return dict(WLR_NAMING)


@pytest.fixture
def users_module(ctx, users_doc) -> Module:
    return parse_openapi(users_doc, ctx, ParseOptions("openapi.json")).module


@pytest.fixture
def wlr_bindings(ctx, wlr_header, wlr_naming) -> Module:
    """wlr_output.h scored and mapped into an output namespace."""
    raw = parse_cheader(wlr_header, ctx, ParseOptions("wlr_output.h")).module
    return refine(raw, ctx, strategy=NamingStrategy.from_dict(wlr_naming))
