"""Shared frontend plumbing: document loading, options and results."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from ..diagnostics import Diagnostic, FatalParseError
from ..ir import Module


@dataclass
class ParseOptions:
    """Options common to every frontend.

    source: document name recorded in SourceLocations and diagnostics.
    module_name: overrides the module name the frontend would derive.
    """

    source: str = "<input>"
    module_name: str | None = None


@dataclass
class ParseResult:
    """Root module plus the non-fatal diagnostics produced while parsing."""

    module: Module
    diagnostics: list[Diagnostic] = field(default_factory=list)

    def warnings(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == "warning"]


def load_document(text: str, source: str = "<input>") -> object:
    """Decode a JSON or YAML document. YAML is tried when the name says so
    or when the text does not start like JSON."""
    lowered = source.lower()
    is_yaml = lowered.endswith((".yaml", ".yml"))
    if not is_yaml and text.lstrip()[:1] not in ("{", "["):
        is_yaml = True
    if is_yaml:
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as e:
            mark = getattr(e, "problem_mark", None)
            problem = getattr(e, "problem", None) or str(e)
            if mark is not None:
                raise FatalParseError(f"{source}: invalid YAML: {problem}", mark.line + 1, mark.column + 1) from e
            raise FatalParseError(f"{source}: invalid YAML: {problem}") from e
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise FatalParseError(f"{source}: invalid JSON: {e.msg}", e.lineno, e.colno) from e


def read_document(path: str | Path) -> tuple[str, str]:
    """(text, source name) for a schema file."""
    p = Path(path)
    try:
        return p.read_text(encoding="utf-8"), str(p)
    except OSError as e:
        raise FatalParseError(f"cannot open '{p}': {e.strerror}") from e
    except UnicodeDecodeError as e:
        raise FatalParseError(f"{p}: invalid utf-8 in input") from e


def to_pascal(name: str) -> str:
    """PascalCase from snake, kebab, space or camel input; inner capitals kept."""
    parts = re.split(r"[^0-9A-Za-z]+", name)
    return "".join(p[0].upper() + p[1:] for p in parts if p)


def to_module_name(title: str) -> str:
    """Lower-cased title with non-alphanumerics replaced by '_', trimmed."""
    return re.sub(r"[^0-9a-z]", "_", title.lower()).strip("_")
