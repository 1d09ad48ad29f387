"""Diagnostics and errors reported during a run.

Recoverable problems become Diagnostic records on the run's collector and
never stop the pipeline. Fatal conditions are LianaError exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass

ERROR = "error"
WARNING = "warning"
NOTE = "note"


@dataclass
class Diagnostic:
    """A located message with a severity and a stable code."""

    message: str
    path: str = ""
    severity: str = WARNING
    code: str = "general"

    def __str__(self) -> str:
        if self.path:
            return f"{self.severity}[{self.code}]: {self.path}: {self.message}"
        return f"{self.severity}[{self.code}]: {self.message}"


class LocalParseWarning(Diagnostic):
    """A schema fragment could not be translated; a placeholder was used."""

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message, path, WARNING, "local-parse")


class StaleOverrideWarning(Diagnostic):
    """An override targets a node that no longer exists."""

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message, path, WARNING, "stale-override")


class OverrideFailed(Diagnostic):
    """An override record was malformed or conflicted with generated content."""

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message, path, WARNING, "override-failed")


class LowConfidenceFlag(Diagnostic):
    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message, path, NOTE, "low-confidence")


class NamingConflict(Diagnostic):
    """A rename was skipped because the result was invalid or taken."""

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message, path, WARNING, "naming-conflict")


class UnknownAnnotation(Diagnostic):
    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message, path, NOTE, "unknown-annotation")


class Failure(Diagnostic):
    """A fatal condition recorded after the fact (backend or output failure)."""

    def __init__(self, message: str, path: str = "", code: str = "failure") -> None:
        super().__init__(message, path, ERROR, code)


class Diagnostics:
    """Ordered collector of diagnostics for one run."""

    def __init__(self) -> None:
        self._items: list[Diagnostic] = []

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(self._items)

    def add(self, diag: Diagnostic) -> Diagnostic:
        self._items.append(diag)
        return diag

    def extend(self, diags: list[Diagnostic]) -> None:
        self._items.extend(diags)

    def errors(self) -> list[Diagnostic]:
        return [d for d in self._items if d.severity == ERROR]

    def warnings(self) -> list[Diagnostic]:
        return [d for d in self._items if d.severity == WARNING]

    def notes(self) -> list[Diagnostic]:
        return [d for d in self._items if d.severity == NOTE]

    def with_code(self, code: str) -> list[Diagnostic]:
        return [d for d in self._items if d.code == code]

    def ok(self) -> bool:
        return not self.errors()

    def summary(self) -> str:
        """One-line count, e.g. "0 errors, 2 warnings, 1 note"."""
        parts = []
        for label, count in (
            ("error", len(self.errors())),
            ("warning", len(self.warnings())),
            ("note", len(self.notes())),
        ):
            parts.append(f"{count} {label}" + ("" if count == 1 else "s"))
        return ", ".join(parts)


# ============================================================
# EXCEPTIONS
# ============================================================


class LianaError(Exception):
    """Base for fatal errors."""


class FatalParseError(LianaError):
    """The schema document is structurally invalid. No IR is produced."""

    def __init__(self, msg: str, line: int | None = None, col: int | None = None) -> None:
        self.msg = msg
        self.line = line
        self.col = col
        super().__init__(self.__str__())

    def __str__(self) -> str:
        if self.line is None:
            return self.msg
        if self.col is None:
            return f"{self.line}: {self.msg}"
        return f"{self.line}:{self.col}: {self.msg}"


class UnresolvedReferenceError(LianaError):
    """A type reference names neither a builtin nor a declared type."""

    def __init__(self, name: str, where: str) -> None:
        self.name = name
        self.where = where
        super().__init__(f"unresolved reference '{name}' in {where}")


class OverlayError(LianaError):
    """The overlay document itself is malformed."""


class ConfigError(LianaError):
    """A configuration file holds an invalid value."""
