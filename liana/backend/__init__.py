"""Target-language generators."""

from __future__ import annotations

from ..context import Context
from .python import PythonBackend
from .rust import RustBackend
from .util import Backend, Generated

BACKENDS: dict[str, type[Backend]] = {
    "rust": RustBackend,
    "python": PythonBackend,
}


def get_backend(name: str, ctx: Context | None = None) -> Backend:
    """Fresh backend instance for a target name. Raises KeyError."""
    return BACKENDS[name](ctx)
