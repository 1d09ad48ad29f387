"""IR refinement passes: scoring, renaming, overlays."""

from __future__ import annotations

from ..context import Context
from ..ir import Module

from .confidence import DEFAULT_THRESHOLD, needs_review, score_module
from .naming import NamingStrategy, map_names
from .overlay import Overlay, apply_overlay, load_overlay, read_overlay


def refine(
    module: Module,
    ctx: Context,
    threshold: float = DEFAULT_THRESHOLD,
    strategy: NamingStrategy | None = None,
    overlay: Overlay | None = None,
) -> Module:
    """Run all passes in order. The input module is not modified."""
    module = score_module(module.copy(), ctx, threshold)
    if strategy is not None:
        module = map_names(module, strategy, ctx)
    if overlay is not None:
        module = apply_overlay(module, overlay, ctx)
    ctx.interner.intern_module(module)
    return module
