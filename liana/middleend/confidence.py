"""Confidence scoring for heuristically translated nodes.

Frontends tag guesses with metadata.extra["heuristic"] (the rule) and
optionally metadata.extra["evidence"]. This pass turns those tags into a
score and, below the threshold, a NeedsReview annotation that backends
render as a visible marker. Scoring never removes or blocks anything.
"""

from __future__ import annotations

from dataclasses import replace

from ..context import Context
from ..diagnostics import LowConfidenceFlag
from ..ir import (
    Const,
    Function,
    Metadata,
    Module,
    NeedsReview,
    String,
    Type,
    TypeItem,
    drop_annotation,
    set_annotation,
    transform,
    walk_types,
)

DEFAULT_THRESHOLD = 0.75

RULE_SCORES: dict[str, float] = {
    "inline_enum": 0.6,
    "synthesized_name": 0.7,
    "untyped_schema": 0.4,
    "unknown_fragment": 0.0,
    "pointer_ownership": 0.5,
}

# Evidence refinements: (rule, evidence) -> score
EVIDENCE_SCORES: dict[tuple[str, str], float] = {
    ("pointer_ownership", "const_pointee"): 0.9,
    ("pointer_ownership", "destructor_suffix"): 0.85,
    ("pointer_ownership", "constructor_suffix"): 0.8,
    ("pointer_ownership", "default_borrow"): 0.5,
}

UNKNOWN_RULE_SCORE = 0.5


def rule_score(rule: str, evidence: str | None) -> float:
    if evidence is not None and (rule, evidence) in EVIDENCE_SCORES:
        return EVIDENCE_SCORES[(rule, evidence)]
    return RULE_SCORES.get(rule, UNKNOWN_RULE_SCORE)


def _evidence(meta: Metadata) -> str | None:
    value = meta.extra.get("evidence")
    if isinstance(value, String):
        return value.value
    return None


class _Scorer:
    def __init__(self, ctx: Context, threshold: float) -> None:
        self.ctx = ctx
        self.threshold = threshold

    def judge(self, meta: Metadata, annotations: tuple, where: str) -> tuple[Metadata, tuple]:
        """Scored metadata and annotations for one heuristic node."""
        rule = meta.heuristic
        if rule is None:
            return meta, annotations
        evidence = _evidence(meta)
        score = rule_score(rule, evidence)
        meta = replace(meta, confidence=score)
        if score >= self.threshold:
            return meta, drop_annotation(annotations, NeedsReview)
        reason = rule if evidence is None else f"{rule}: {evidence}"
        self.ctx.report(
            LowConfidenceFlag(f"{reason} (confidence {score:.2f} < {self.threshold:.2f})", where)
        )
        return meta, set_annotation(annotations, NeedsReview(reason))

    def score_type(self, typ: Type, where: str) -> Type:
        def visit(t: Type) -> Type:
            if t.metadata.heuristic is None:
                return t
            meta, annotations = self.judge(t.metadata, t.annotations, where)
            return replace(t, annotations=annotations, metadata=meta)

        return transform(typ, visit)

    def score_item(self, item, where: str):
        if isinstance(item, TypeItem):
            return TypeItem(self.score_type(item.typ, where))
        if isinstance(item, Function):
            params = tuple(
                replace(p, typ=self.score_type(p.typ, f"{where}({p.name or '_'})")) for p in item.params
            )
            ret = self.score_type(item.ret, f"{where} -> return")
            meta, annotations = self.judge(item.metadata, item.annotations, where)
            return replace(item, params=params, ret=ret, annotations=annotations, metadata=meta)
        if isinstance(item, Const):
            meta, annotations = self.judge(item.metadata, item.annotations, where)
            return replace(item, typ=self.score_type(item.typ, where), annotations=annotations, metadata=meta)
        return item


def score_module(module: Module, ctx: Context, threshold: float = DEFAULT_THRESHOLD) -> Module:
    """Attach confidence scores (and review flags below threshold) in place.

    Idempotent: a second pass produces an equal module, since NeedsReview is
    replaced rather than appended.
    """
    if not 0.0 <= threshold <= 1.0:
        raise ValueError(f"review threshold must be within [0, 1], got {threshold}")
    scorer = _Scorer(ctx, threshold)
    for path, mod in module.walk():
        prefix = "::".join(path + ("",)) if path else ""
        mod.items = [scorer.score_item(item, prefix + item.name) for item in mod.items]
    return module


def needs_review(item) -> list[str]:
    """Reasons for every review flag on an item, its own and nested ones."""
    reasons: list[str] = []
    own = getattr(item, "annotations", ())
    for ann in own:
        if isinstance(ann, NeedsReview):
            reasons.append(ann.reason)
    for typ in item.types():
        _collect(typ, reasons)
    return reasons


def _collect(typ: Type, reasons: list[str]) -> None:
    for t in walk_types(typ):
        for ann in t.annotations:
            if isinstance(ann, NeedsReview) and ann.reason not in reasons:
                reasons.append(ann.reason)

