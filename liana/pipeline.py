"""Pipeline driver: schema -> IR -> passes -> backends -> files.

    document --parse--> Module --refine--> Module --backends--> files --write-->

Each run owns one Context. Parsing and the passes are sequential; the
overlaid module is read-only from then on, so backends for several targets
run concurrently and their results are gathered in target order.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from .backend import get_backend
from .config import ApiConfig, infer_kind
from .context import Context
from .diagnostics import Failure, UnresolvedReferenceError
from .frontend import ParseOptions, load_document, parse_cheader, parse_openapi, read_document
from .ir import Module
from .middleend import Overlay, refine
from .output import write_tree

logger = logging.getLogger(__name__)


@dataclass
class TargetResult:
    """Output of one backend."""

    target: str
    files: list[tuple[str, str]] = field(default_factory=list)
    failures: list[UnresolvedReferenceError] = field(default_factory=list)


@dataclass
class RunResult:
    module: Module
    targets: list[TargetResult] = field(default_factory=list)
    written: list[Path] = field(default_factory=list)


def parse_text(text: str, source: str, kind: str, ctx: Context, module_name: str | None = None) -> Module:
    """Raw IR for a schema text. Raises FatalParseError."""
    options = ParseOptions(source, module_name)
    if kind == "cheader":
        return parse_cheader(text, ctx, options).module
    return parse_openapi(load_document(text, source), ctx, options).module


def parse_file(path: str | Path, ctx: Context, kind: str | None = None, module_name: str | None = None) -> Module:
    text, source = read_document(path)
    return parse_text(text, source, kind or infer_kind(Path(path)), ctx, module_name)


def build_ir(
    path: str | Path,
    ctx: Context,
    config: ApiConfig | None = None,
    overlay: Overlay | None = None,
    module_name: str | None = None,
) -> Module:
    """Parse a schema file and run every pass over it."""
    config = config or ApiConfig()
    raw = parse_file(path, ctx, config.kind, module_name)
    return refine(raw, ctx, config.review_threshold, config.naming, overlay)


def _generate(module: Module, target: str, ctx: Context) -> TargetResult:
    generated = get_backend(target, ctx).generate_all(module)
    return TargetResult(target, generated.files, generated.failures)


def generate_targets(module: Module, targets: list[str], ctx: Context) -> list[TargetResult]:
    """Run each backend over module, in parallel when there are several."""
    if len(targets) <= 1:
        results = [_generate(module, t, ctx) for t in targets]
    else:
        with ThreadPoolExecutor(max_workers=len(targets)) as pool:
            futures = [pool.submit(_generate, module, t, ctx) for t in targets]
            results = [f.result() for f in futures]
    for result in results:
        for failure in result.failures:
            ctx.report(Failure(f"{result.target}: {failure}", failure.where, "unresolved-reference"))
    return results


def run(
    path: str | Path,
    out_dir: str | Path,
    ctx: Context,
    config: ApiConfig | None = None,
    overlay: Overlay | None = None,
    nested: bool = True,
) -> RunResult:
    """Full run. With nested, target T is written to out_dir/T; otherwise
    the single target is written to out_dir itself.

    Raises FatalParseError before anything is written. Modules that fail to
    generate are reported on ctx and left out of the written tree.
    """
    config = config or ApiConfig()
    if not nested and len(config.targets) != 1:
        raise ValueError("an un-nested run takes exactly one target")
    module = build_ir(path, ctx, config, overlay)
    result = RunResult(module)
    result.targets = generate_targets(module, config.targets, ctx)
    out_dir = Path(out_dir)
    for target in result.targets:
        destination = out_dir / target.target if nested else out_dir
        try:
            result.written.append(write_tree(destination, target.files))
        except OSError as e:
            ctx.report(Failure(f"cannot write {destination}: {e}", str(destination), "output"))
        logger.debug("%s: %d files, %d failures", target.target, len(target.files), len(target.failures))
    return result
