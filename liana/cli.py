"""Command-line entry point."""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .backend import BACKENDS
from .config import ApiConfig, find_api, load_config
from .context import Context
from .diagnostics import Diagnostics, LianaError
from .middleend import read_overlay, refine
from .pipeline import parse_file, run
from .serialize import module_to_dict

COMMANDS: list[str] = ["generate", "openapi", "ffi", "dump-ir"]

FORMATS: list[str] = ["json", "yaml"]

USAGE: str = """\
liana COMMAND [OPTIONS]

Commands:
  generate API        Generate every configured target for schemas/API/
      --root DIR        Project root holding schemas/ (default: .)
      --target T        Target language (repeatable; default from liana.yaml)
      --out DIR         Output root (default: ROOT/generated/API)
  openapi             Generate bindings from an OpenAPI document
      --schema PATH     OpenAPI document (JSON or YAML)
      --output DIR      Output directory
  ffi                 Generate bindings from a C header
      --header PATH     C header file
      --output DIR      Output directory
  dump-ir             Print the IR of a schema
      --schema PATH     OpenAPI document or C header
      --format FORMAT   json or yaml (default: json)

Options for openapi, ffi and dump-ir:
  --target T          Target language: python, rust (default: rust)
  --overlay PATH      Overlay document applied after generation
  --config PATH       liana.yaml with naming and threshold settings

Global options:
  -v, --verbose       Log pipeline progress to stderr
  -h, --help          Show this help message
"""


class UsageError(Exception):
    pass


@dataclass
class Args:
    command: str
    api: str | None = None
    root: str = "."
    targets: list[str] = field(default_factory=list)
    out: str | None = None
    schema: str | None = None
    output: str | None = None
    overlay: str | None = None
    config: str | None = None
    format: str = "json"
    verbose: bool = False


_VALUE_FLAGS = {
    "--root": "root",
    "--out": "out",
    "--schema": "schema",
    "--header": "schema",
    "--output": "output",
    "-o": "output",
    "--overlay": "overlay",
    "--config": "config",
    "--format": "format",
}


def parse_args(argv: list[str]) -> Args | None:
    """Parse command-line arguments. Returns None when help was printed."""
    if not argv or argv[0] in ("-h", "--help"):
        print(USAGE, end="")
        return None
    command = argv[0]
    if command not in COMMANDS:
        raise UsageError("unknown command '" + command + "'")
    args = Args(command)
    i = 1
    while i < len(argv):
        arg = argv[i]
        if arg == "--help" or arg == "-h":
            print(USAGE, end="")
            return None
        elif arg == "-v" or arg == "--verbose":
            args.verbose = True
            i += 1
        elif arg == "--target":
            if i + 1 >= len(argv):
                raise UsageError("--target requires an argument")
            args.targets.append(argv[i + 1])
            i += 2
        elif arg in _VALUE_FLAGS:
            if i + 1 >= len(argv):
                raise UsageError(arg + " requires an argument")
            setattr(args, _VALUE_FLAGS[arg], argv[i + 1])
            i += 2
        elif arg.startswith("-"):
            raise UsageError("unknown flag '" + arg + "'")
        else:
            if command != "generate" or args.api is not None:
                raise UsageError("unexpected argument '" + arg + "'")
            args.api = arg
            i += 1
    _check(args)
    return args


def _check(args: Args) -> None:
    for t in args.targets:
        if t not in BACKENDS:
            raise UsageError("unknown target '" + t + "'")
    if args.format not in FORMATS:
        raise UsageError("unknown format '" + args.format + "'")
    if args.command == "generate":
        if args.api is None:
            raise UsageError("generate requires an API name")
        return
    if args.schema is None:
        flag = "--header" if args.command == "ffi" else "--schema"
        raise UsageError(args.command + " requires " + flag)
    if args.command in ("openapi", "ffi"):
        if args.output is None:
            raise UsageError(args.command + " requires --output")
        if len(args.targets) > 1:
            raise UsageError(args.command + " takes a single --target")


def print_diagnostics(diagnostics: Diagnostics) -> None:
    for diag in diagnostics:
        print(str(diag), file=sys.stderr)
    print(diagnostics.summary(), file=sys.stderr)


def _config(args: Args, path: Path | None, kind: str | None) -> ApiConfig:
    config = load_config(path)
    if args.targets:
        config.targets = list(dict.fromkeys(args.targets))
    if kind is not None and config.kind is None:
        config.kind = kind
    return config


def cmd_generate(args: Args, ctx: Context) -> int:
    files = find_api(args.root, args.api)
    if files.schema is None:
        print(
            "error: no schema found in " + str(files.directory) + "; "
            "run scripts/fetch-schema.sh " + args.api + " <url> first",
            file=sys.stderr,
        )
        return 1
    config = _config(args, files.config, None)
    overlay = read_overlay(files.overlay) if files.overlay is not None else None
    out = Path(args.out) if args.out is not None else Path(args.root) / "generated" / args.api
    result = run(files.schema, out, ctx, config, overlay)
    for path in result.written:
        print("Generated bindings in " + str(path))
    return 0 if ctx.diagnostics.ok() else 1


def cmd_single(args: Args, ctx: Context) -> int:
    kind = "cheader" if args.command == "ffi" else "openapi"
    config = _config(args, Path(args.config) if args.config else None, kind)
    if not args.targets:
        config.targets = config.targets[:1]
    overlay = read_overlay(args.overlay) if args.overlay is not None else None
    result = run(args.schema, args.output, ctx, config, overlay, nested=False)
    for path in result.written:
        print("Generated " + config.targets[0] + " bindings in " + str(path))
    return 0 if ctx.diagnostics.ok() else 1


def cmd_dump_ir(args: Args, ctx: Context) -> int:
    config = _config(args, Path(args.config) if args.config else None, None)
    overlay = read_overlay(args.overlay) if args.overlay is not None else None
    raw = parse_file(args.schema, ctx, config.kind)
    module = refine(raw, ctx, config.review_threshold, config.naming, overlay)
    data = module_to_dict(module)
    if args.format == "yaml":
        print(yaml.safe_dump(data, sort_keys=False, allow_unicode=True), end="")
    else:
        print(json.dumps(data, indent=2, ensure_ascii=False))
    return 0 if ctx.diagnostics.ok() else 1


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    try:
        args = parse_args(sys.argv[1:] if argv is None else argv)
    except UsageError as e:
        print("error: " + str(e), file=sys.stderr)
        return 2
    if args is None:
        return 0
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx = Context()
    try:
        if args.command == "generate":
            code = cmd_generate(args, ctx)
        elif args.command == "dump-ir":
            code = cmd_dump_ir(args, ctx)
        else:
            code = cmd_single(args, ctx)
    except LianaError as e:
        print("error: " + str(e), file=sys.stderr)
        code = 1
    print_diagnostics(ctx.diagnostics)
    return code


if __name__ == "__main__":
    sys.exit(main())
