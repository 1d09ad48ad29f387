"""Atomic output: a generated tree appears whole or not at all.

Each written tree carries a manifest of the files liana generated into it.
Files the manifest does not name belong to someone else and survive
regeneration; generated files that a later run no longer produces are
removed.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path, PurePosixPath

logger = logging.getLogger(__name__)

MANIFEST = ".liana-manifest"


def _checked(rel: str) -> PurePosixPath:
    path = PurePosixPath(rel)
    if path.is_absolute() or ".." in path.parts or not path.parts:
        raise ValueError(f"refusing to write outside the output directory: {rel!r}")
    if path.as_posix() == MANIFEST:
        raise ValueError(f"refusing to overwrite the output manifest: {rel!r}")
    return path


def read_manifest(target: Path) -> set[str]:
    """Relative paths generated into target by the previous run."""
    path = target / MANIFEST
    if not path.is_file():
        return set()
    return {line for line in path.read_text(encoding="utf-8").splitlines() if line}


def _carry_foreign(target: Path, staging: Path, generated: set[str]) -> int:
    """Copy files liana did not generate from target into staging."""
    owned = read_manifest(target) | generated | {MANIFEST}
    kept = 0
    for path in sorted(target.rglob("*")):
        if path.is_dir() and not path.is_symlink():
            continue
        rel = path.relative_to(target).as_posix()
        if rel in owned:
            continue
        dest = staging / rel
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(path, dest, follow_symlinks=False)
        kept += 1
    return kept


def write_tree(target: str | Path, files: list[tuple[str, str]]) -> Path:
    """Replace the generated contents of target with exactly files.

    Files are written into a temporary sibling directory, together with
    any files in target that an earlier run did not generate, which is
    then swapped into place with os.replace. If anything fails before the
    swap completes, the previous contents of target are left as they were.
    """
    target = Path(target)
    parent = target.parent
    parent.mkdir(parents=True, exist_ok=True)
    staging = Path(tempfile.mkdtemp(prefix=f".{target.name}.", suffix=".tmp", dir=parent))
    try:
        generated: set[str] = set()
        for rel, text in files:
            checked = _checked(rel)
            path = staging.joinpath(*checked.parts)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
            generated.add(checked.as_posix())
        manifest = "".join(f"{rel}\n" for rel in sorted(generated))
        (staging / MANIFEST).write_text(manifest, encoding="utf-8")
        if target.exists():
            kept = _carry_foreign(target, staging, generated)
            if kept:
                logger.debug("kept %d files in %s that were not generated", kept, target)
            retired = staging.with_suffix(".old")
            os.replace(target, retired)
            try:
                os.replace(staging, target)
            except OSError:
                os.replace(retired, target)
                raise
            shutil.rmtree(retired, ignore_errors=True)
        else:
            os.replace(staging, target)
    except BaseException:
        shutil.rmtree(staging, ignore_errors=True)
        raise
    logger.debug("wrote %d files to %s", len(files), target)
    return target
