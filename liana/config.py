"""Per-API configuration.

Loads schemas/<api>/liana.yaml and locates the schema, overlay and config
files of an API directory.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .backend import BACKENDS
from .diagnostics import ConfigError
from .middleend.confidence import DEFAULT_THRESHOLD
from .middleend.naming import NamingStrategy

KINDS = ("openapi", "cheader")
DEFAULT_TARGETS = ("rust",)

SCHEMA_NAMES = ("openapi.json", "openapi.yaml", "openapi.yml")
OVERLAY_NAMES = ("overlay.yaml", "overlay.yml", "overlay.json")
CONFIG_NAME = "liana.yaml"


@dataclass
class ApiConfig:
    """Settings for generating one API."""

    targets: list[str] = field(default_factory=lambda: list(DEFAULT_TARGETS))
    review_threshold: float = DEFAULT_THRESHOLD
    naming: NamingStrategy = field(default_factory=NamingStrategy)
    kind: str | None = None


@dataclass
class ApiFiles:
    """Files found in schemas/<api>/. schema is None when not fetched yet."""

    api: str
    directory: Path
    schema: Path | None = None
    overlay: Path | None = None
    config: Path | None = None


def infer_kind(schema: Path) -> str:
    if schema.suffix in (".h", ".hpp", ".hh"):
        return "cheader"
    return "openapi"


def config_from_dict(data: object, source: str = CONFIG_NAME) -> ApiConfig:
    """Validate decoded YAML. Raises ConfigError."""
    if data is None:
        return ApiConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"{source}: config must be a mapping")
    unknown = sorted(set(data) - {"targets", "review_threshold", "naming", "kind"})
    if unknown:
        raise ConfigError(f"{source}: unknown keys: {', '.join(map(str, unknown))}")

    config = ApiConfig()
    if "targets" in data:
        targets = data["targets"]
        if isinstance(targets, str):
            targets = [targets]
        if not isinstance(targets, list) or not targets or not all(isinstance(t, str) for t in targets):
            raise ConfigError(f"{source}: targets must be a non-empty list of names")
        for t in targets:
            if t not in BACKENDS:
                raise ConfigError(f"{source}: unknown target '{t}' (known: {', '.join(sorted(BACKENDS))})")
        config.targets = list(dict.fromkeys(targets))

    if "review_threshold" in data:
        threshold = data["review_threshold"]
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
            raise ConfigError(f"{source}: review_threshold must be a number")
        if not 0.0 <= threshold <= 1.0:
            raise ConfigError(f"{source}: review_threshold must be within [0, 1]")
        config.review_threshold = float(threshold)

    try:
        config.naming = NamingStrategy.from_dict(data.get("naming"))
    except ValueError as e:
        raise ConfigError(f"{source}: {e}") from e

    kind = data.get("kind")
    if kind is not None:
        if kind not in KINDS:
            raise ConfigError(f"{source}: kind must be one of {', '.join(KINDS)}")
        config.kind = kind
    return config


def load_config(path: str | Path | None) -> ApiConfig:
    """Load a config file. A missing file yields the defaults."""
    if path is None:
        return ApiConfig()
    path = Path(path)
    if not path.exists():
        return ApiConfig()
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e.strerror}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"{path}: invalid YAML: {e}") from e
    return config_from_dict(data, str(path))


def find_api(root: str | Path, api: str) -> ApiFiles:
    """Locate schemas/<api>/ files under a project root."""
    directory = Path(root) / "schemas" / api
    files = ApiFiles(api, directory)
    for name in SCHEMA_NAMES + (f"{api}.h",):
        candidate = directory / name
        if candidate.is_file():
            files.schema = candidate
            break
    for name in OVERLAY_NAMES:
        candidate = directory / name
        if candidate.is_file():
            files.overlay = candidate
            break
    candidate = directory / CONFIG_NAME
    if candidate.is_file():
        files.config = candidate
    return files
