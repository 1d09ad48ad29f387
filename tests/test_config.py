"""Per-API configuration tests."""

from pathlib import Path

import pytest

from liana.config import ApiConfig, config_from_dict, find_api, infer_kind, load_config
from liana.diagnostics import ConfigError


def test_defaults():
    config = ApiConfig()
    assert config.targets == ["rust"]
    assert config.review_threshold == 0.75
    assert config.naming.is_empty()
    assert config.kind is None


def test_full_config(wlr_naming):
    config = config_from_dict(
        {"targets": ["rust", "python", "rust"], "review_threshold": 0.6, "naming": wlr_naming, "kind": "cheader"}
    )
    assert config.targets == ["rust", "python"]
    assert config.review_threshold == 0.6
    assert config.naming.strip_prefix == "wlr_"
    assert config.naming.case == "pascal"
    assert config.kind == "cheader"


def test_single_target_string():
    assert config_from_dict({"targets": "python"}).targets == ["python"]


@pytest.mark.parametrize(
    "data",
    [
        ["rust"],
        {"target": "rust"},
        {"targets": []},
        {"targets": ["go"]},
        {"review_threshold": "high"},
        {"review_threshold": True},
        {"review_threshold": 1.2},
        {"naming": {"case": "camel"}},
        {"kind": "graphql"},
    ],
)
def test_invalid_config(data):
    with pytest.raises(ConfigError):
        config_from_dict(data)


def test_load_missing_file_gives_defaults(tmp_path):
    assert load_config(tmp_path / "liana.yaml") == ApiConfig()
    assert load_config(None) == ApiConfig()


def test_load_yaml(tmp_path):
    path = tmp_path / "liana.yaml"
    path.write_text("targets: [python]\nreview_threshold: 0.5\n")
    config = load_config(path)
    assert config.targets == ["python"]
    assert config.review_threshold == 0.5


def test_load_invalid_yaml(tmp_path):
    path = tmp_path / "liana.yaml"
    path.write_text("targets: [python\n")
    with pytest.raises(ConfigError, match="invalid YAML"):
        load_config(path)


def test_find_api(tmp_path):
    directory = tmp_path / "schemas" / "petstore"
    directory.mkdir(parents=True)
    (directory / "openapi.yaml").write_text("openapi: 3.0.3\n")
    (directory / "overlay.yaml").write_text("overrides: {}\n")
    files = find_api(tmp_path, "petstore")
    assert files.schema == directory / "openapi.yaml"
    assert files.overlay == directory / "overlay.yaml"
    assert files.config is None


def test_find_api_header(tmp_path):
    directory = tmp_path / "schemas" / "wlroots"
    directory.mkdir(parents=True)
    (directory / "wlroots.h").write_text("int f(void);\n")
    (directory / "liana.yaml").write_text("kind: cheader\n")
    files = find_api(tmp_path, "wlroots")
    assert files.schema == directory / "wlroots.h"
    assert files.config == directory / "liana.yaml"


def test_find_api_without_schema(tmp_path):
    files = find_api(tmp_path, "missing")
    assert files.schema is None
    assert files.directory == tmp_path / "schemas" / "missing"


def test_infer_kind():
    assert infer_kind(Path("wlr.h")) == "cheader"
    assert infer_kind(Path("api.hpp")) == "cheader"
    assert infer_kind(Path("openapi.json")) == "openapi"
