"""Tests for adaptive_tests.config."""

from __future__ import annotations

from pathlib import Path

import pytest

from adaptive_tests.config import (
    CONFIG_FILENAME,
    DEFAULT_SKIP_DIRECTORIES,
    DiscoveryConfig,
    LanguageConfig,
    config_from_mapping,
    load_config,
)
from adaptive_tests.errors import ConfigError


def test_load_config_returns_defaults_when_missing(tmp_path: Path) -> None:
    config = load_config(tmp_path)

    assert isinstance(config, DiscoveryConfig)
    assert config.root == tmp_path.resolve()
    assert config.max_depth == 10
    assert config.skip_directories == list(DEFAULT_SKIP_DIRECTORIES)
    assert config.exclude_paths == []
    assert config.cache.enabled is True
    assert config.cache.file == ".adaptive-tests-cache.json"
    assert config.cache.ttl_ms == pytest.approx(24 * 60 * 60 * 1000)
    assert config.security.allow_unsafe_loads is False
    assert config.plugins.enabled == []
    assert config.language("python") == LanguageConfig()


def test_load_config_parses_expected_fields(tmp_path: Path) -> None:
    config_file = tmp_path / CONFIG_FILENAME
    config_file.write_text(
        """
discovery:
  max_depth: 4
  concurrency: 0
  report_limit: 3
  skip_directories: [vendor]
  exclude_paths:
    - "generated/"
  cache:
    enabled: "no"
    file: ".cache/discovery.json"
    ttl_seconds: 60
    log_warnings: true
  scoring:
    min_candidate_score: -20
    allow_loose_name_match: false
    extensions:
      .PY: 3
    file_name:
      exact_match: 50
    paths:
      positive:
        /source/: 9
    methods:
      per_mention: 4
      max_mentions: 2
  security:
    blocked_tokens: ["eval("]
  plugins:
    disabled: [Java]
  languages:
    javascript:
      extensions: [.JS]
      skip_patterns: ["*.config.js"]
      parser_timeout: 2.5
      verify_with_toolchain: yes
      scoring:
        name_exact: 40
""",
        encoding="utf-8",
    )

    config = load_config(config_file)

    assert config.root == tmp_path.resolve()
    assert config.max_depth == 4
    assert config.concurrency == 1
    assert config.report_limit == 3
    assert config.skip_directories == ["vendor"]
    assert config.exclude_paths == ["generated/"]

    assert config.cache.enabled is False
    assert config.cache.file == ".cache/discovery.json"
    assert config.cache.ttl_ms == pytest.approx(60_000)
    assert config.cache.log_warnings is True

    scoring = config.scoring
    assert scoring.min_candidate_score == -20
    assert scoring.allow_loose_name_match is False
    assert scoring.extensions == {".py": 3.0}
    assert scoring.file_name.exact_match == 50
    assert scoring.file_name.case_insensitive == 30
    assert scoring.paths.positive == {"/source/": 9.0}
    assert "/tests/" in scoring.paths.negative
    assert scoring.methods.per_mention == 4
    assert scoring.methods.max_mentions == 2

    assert config.security.blocked_tokens == ["eval("]
    assert config.plugins.disabled == ["java"]

    javascript = config.language("JavaScript")
    assert javascript.extensions == [".js"]
    assert javascript.skip_patterns == ["*.config.js"]
    assert javascript.parser_timeout == pytest.approx(2.5)
    assert javascript.verify_with_toolchain is True
    assert javascript.scoring == {"name_exact": 40.0}


def test_load_config_rejects_invalid_yaml(tmp_path: Path) -> None:
    (tmp_path / CONFIG_FILENAME).write_text("discovery: [unterminated\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(tmp_path)


def test_load_config_rejects_non_mapping_root(tmp_path: Path) -> None:
    (tmp_path / CONFIG_FILENAME).write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(tmp_path)


def test_empty_config_file_uses_defaults(tmp_path: Path) -> None:
    (tmp_path / CONFIG_FILENAME).write_text("\n", encoding="utf-8")

    assert load_config(tmp_path).max_depth == 10


def test_config_from_mapping_accepts_inner_mapping(tmp_path: Path) -> None:
    config = config_from_mapping({"max_depth": 2, "cache": {"enabled": False}}, root=tmp_path)

    assert config.root == tmp_path.resolve()
    assert config.max_depth == 2
    assert config.cache.enabled is False


def test_config_from_mapping_ignores_wrongly_typed_values(tmp_path: Path) -> None:
    config = config_from_mapping(
        {"discovery": {"max_depth": "deep", "report_limit": -1, "exclude_paths": {"a": 1}}},
        root=tmp_path,
    )

    assert config.max_depth == 10
    assert config.report_limit == 5
    assert config.exclude_paths == []
