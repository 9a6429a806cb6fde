"""Configuration loading for adaptive discovery (.adaptive-tests.yml)."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import yaml

from .errors import ConfigError

CONFIG_FILENAME = ".adaptive-tests.yml"

DEFAULT_SKIP_DIRECTORIES: tuple[str, ...] = (
    ".git",
    ".hg",
    ".svn",
    ".venv",
    "venv",
    "node_modules",
    "__pycache__",
    ".pytest_cache",
    ".mypy_cache",
    ".tox",
    ".eggs",
    ".idea",
    "site-packages",
    "coverage",
    "dist",
    "build",
    "target",
    ".next",
    ".nuxt",
    "__tests__",
)


@dataclass
class FileNameWeights:
    """Filename term constants, strictly ordered exact > insensitive > partial."""

    exact_match: float = 45.0
    case_insensitive: float = 30.0
    partial_match: float = 8.0
    regex_match: float = 12.0


@dataclass
class MentionWeights:
    """Capped per-mention reward."""

    per_mention: float = 3.0
    max_mentions: int = 5


@dataclass
class PathRules:
    """Ordered substring rules; the first match per list applies."""

    positive: Dict[str, float] = field(
        default_factory=lambda: {"/src/": 12.0, "/app/": 6.0, "/lib/": 4.0, "/core/": 4.0}
    )
    negative: Dict[str, float] = field(
        default_factory=lambda: {
            "/__tests__/": -50.0,
            "/__mocks__/": -45.0,
            "/tests/": -40.0,
            "/test/": -35.0,
            "/spec/": -35.0,
            "/mocks/": -30.0,
            "/mock": -30.0,
            "/fake": -25.0,
            "/stub": -25.0,
            "/deprecated/": -20.0,
            "/fixtures/": -15.0,
            "/fixture": -15.0,
            "/temp/": -15.0,
            "/tmp/": -15.0,
            "/sandbox/": -15.0,
            "/broken": -60.0,
        }
    )


@dataclass
class ScoringConfig:
    """Weights for the generic scoring terms."""

    min_candidate_score: float = -100.0
    allow_loose_name_match: bool = True
    loose_name_penalty: float = -25.0
    extensions: Dict[str, float] = field(
        default_factory=lambda: {
            ".py": 10.0,
            ".ts": 8.0,
            ".tsx": 8.0,
            ".java": 6.0,
            ".mjs": 6.0,
            ".cjs": 4.0,
            ".jsx": 2.0,
            ".js": 0.0,
        }
    )
    file_name: FileNameWeights = field(default_factory=FileNameWeights)
    paths: PathRules = field(default_factory=PathRules)
    type_hints: Dict[str, float] = field(
        default_factory=lambda: {"class": 15.0, "function": 12.0, "module": 10.0, "object": 8.0}
    )
    methods: MentionWeights = field(default_factory=MentionWeights)
    properties: MentionWeights = field(
        default_factory=lambda: MentionWeights(per_mention=2.0, max_mentions=5)
    )


@dataclass
class CacheConfig:
    """Runtime and persistent cache settings."""

    enabled: bool = True
    file: str = ".adaptive-tests-cache.json"
    ttl_seconds: float = 24 * 60 * 60
    log_warnings: bool = False
    max_runtime_entries: int = 256

    @property
    def ttl_ms(self) -> float:
        return self.ttl_seconds * 1000.0


@dataclass
class SecurityConfig:
    """Static load-safety settings."""

    allow_unsafe_loads: bool = False
    blocked_tokens: List[str] = field(default_factory=list)


@dataclass
class PluginConfig:
    """Language plugin allow/deny lists."""

    enabled: List[str] = field(default_factory=list)
    disabled: List[str] = field(default_factory=list)


@dataclass
class LanguageConfig:
    """Per-language overrides."""

    enabled: bool = True
    extensions: List[str] = field(default_factory=list)
    skip_patterns: List[str] = field(default_factory=list)
    max_file_size: int = 1024 * 1024
    parser_timeout: float = 5.0
    verify_with_toolchain: bool = False
    scoring: Dict[str, float] = field(default_factory=dict)


@dataclass
class DiscoveryConfig:
    """Represents the settings under the ``discovery`` key."""

    root: Path = field(default_factory=Path.cwd)
    max_depth: int = 10
    concurrency: int = 8
    skip_directories: List[str] = field(default_factory=lambda: list(DEFAULT_SKIP_DIRECTORIES))
    exclude_paths: List[str] = field(default_factory=list)
    report_limit: int = 5
    cache: CacheConfig = field(default_factory=CacheConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    plugins: PluginConfig = field(default_factory=PluginConfig)
    languages: Dict[str, LanguageConfig] = field(default_factory=dict)

    def language(self, name: str) -> LanguageConfig:
        return self.languages.get(name.lower()) or LanguageConfig()


def load_config(config_path: Path) -> DiscoveryConfig:
    """Load configuration from disk, returning defaults when the file is missing."""
    config_file = _resolve_config_path(config_path)
    root = config_file.parent.resolve()

    if not config_file.exists():
        return DiscoveryConfig(root=root)

    data = _read_config(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{CONFIG_FILENAME} must contain a mapping at the root")
    return config_from_mapping(data, root=root)


def config_from_mapping(data: Mapping[str, Any] | None, *, root: Path | None = None) -> DiscoveryConfig:
    """Build a config from ``{"discovery": {...}}`` or the inner mapping itself."""
    data = _as_dict(data)
    discovery = _as_dict(data.get("discovery")) if "discovery" in data else dict(data)
    config = DiscoveryConfig(root=(root or Path.cwd()).resolve())

    max_depth = _as_int(discovery.get("max_depth"))
    if max_depth is not None and max_depth >= 0:
        config.max_depth = max_depth
    concurrency = _as_int(discovery.get("concurrency"))
    if concurrency is not None:
        config.concurrency = max(1, concurrency)
    report_limit = _as_int(discovery.get("report_limit"))
    if report_limit is not None and report_limit > 0:
        config.report_limit = report_limit
    if "skip_directories" in discovery:
        config.skip_directories = _as_str_list(discovery.get("skip_directories"))
    config.exclude_paths = _as_str_list(discovery.get("exclude_paths"))

    cache_data = _as_dict(discovery.get("cache"))
    if cache_data:
        cache = config.cache
        enabled = _as_bool(cache_data.get("enabled"))
        cache.enabled = cache.enabled if enabled is None else enabled
        cache.file = _as_str(cache_data.get("file")) or cache.file
        ttl = _as_float(cache_data.get("ttl_seconds"))
        if ttl is not None and ttl >= 0:
            cache.ttl_seconds = ttl
        log_warnings = _as_bool(cache_data.get("log_warnings"))
        cache.log_warnings = bool(log_warnings)
        max_entries = _as_int(cache_data.get("max_runtime_entries"))
        if max_entries is not None and max_entries > 0:
            cache.max_runtime_entries = max_entries

    scoring_data = _as_dict(discovery.get("scoring"))
    if scoring_data:
        _apply_scoring(config.scoring, scoring_data)

    security_data = _as_dict(discovery.get("security"))
    if security_data:
        config.security.allow_unsafe_loads = bool(_as_bool(security_data.get("allow_unsafe_loads")))
        config.security.blocked_tokens = _as_str_list(security_data.get("blocked_tokens"))

    plugin_data = _as_dict(discovery.get("plugins"))
    if plugin_data:
        config.plugins.enabled = [name.lower() for name in _as_str_list(plugin_data.get("enabled"))]
        config.plugins.disabled = [name.lower() for name in _as_str_list(plugin_data.get("disabled"))]

    for name, raw in _as_dict(discovery.get("languages")).items():
        language_data = _as_dict(raw)
        language = LanguageConfig()
        enabled = _as_bool(language_data.get("enabled"))
        language.enabled = True if enabled is None else enabled
        language.extensions = [ext.lower() for ext in _as_str_list(language_data.get("extensions"))]
        language.skip_patterns = _as_str_list(language_data.get("skip_patterns"))
        max_size = _as_int(language_data.get("max_file_size"))
        if max_size is not None and max_size > 0:
            language.max_file_size = max_size
        timeout = _as_float(language_data.get("parser_timeout"))
        if timeout is not None and timeout > 0:
            language.parser_timeout = timeout
        language.verify_with_toolchain = bool(_as_bool(language_data.get("verify_with_toolchain")))
        language.scoring = _as_float_map(language_data.get("scoring"))
        config.languages[str(name).lower()] = language

    return config


def _apply_scoring(scoring: ScoringConfig, data: Dict[str, Any]) -> None:
    min_score = _as_float(data.get("min_candidate_score"))
    if min_score is not None:
        scoring.min_candidate_score = min_score
    allow_loose = _as_bool(data.get("allow_loose_name_match"))
    if allow_loose is not None:
        scoring.allow_loose_name_match = allow_loose
    penalty = _as_float(data.get("loose_name_penalty"))
    if penalty is not None:
        scoring.loose_name_penalty = penalty

    if "extensions" in data:
        scoring.extensions = {key.lower(): value for key, value in _as_float_map(data.get("extensions")).items()}

    file_name = _as_dict(data.get("file_name"))
    for key in ("exact_match", "case_insensitive", "partial_match", "regex_match"):
        value = _as_float(file_name.get(key))
        if value is not None:
            setattr(scoring.file_name, key, value)

    paths = _as_dict(data.get("paths"))
    if "positive" in paths:
        scoring.paths.positive = _as_float_map(paths.get("positive"))
    if "negative" in paths:
        scoring.paths.negative = _as_float_map(paths.get("negative"))

    if "type_hints" in data:
        scoring.type_hints.update(_as_float_map(data.get("type_hints")))

    for section in ("methods", "properties"):
        weights = _as_dict(data.get(section))
        target: MentionWeights = getattr(scoring, section)
        per_mention = _as_float(weights.get("per_mention"))
        if per_mention is not None:
            target.per_mention = per_mention
        max_mentions = _as_int(weights.get("max_mentions"))
        if max_mentions is not None and max_mentions >= 0:
            target.max_mentions = max_mentions


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _read_config(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded or {}


def _as_dict(value: Any) -> Dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


def _as_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, (str, int, float, bool)) else None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    return None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float, bool))]
    return []


def _as_float_map(value: Any) -> Dict[str, float]:
    result: Dict[str, float] = {}
    for key, raw in _as_dict(value).items():
        number = _as_float(raw)
        if number is not None:
            result[str(key)] = number
    return result


__all__ = [
    "CONFIG_FILENAME",
    "CacheConfig",
    "DiscoveryConfig",
    "FileNameWeights",
    "LanguageConfig",
    "MentionWeights",
    "PathRules",
    "PluginConfig",
    "ScoringConfig",
    "SecurityConfig",
    "config_from_mapping",
    "load_config",
]
