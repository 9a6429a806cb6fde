"""Base class for language plugins."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..config import LanguageConfig
from ..errors import ParseError
from ..logging import get_logger
from ..models import Candidate, EntityInfo, ModuleMetadata, ResolvedTarget, Signature
from ..scanner import hash_bytes
from ..signature import match_name

logger = get_logger("plugins")

_ENTITY_WEIGHTS: Dict[str, float] = {
    "name_exact": 20.0,
    "name_insensitive": 10.0,
    "name_pattern": 12.0,
    "name_mismatch": -15.0,
    "kind_match": 10.0,
    "kind_mismatch": -25.0,
    "member_coverage": 8.0,
    "private": -5.0,
    "package_match": 3.0,
}


@dataclass
class ResolutionContext:
    """What a plugin needs to turn a candidate into a target.

    ``source`` holds the exact file bytes that passed the safety check.
    """

    loader: Any
    evaluator: Any
    source: bytes


class LanguagePlugin(ABC):
    """Contract for language adapters: parse, extract, score, resolve, scaffold.

    Plugins never execute scanned code while parsing. Parsed metadata is kept
    in a small LRU keyed by path and content hash.
    """

    name: str = ""
    extensions: Tuple[str, ...] = ()
    skip_patterns: Tuple[str, ...] = ()
    # "host" plugins load live values; "external" ones return metadata descriptors.
    runtime: str = "external"
    parse_cache_size: int = 128

    def __init__(self, config: LanguageConfig | None = None) -> None:
        self.config = config or LanguageConfig()
        self._parse_cache: "OrderedDict[Tuple[str, str], ModuleMetadata]" = OrderedDict()
        self._cache_lock = threading.Lock()
        self._weights = dict(_ENTITY_WEIGHTS)
        self._weights.update(self.config.scoring)

    @classmethod
    def is_available(cls) -> bool:
        return True

    def get_extensions(self) -> Tuple[str, ...]:
        configured = tuple(ext if ext.startswith(".") else f".{ext}" for ext in self.config.extensions)
        return configured or self.extensions

    def get_file_extension(self) -> str:
        return self.get_extensions()[0]

    def handles_path(self, path: Path) -> bool:
        name = path.name.lower()
        return any(name.endswith(ext) for ext in self.get_extensions())

    def should_scan_file(self, path: Path) -> bool:
        if not self.handles_path(path):
            return False
        name = path.name.lower()
        for pattern in tuple(self.skip_patterns) + tuple(self.config.skip_patterns):
            if fnmatchcase(name, pattern.lower()):
                return False
        try:
            return path.stat().st_size <= self.config.max_file_size
        except OSError:
            return False

    # ------------------------------------------------------------------
    # Parsing

    def parse_file(self, path: Path, data: bytes | None = None) -> Optional[ModuleMetadata]:
        """Tolerant parse: returns ``None`` (and logs) instead of raising."""
        try:
            return self.parse_or_raise(path, data)
        except ParseError as exc:
            logger.debug("%s", exc)
            return None

    def parse_or_raise(self, path: Path, data: bytes | None = None) -> ModuleMetadata:
        if data is None:
            try:
                data = path.read_bytes()
            except OSError as exc:
                raise ParseError(str(path), str(exc), language=self.name) from exc
        key = (str(path), hash_bytes(data))
        with self._cache_lock:
            cached = self._parse_cache.get(key)
            if cached is not None:
                self._parse_cache.move_to_end(key)
                return cached
        try:
            source = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ParseError(str(path), "file is not valid UTF-8", language=self.name) from exc
        metadata = self.parse_source(path, source)
        with self._cache_lock:
            self._parse_cache[key] = metadata
            while len(self._parse_cache) > self.parse_cache_size:
                self._parse_cache.popitem(last=False)
        return metadata

    @abstractmethod
    def parse_source(self, path: Path, source: str) -> ModuleMetadata:
        """Build metadata from source text. Raise :class:`ParseError` on failure."""

    def extract_candidates(self, metadata: ModuleMetadata) -> List[EntityInfo]:
        return [entity for entity in metadata.entities if entity.exported]

    def clear_parse_cache(self) -> None:
        with self._cache_lock:
            self._parse_cache.clear()

    def parse_cache_len(self) -> int:
        with self._cache_lock:
            return len(self._parse_cache)

    # ------------------------------------------------------------------
    # Scoring

    def score_language_specific(
        self, entity: EntityInfo, metadata: ModuleMetadata, signature: Signature
    ) -> float:
        weights = self._weights
        score = 0.0
        match = match_name(entity.name, signature)
        if match == "exact":
            score += weights["name_exact"]
        elif match == "insensitive":
            score += weights["name_insensitive"]
        elif match == "pattern":
            score += weights["name_pattern"]
        elif match is None and entity.kind != "module":
            score += weights["name_mismatch"]

        if signature.type:
            score += weights["kind_match"] if entity.kind == signature.type else weights["kind_mismatch"]

        required = signature.methods + signature.properties
        if required:
            members = set(entity.methods) | set(entity.properties)
            covered = sum(1 for name in required if name in members)
            score += weights["member_coverage"] * covered / len(required)

        if entity.private:
            score += weights["private"]
        score += self.score_package(metadata, signature)
        return score

    def score_package(self, metadata: ModuleMetadata, signature: Signature) -> float:
        """Reward a package/namespace hint carried by the signature."""
        if not metadata.package:
            return 0.0
        hint = dict(signature.extras).get("package")
        name = signature.name_text
        if not isinstance(hint, str) and name and "." in name:
            hint = name.rsplit(".", 1)[0]
        if isinstance(hint, str) and hint and metadata.package.endswith(hint):
            return self._weights["package_match"]
        return 0.0

    # ------------------------------------------------------------------
    # Resolution and scaffolding

    @abstractmethod
    def resolve_target(
        self, candidate: Candidate, signature: Signature, context: ResolutionContext
    ) -> Optional[ResolvedTarget]:
        """Return the target for ``candidate`` or ``None`` when it does not match."""

    def generate_test_content(
        self, target: ResolvedTarget, options: Mapping[str, Any] | None = None
    ) -> str:
        members = _member_names(target)
        prefix = str((options or {}).get("comment_prefix", "//"))
        lines = [f"{prefix} Adaptive test for {target.full_name} ({target.kind})"]
        lines.extend(f"{prefix} TODO: exercise {member}" for member in members)
        return "\n".join(lines) + "\n"


def _member_names(target: ResolvedTarget) -> List[str]:
    metadata = target.metadata
    if metadata is None:
        return []
    return list(metadata.methods) + [name for name in metadata.properties if name not in metadata.methods]


__all__ = ["LanguagePlugin", "ResolutionContext"]
