"""Shared tree-sitter plumbing for external-runtime language plugins."""

from __future__ import annotations

import importlib
import threading
from abc import abstractmethod
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from ..errors import ParseError, ValidationError
from ..logging import get_logger
from ..models import Candidate, ForeignTarget, ModuleMetadata, ResolvedTarget, Signature
from .base import LanguagePlugin, ResolutionContext

try:  # pragma: no cover - optional dependency
    from tree_sitter import Language, Node, Parser

    TREE_SITTER_AVAILABLE = True
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    Language = None  # type: ignore[assignment]
    Node = None  # type: ignore[assignment]
    Parser = None  # type: ignore[assignment]
    TREE_SITTER_AVAILABLE = False

logger = get_logger("plugins.tree_sitter")

_LANGUAGES: Dict[str, Optional["Language"]] = {}
_LANGUAGES_LOCK = threading.Lock()


def load_language(module_name: str, factory: str = "language") -> Optional["Language"]:
    """Return the grammar exposed by ``module_name.factory()``, or ``None`` if missing."""
    key = f"{module_name}:{factory}"
    with _LANGUAGES_LOCK:
        if key in _LANGUAGES:
            return _LANGUAGES[key]
        language = None
        if TREE_SITTER_AVAILABLE:
            try:
                module = importlib.import_module(module_name)
                language = Language(getattr(module, factory)())
            except (ModuleNotFoundError, AttributeError) as exc:
                logger.debug("tree-sitter grammar %s unavailable: %s", key, exc)
        _LANGUAGES[key] = language
        return language


def node_text(node: "Node", data: bytes) -> str:
    return data[node.start_byte : node.end_byte].decode("utf-8", errors="replace")


def field_text(node: "Node", field: str, data: bytes) -> Optional[str]:
    child = node.child_by_field_name(field)
    return node_text(child, data) if child is not None else None


def named_children(node: "Node") -> Iterator["Node"]:
    for child in node.children:
        if child.is_named:
            yield child


def walk(node: "Node") -> Iterator["Node"]:
    """Depth-first pre-order traversal."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


class TreeSitterPlugin(LanguagePlugin):
    """Parses with a tree-sitter grammar and resolves to :class:`ForeignTarget` descriptors."""

    grammar_module: str = ""
    grammar_factory: str = "language"

    @classmethod
    def is_available(cls) -> bool:
        return load_language(cls.grammar_module, cls.grammar_factory) is not None

    def language_for(self, path: Path) -> Optional["Language"]:
        return load_language(self.grammar_module, self.grammar_factory)

    def parse_source(self, path: Path, source: str) -> ModuleMetadata:
        language = self.language_for(path)
        if language is None:
            raise ParseError(str(path), f"no tree-sitter grammar for {self.name}", language=self.name)
        data = source.encode("utf-8")
        tree = Parser(language).parse(data)
        root = tree.root_node
        metadata = self.build_metadata(path, root, data)
        if root.has_error:
            logger.debug("Parse errors in %s (continuing with partial tree)", path)
            metadata.has_errors = True
        return metadata

    @abstractmethod
    def build_metadata(self, path: Path, root: "Node", data: bytes) -> ModuleMetadata:
        """Walk the syntax tree into module metadata."""

    def resolve_target(
        self, candidate: Candidate, signature: Signature, context: ResolutionContext
    ) -> Optional[ResolvedTarget]:
        entity = candidate.entity
        target = ForeignTarget(
            language=self.name,
            path=candidate.path,
            name=entity.name,
            kind=entity.kind,
            methods=entity.methods,
            properties=entity.properties,
            bases=entity.bases,
            package=candidate.metadata.package,
        )
        reason = context.evaluator.describe_mismatch(target, signature, metadata=entity, name=entity.name)
        if reason is not None:
            raise ValidationError(candidate.path, reason, entity=entity.name)
        self.verify_candidate(candidate)
        return ResolvedTarget(
            value=target,
            access=entity.access,
            full_name=target.full_name,
            language=self.name,
            path=candidate.path,
            kind=entity.kind,
            metadata=entity,
        )

    def verify_candidate(self, candidate: Candidate) -> None:
        """Optional toolchain check; raise :class:`LoadError` on failure."""


def unique(items: List[str]) -> tuple:
    return tuple(dict.fromkeys(item for item in items if item))


__all__ = [
    "TREE_SITTER_AVAILABLE",
    "TreeSitterPlugin",
    "field_text",
    "load_language",
    "named_children",
    "node_text",
    "unique",
    "walk",
]
