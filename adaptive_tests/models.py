"""Core data models shared across discovery components."""

import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

TARGET_KINDS: Tuple[str, ...] = ("class", "function", "object", "module")

NamePattern = Union[str, "re.Pattern[str]"]


@dataclass(frozen=True)
class Signature:
    """Normalized structural description of the artifact being searched for.

    Instances are produced by :func:`adaptive_tests.signature.normalize_signature`
    and are immutable. ``type`` of ``None`` means "any kind".
    """

    name: Optional[NamePattern] = None
    type: Optional[str] = None
    exports: Optional[str] = None
    methods: Tuple[str, ...] = ()
    properties: Tuple[str, ...] = ()
    extends: Optional[Union[str, type]] = None
    instance_of: Optional[Union[str, type]] = None
    language: Optional[str] = None
    extras: Tuple[Tuple[str, Any], ...] = ()

    @property
    def name_text(self) -> Optional[str]:
        """Return the literal name, or ``None`` when unset or a pattern."""
        return self.name if isinstance(self.name, str) else None

    @property
    def name_pattern(self) -> Optional["re.Pattern[str]"]:
        return self.name if isinstance(self.name, re.Pattern) else None

    def to_mapping(self) -> Dict[str, Any]:
        """Return a display-friendly mapping of the populated fields."""
        data: Dict[str, Any] = {}
        if self.name is not None:
            data["name"] = (
                f"/{self.name.pattern}/" if isinstance(self.name, re.Pattern) else self.name
            )
        if self.type:
            data["type"] = self.type
        if self.exports:
            data["exports"] = self.exports
        if self.methods:
            data["methods"] = list(self.methods)
        if self.properties:
            data["properties"] = list(self.properties)
        if self.extends is not None:
            data["extends"] = _type_label(self.extends)
        if self.instance_of is not None:
            data["instance_of"] = _type_label(self.instance_of)
        if self.language:
            data["language"] = self.language
        return data


def _type_label(value: Union[str, type]) -> str:
    if isinstance(value, type):
        return f"{value.__module__}.{value.__qualname__}"
    return value


@dataclass(frozen=True)
class AccessPath:
    """How a target is obtained from its module's export surface."""

    type: str
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"type": self.type, "name": self.name}


@dataclass(frozen=True)
class EntityInfo:
    """A statically extracted, named entity (the candidate descriptor)."""

    name: str
    kind: str
    access: AccessPath
    methods: Tuple[str, ...] = ()
    properties: Tuple[str, ...] = ()
    bases: Tuple[str, ...] = ()
    exported: bool = True
    line: int = 0

    @property
    def private(self) -> bool:
        return self.name.startswith("_")


@dataclass
class ModuleMetadata:
    """Structural summary of a parsed source file."""

    path: str
    language: str
    module_name: str
    package: Optional[str] = None
    entities: List[EntityInfo] = field(default_factory=list)
    imports: List[str] = field(default_factory=list)
    exports: Optional[List[str]] = None
    has_errors: bool = False


@dataclass(frozen=True)
class Fingerprint:
    """Cheap proxy for detecting file changes. The content hash is authoritative."""

    mtime_ns: int
    size: int
    hash: str

    def matches(self, other: "Fingerprint") -> bool:
        return self.hash == other.hash

    def to_dict(self) -> Dict[str, Any]:
        return {"mtime_ns": self.mtime_ns, "size": self.size, "hash": self.hash}


@dataclass
class ScoreBreakdown:
    """Explainable decomposition of a candidate score."""

    path: float = 0.0
    extension: float = 0.0
    file_name: float = 0.0
    type_hints: float = 0.0
    methods: float = 0.0
    properties: float = 0.0
    language: float = 0.0
    loose_name: float = 0.0
    details: List[str] = field(default_factory=list)

    @property
    def total(self) -> float:
        return (
            self.path
            + self.extension
            + self.file_name
            + self.type_hints
            + self.methods
            + self.properties
            + self.language
            + self.loose_name
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "extension": self.extension,
            "fileName": self.file_name,
            "typeHints": self.type_hints,
            "methods": self.methods,
            "properties": self.properties,
            "language": self.language,
            "looseName": self.loose_name,
            "total": self.total,
            "details": list(self.details),
        }


@dataclass
class Candidate:
    """A scored entity found during one collection pass."""

    path: str
    relative_path: str
    file_name: str
    language: str
    entity: EntityInfo
    metadata: ModuleMetadata
    score: float = 0.0
    language_adjustment: float = 0.0
    breakdown: Optional[ScoreBreakdown] = None
    content: Optional[str] = field(default=None, repr=False)

    @property
    def extension(self) -> str:
        return os.path.splitext(self.path)[1].lower()

    def sort_key(self) -> Tuple[float, str, int, str]:
        return (-self.score, self.relative_path, self.entity.line, self.entity.name)


@dataclass(frozen=True)
class CandidateReport:
    """Serializable view of a ranked candidate for diagnostics."""

    path: str
    relative_path: str
    entity: str
    kind: str
    language: str
    score: float
    breakdown: Mapping[str, Any]

    @classmethod
    def from_candidate(cls, candidate: Candidate) -> "CandidateReport":
        breakdown = candidate.breakdown.to_dict() if candidate.breakdown else {}
        return cls(
            path=candidate.path,
            relative_path=candidate.relative_path,
            entity=candidate.entity.name,
            kind=candidate.entity.kind,
            language=candidate.language,
            score=candidate.score,
            breakdown=breakdown,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "relativePath": self.relative_path,
            "entity": self.entity,
            "kind": self.kind,
            "language": self.language,
            "score": self.score,
            "breakdown": dict(self.breakdown),
        }


@dataclass(frozen=True)
class ForeignTarget:
    """Metadata-backed stand-in for a target whose runtime is external."""

    language: str
    path: str
    name: str
    kind: str
    methods: Tuple[str, ...] = ()
    properties: Tuple[str, ...] = ()
    bases: Tuple[str, ...] = ()
    package: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.package}.{self.name}" if self.package else self.name


@dataclass
class ResolvedTarget:
    """A resolved value plus the information needed to re-derive it."""

    value: Any
    access: AccessPath
    full_name: str
    language: str
    path: str
    kind: str
    metadata: Optional[EntityInfo] = None


@dataclass
class CacheEntry:
    """Shape shared by runtime and persistent cache entries."""

    cache_key: str
    candidate_path: str
    fingerprint: Fingerprint
    score: float
    resolved_descriptor: Dict[str, Any]
    timestamp: float
    ttl_ms: float
    hits: int = 0

    @property
    def access(self) -> Optional[AccessPath]:
        raw = self.resolved_descriptor.get("access")
        if not isinstance(raw, dict) or not isinstance(raw.get("type"), str):
            return None
        name = raw.get("name")
        return AccessPath(type=raw["type"], name=name if isinstance(name, str) else None)


@dataclass
class ResolutionAttempt:
    """Outcome of trying to resolve one candidate."""

    candidate: Candidate
    target: Optional[ResolvedTarget] = None
    error: Optional[Exception] = None
    fingerprint: Optional[Fingerprint] = None

    @property
    def ok(self) -> bool:
        return self.target is not None
