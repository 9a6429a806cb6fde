"""Load-safety checks, export selection and structural validation."""

from __future__ import annotations

import inspect
import types
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .config import SecurityConfig
from .logging import get_logger
from .models import (
    AccessPath,
    Candidate,
    EntityInfo,
    ForeignTarget,
    ModuleMetadata,
    Signature,
)
from .signature import match_name

logger = get_logger("evaluator")

_DENYLISTS: Dict[str, Tuple[str, ...]] = {
    "python": (
        "os._exit(",
        "sys.exit(",
        "os.system(",
        "os.popen(",
        "os.kill(",
        "subprocess",
        "shutil.rmtree(",
        "os.remove(",
        "os.unlink(",
        "os.rmdir(",
        "os.removedirs(",
        "urlopen(",
        "socket.socket(",
    ),
    "javascript": (
        "process.exit(",
        "child_process.exec",
        "child_process.spawn",
        "child_process.fork",
        "require('child_process')",
        'require("child_process")',
        "from 'child_process'",
        'from "child_process"',
        "fs.rmsync",
        "fs.rmdirsync",
        "fs.unlinksync",
        "rimraf",
    ),
    "java": (
        "system.exit(",
        "runtime.getruntime().exec(",
        "processbuilder",
    ),
}
_DENYLISTS["typescript"] = _DENYLISTS["javascript"]

_KIND_BONUS = {"exact": 30.0, "insensitive": 20.0, "pattern": 15.0, "any": 0.0}


@dataclass(frozen=True)
class MemberSet:
    """Reflected capabilities of a target: callable members and data members."""

    methods: frozenset
    properties: frozenset

    @property
    def names(self) -> frozenset:
        return self.methods | self.properties

    def missing_methods(self, required: Iterable[str]) -> List[str]:
        return [name for name in required if name not in self.methods]

    def missing_properties(self, required: Iterable[str]) -> List[str]:
        return [name for name in required if name not in self.names]


def target_kind(value: Any) -> str:
    if isinstance(value, ForeignTarget):
        return value.kind
    if inspect.ismodule(value):
        return "module"
    if inspect.isclass(value):
        return "class"
    if callable(value):
        return "function"
    return "object"


def reflect_members(target: Any, metadata: Optional[EntityInfo] = None) -> MemberSet:
    """Reflect ``target`` into a :class:`MemberSet` without running user code.

    Classes are inspected with :func:`inspect.getattr_static` and never
    instantiated; attributes assigned in ``__init__`` come from ``metadata``.
    Foreign targets are reflected from their extracted metadata only.
    """
    if isinstance(target, ForeignTarget):
        return MemberSet(frozenset(target.methods), frozenset(target.properties))

    methods: set = set()
    properties: set = set()
    if metadata is not None:
        properties.update(metadata.properties)

    if inspect.ismodule(target):
        for name, value in vars(target).items():
            if name.startswith("__"):
                continue
            (methods if callable(value) else properties).add(name)
        return MemberSet(frozenset(methods), frozenset(properties))

    if inspect.isclass(target):
        for name in dir(target):
            if name.startswith("__") and name.endswith("__"):
                continue
            try:
                raw = inspect.getattr_static(target, name)
            except AttributeError:
                continue
            if isinstance(raw, (staticmethod, classmethod)) or inspect.isfunction(raw) or inspect.isroutine(raw):
                methods.add(name)
            else:
                properties.add(name)
        return MemberSet(frozenset(methods), frozenset(properties))

    if inspect.isroutine(target):
        properties.update(name for name in getattr(target, "__dict__", {}) if not name.startswith("__"))
        return MemberSet(frozenset(methods), frozenset(properties))

    # Plain objects: class-level members plus instance attributes.
    for name in dir(target):
        if name.startswith("__") and name.endswith("__"):
            continue
        try:
            raw = inspect.getattr_static(target, name)
        except AttributeError:
            continue
        if isinstance(raw, property):
            properties.add(name)
        elif callable(raw) or isinstance(raw, (staticmethod, classmethod)):
            methods.add(name)
        else:
            properties.add(name)
    if isinstance(target, Mapping):
        for key, value in target.items():
            if isinstance(key, str):
                (methods if callable(value) else properties).add(key)
    return MemberSet(frozenset(methods), frozenset(properties))


class CandidateEvaluator:
    """Decides whether candidates may be loaded and whether values satisfy a signature."""

    def __init__(self, security: SecurityConfig | None = None) -> None:
        self.security = security or SecurityConfig()
        extra = tuple(token.lower() for token in self.security.blocked_tokens if token)
        self._denylists = {
            language: tuple(token.lower() for token in tokens) + extra
            for language, tokens in _DENYLISTS.items()
        }
        self._default_denylist = extra

    # ------------------------------------------------------------------
    # Safety

    def blocked_token(self, source: str, language: str) -> Optional[str]:
        """Return the first denylisted token found in ``source``, if any."""
        if self.security.allow_unsafe_loads:
            return None
        lowered = source.lower()
        for token in self._denylists.get(language, self._default_denylist):
            if token in lowered:
                return token
        return None

    def is_source_safe(self, source: str, language: str) -> bool:
        return self.blocked_token(source, language) is None

    def is_candidate_safe(self, candidate: Candidate, source: Optional[str] = None) -> bool:
        """Static check over the candidate's current file content.

        Always re-reads the file unless ``source`` is supplied; an unreadable
        file is treated as unsafe.
        """
        if source is None:
            try:
                source = Path(candidate.path).read_text(encoding="utf-8", errors="replace")
            except OSError as exc:
                logger.debug("Cannot read %s for safety check: %s", candidate.path, exc)
                return False
        token = self.blocked_token(source, candidate.language)
        if token is not None:
            logger.warning("Skipping %s: contains blocked pattern %r", candidate.relative_path, token)
            return False
        return True

    # ------------------------------------------------------------------
    # Metadata-only checks

    def metadata_mismatch(self, entity: EntityInfo, signature: Signature) -> Optional[str]:
        """Describe why ``entity`` cannot satisfy ``signature``, or ``None``."""
        if signature.type and entity.kind != signature.type:
            return f"{entity.name} is a {entity.kind}, expected {signature.type}"
        if match_name(entity.name, signature) is None and entity.name != signature.exports:
            return f"{entity.name} does not match name {signature.to_mapping().get('name')!r}"
        if signature.exports and entity.kind != "module" and entity.name != signature.exports:
            return f"{entity.name} is not exported as {signature.exports}"
        if entity.bases or entity.kind == "function":
            # Inherited members are only known after loading.
            return None
        missing = [name for name in signature.methods if name not in entity.methods]
        if missing:
            return f"{entity.name} is missing methods {', '.join(missing)}"
        members = set(entity.methods) | set(entity.properties)
        missing = [name for name in signature.properties if name not in members]
        if missing and entity.kind == "class":
            return f"{entity.name} is missing properties {', '.join(missing)}"
        return None

    def matches_signature_metadata(self, entity: EntityInfo, signature: Signature) -> bool:
        return self.metadata_mismatch(entity, signature) is None

    def select_export_from_metadata(
        self, metadata: ModuleMetadata, signature: Signature
    ) -> Optional[EntityInfo]:
        """Pick the single best entity of a module without loading it."""
        best: Optional[EntityInfo] = None
        best_score = float("-inf")
        for entity in metadata.entities:
            if not self.matches_signature_metadata(entity, signature):
                continue
            score = self._entity_preference(entity, signature)
            if score > best_score:
                best, best_score = entity, score
        return best

    def _entity_preference(self, entity: EntityInfo, signature: Signature) -> float:
        score = _KIND_BONUS.get(match_name(entity.name, signature) or "", 0.0)
        if signature.exports and entity.name == signature.exports:
            score += 10.0
        if entity.kind == "module":
            score -= 20.0
        if entity.access.type == "default":
            score += 2.0
        if entity.private:
            score -= 5.0
        return score

    # ------------------------------------------------------------------
    # Live values

    def extract_export_by_access(self, module: types.ModuleType, access: AccessPath) -> Any:
        """Re-derive a value from its module using a recorded access path."""
        if access.type == "direct":
            return module
        if access.type == "default":
            exported = getattr(module, "__all__", None)
            if isinstance(exported, (list, tuple)) and len(exported) == 1:
                return getattr(module, exported[0])
            if access.name:
                return getattr(module, access.name)
            raise AttributeError(f"{module.__name__} has no default export")
        if not access.name:
            raise AttributeError("named access requires a name")
        return getattr(module, access.name)

    def export_surface(self, module: types.ModuleType) -> List[Tuple[str, Any, AccessPath]]:
        """Enumerate ``(name, value, access)`` for everything the module exports."""
        surface: List[Tuple[str, Any, AccessPath]] = []
        exported = getattr(module, "__all__", None)
        if isinstance(exported, (list, tuple)):
            default = len(exported) == 1
            for name in exported:
                if isinstance(name, str) and hasattr(module, name):
                    access = AccessPath("default" if default else "named", name)
                    surface.append((name, getattr(module, name), access))
        else:
            for name, value in vars(module).items():
                if name.startswith("__") or inspect.ismodule(value):
                    continue
                owner = getattr(value, "__module__", None)
                if (inspect.isclass(value) or inspect.isroutine(value)) and owner != module.__name__:
                    continue
                surface.append((name, value, AccessPath("named", name)))
        surface.append((module.__name__.rsplit(".", 1)[-1], module, AccessPath("direct")))
        return surface

    def resolve_target_from_module(
        self,
        module: types.ModuleType,
        signature: Signature,
        preferred: Optional[EntityInfo] = None,
        metadata: Optional[ModuleMetadata] = None,
    ) -> Optional[Tuple[Any, AccessPath]]:
        """Return the best-matching ``(value, access)`` from a loaded module."""
        entities = {entity.name: entity for entity in (metadata.entities if metadata else [])}
        best: Optional[Tuple[Any, AccessPath]] = None
        best_score = float("-inf")
        for name, value, access in self.export_surface(module):
            info = entities.get(name) if access.type != "direct" else None
            if not self.validate_target(value, signature, metadata=info, name=name):
                continue
            score = self.match_score(value, signature, name=name)
            if preferred is not None and preferred.access.type == access.type and (
                access.type == "direct" or preferred.name == name
            ):
                score += 25.0
            if score > best_score:
                best, best_score = (value, access), score
        return best

    def match_score(self, value: Any, signature: Signature, *, name: Optional[str] = None) -> float:
        label = name or _value_name(value)
        score = _KIND_BONUS.get(match_name(label, signature) or "", 0.0) if label else 0.0
        if signature.exports and label == signature.exports:
            score += 10.0
        if signature.type and target_kind(value) == signature.type:
            score += 5.0
        if target_kind(value) == "module" and signature.type != "module":
            score -= 20.0
        return score

    def validate_target(
        self,
        target: Any,
        signature: Signature,
        *,
        metadata: Optional[EntityInfo] = None,
        name: Optional[str] = None,
    ) -> bool:
        return self.describe_mismatch(target, signature, metadata=metadata, name=name) is None

    def describe_mismatch(
        self,
        target: Any,
        signature: Signature,
        *,
        metadata: Optional[EntityInfo] = None,
        name: Optional[str] = None,
    ) -> Optional[str]:
        """Return a human-readable reason ``target`` fails ``signature``."""
        if target is None:
            return "target is None"
        kind = target_kind(target)
        label = name or _value_name(target) or ""
        if signature.type and kind != signature.type:
            return f"{label or 'target'} is a {kind}, expected {signature.type}"
        if kind != "module":
            if match_name(label, signature) is None and label != signature.exports:
                return f"{label!r} does not match the requested name"
            if signature.exports and label != signature.exports:
                return f"{label!r} is not exported as {signature.exports!r}"

        members = reflect_members(target, metadata)
        missing = members.missing_methods(signature.methods)
        if missing:
            return f"{label} is missing methods {', '.join(missing)}"
        missing = members.missing_properties(signature.properties)
        if missing:
            return f"{label} is missing properties {', '.join(missing)}"

        if signature.extends is not None and not _inherits(target, signature.extends, strict=True):
            return f"{label} does not extend {_type_name(signature.extends)}"
        if signature.instance_of is not None and not _inherits(
            target, signature.instance_of, strict=False
        ):
            return f"{label} is not an instance of {_type_name(signature.instance_of)}"
        return None

    # ------------------------------------------------------------------
    # Diagnostics

    def build_signature_suggestion(self, candidate: Candidate) -> Dict[str, Any]:
        """Propose a signature that would match ``candidate`` as extracted."""
        entity = candidate.entity
        suggestion: Dict[str, Any] = {"name": entity.name, "type": entity.kind}
        if entity.methods:
            suggestion["methods"] = list(entity.methods[:5])
        if entity.properties:
            suggestion["properties"] = list(entity.properties[:5])
        if entity.bases:
            suggestion["extends"] = entity.bases[0]
        if candidate.language:
            suggestion["language"] = candidate.language
        return suggestion


def _value_name(value: Any) -> Optional[str]:
    if isinstance(value, ForeignTarget):
        return value.name
    name = getattr(value, "__name__", None)
    if isinstance(name, str):
        return name.rsplit(".", 1)[-1]
    return None


def _type_name(value: Any) -> str:
    return value.__name__ if isinstance(value, type) else str(value)


def _lineage(target: Any) -> Sequence[Any]:
    if inspect.isclass(target):
        return inspect.getmro(target)
    return inspect.getmro(type(target))


def _inherits(target: Any, expected: Any, *, strict: bool) -> bool:
    """Inheritance check against a class object or a (possibly dotted) class name.

    ``strict`` excludes the target class itself, used for ``extends``.
    """
    if isinstance(target, ForeignTarget):
        wanted = _type_name(expected).rsplit(".", 1)[-1]
        if not strict and target.name == wanted:
            return True
        return any(base.rsplit(".", 1)[-1].split("<", 1)[0] == wanted for base in target.bases)

    lineage = list(_lineage(target))
    if strict and inspect.isclass(target):
        lineage = lineage[1:]
    if isinstance(expected, type):
        return expected in lineage
    wanted = str(expected)
    for cls in lineage:
        if wanted in (cls.__name__, cls.__qualname__, f"{cls.__module__}.{cls.__qualname__}"):
            return True
    return False


__all__ = [
    "CandidateEvaluator",
    "MemberSet",
    "reflect_members",
    "target_kind",
]
