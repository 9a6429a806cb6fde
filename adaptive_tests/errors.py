"""Error taxonomy for discovery, resolution and caching."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .models import CandidateReport


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be parsed."""


class DiscoveryError(RuntimeError):
    """Base class for errors raised while discovering or resolving targets."""

    code = "DISCOVERY_ERROR"

    def __init__(self, message: str, *, context: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})
        self.timestamp = datetime.now(UTC).isoformat().replace("+00:00", "Z")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp,
        }


class ParseError(DiscoveryError):
    """A file could not be statically analyzed."""

    code = "PARSE_ERROR"

    def __init__(self, path: str, message: str, *, language: str | None = None) -> None:
        super().__init__(
            f"Failed to parse {path}: {message}",
            context={"path": path, "language": language},
        )
        self.path = path
        self.language = language


class UnsafeCandidateError(DiscoveryError):
    """The static content check rejected loading a candidate."""

    code = "UNSAFE_CANDIDATE"

    def __init__(self, path: str, token: str | None = None) -> None:
        detail = f" (matched {token!r})" if token else ""
        super().__init__(
            f"Refusing to load {path}: source contains a blocked pattern{detail}",
            context={"path": path, "token": token},
        )
        self.path = path
        self.token = token


class LoadError(DiscoveryError):
    """Importing a module or invoking a foreign toolchain failed."""

    code = "LOAD_ERROR"

    def __init__(self, path: str, message: str, *, timed_out: bool = False) -> None:
        super().__init__(
            f"Failed to load {path}: {message}",
            context={"path": path, "timed_out": timed_out},
        )
        self.path = path
        self.timed_out = timed_out


class ValidationError(DiscoveryError):
    """A loadable candidate does not structurally satisfy the signature."""

    code = "VALIDATION_ERROR"

    def __init__(self, path: str, message: str, *, entity: str | None = None) -> None:
        super().__init__(
            f"{path}: {message}",
            context={"path": path, "entity": entity},
        )
        self.path = path
        self.entity = entity


class CacheError(DiscoveryError):
    """The persistent cache could not be read or written. Never fatal."""

    code = "CACHE_ERROR"


class PluginRegistrationError(DiscoveryError):
    """A language plugin failed validation and was not registered."""

    code = "PLUGIN_INVALID"

    def __init__(self, name: str, message: str, *, origin: str | None = None) -> None:
        super().__init__(
            f"Cannot register language plugin '{name}': {message}",
            context={"plugin": name, "origin": origin},
        )
        self.plugin = name
        self.origin = origin


class DiscoveryCancelled(DiscoveryError):
    """The caller cancelled an in-progress discovery."""

    code = "CANCELLED"


class NoMatchError(DiscoveryError):
    """No ranked candidate validated against the signature."""

    code = "NO_MATCH"

    def __init__(
        self,
        signature: Mapping[str, Any],
        candidates: Sequence["CandidateReport"],
        *,
        failures: Sequence[DiscoveryError] = (),
        suggestion: Optional[Mapping[str, Any]] = None,
        root: str | None = None,
    ) -> None:
        self.signature = dict(signature)
        self.candidates: List["CandidateReport"] = list(candidates)
        self.failures: List[DiscoveryError] = list(failures)
        self.suggestion = dict(suggestion) if suggestion else None
        self.root = root
        super().__init__(
            _format_no_match(self.signature, self.candidates, self.failures, self.suggestion, root),
            context={
                "signature": self.signature,
                "root": root,
                "candidates": [report.to_dict() for report in self.candidates],
                "failures": [failure.to_dict() for failure in self.failures],
                "suggestion": self.suggestion,
            },
        )


def _format_no_match(
    signature: Mapping[str, Any],
    candidates: Sequence["CandidateReport"],
    failures: Sequence[DiscoveryError],
    suggestion: Optional[Mapping[str, Any]],
    root: str | None,
) -> str:
    described = ", ".join(f"{key}={value!r}" for key, value in signature.items()) or "<any>"
    where = f" under {root}" if root else ""
    lines = [f"Could not discover a target matching {{{described}}}{where}."]
    if not candidates:
        lines.append("No candidates were found. Check the search root and skip rules.")
    else:
        lines.append("Top candidates:")
        for report in candidates:
            lines.append(f"  {report.score:>7.1f}  {report.relative_path}::{report.entity}")
    if failures:
        lines.append("Resolution failures:")
        for failure in failures[:5]:
            lines.append(f"  - {failure.message}")
    if suggestion:
        hint = ", ".join(f"{key}={value!r}" for key, value in suggestion.items())
        lines.append(f"Closest candidate suggests: {{{hint}}}")
    return "\n".join(lines)


__all__ = [
    "CacheError",
    "ConfigError",
    "DiscoveryCancelled",
    "DiscoveryError",
    "LoadError",
    "NoMatchError",
    "ParseError",
    "PluginRegistrationError",
    "UnsafeCandidateError",
    "ValidationError",
]
