"""Signature normalization and cache-key derivation."""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any, Dict, Iterable, List, Mapping, Tuple, Union

from .logging import get_logger
from .models import TARGET_KINDS, Signature

SignatureInput = Union[str, "re.Pattern[str]", Mapping[str, Any], Signature]

_FIELD_ALIASES = {
    "name": "name",
    "type": "type",
    "kind": "type",
    "exports": "exports",
    "methods": "methods",
    "properties": "properties",
    "extends": "extends",
    "instance_of": "instance_of",
    "instanceOf": "instance_of",
    "instanceof": "instance_of",
    "language": "language",
}

_REGEX_FLAG_LETTERS = (
    (re.IGNORECASE, "i"),
    (re.MULTILINE, "m"),
    (re.DOTALL, "s"),
    (re.VERBOSE, "x"),
    (re.ASCII, "a"),
)

logger = get_logger("signature")


def normalize_signature(value: SignatureInput) -> Signature:
    """Return a fully populated, comparable signature. Never raises.

    A bare string (or compiled pattern) is treated as ``{"name": value}``.
    Arrays are de-duplicated preserving first-seen order; unknown keys are
    kept in ``extras``; plugins may read hints such as ``package`` from them.
    """
    if isinstance(value, Signature):
        raw: Dict[str, Any] = {
            "name": value.name,
            "type": value.type,
            "exports": value.exports,
            "methods": value.methods,
            "properties": value.properties,
            "extends": value.extends,
            "instance_of": value.instance_of,
            "language": value.language,
        }
        extras = dict(value.extras)
    elif isinstance(value, (str, re.Pattern)):
        raw = {"name": value}
        extras = {}
    elif isinstance(value, Mapping):
        raw = {}
        extras = {}
        for key, item in value.items():
            canonical = _FIELD_ALIASES.get(str(key))
            if canonical is None:
                extras[str(key)] = item
            elif canonical not in raw or raw[canonical] is None:
                raw[canonical] = item
    else:
        logger.debug("Ignoring unsupported signature value of type %s", type(value).__name__)
        raw = {}
        extras = {}

    return Signature(
        name=_normalize_name(raw.get("name")),
        type=_normalize_kind(raw.get("type")),
        exports=_normalize_text(raw.get("exports")),
        methods=_unique_names(raw.get("methods")),
        properties=_unique_names(raw.get("properties")),
        extends=_normalize_type_ref(raw.get("extends")),
        instance_of=_normalize_type_ref(raw.get("instance_of")),
        language=_normalize_language(raw.get("language")),
        extras=tuple(sorted(extras.items(), key=lambda item: item[0])),
    )


def signature_payload(signature: Signature) -> Dict[str, Any]:
    """Deterministic JSON-safe representation used as cache key material."""
    from .stores.persistent_cache import serialize_cache_value

    name: Any = signature.name
    if isinstance(name, re.Pattern):
        name = {"__type": "RegExp", "source": name.pattern, "flags": regex_flags(name)}
    return {
        "name": name,
        "type": signature.type,
        "exports": signature.exports,
        "methods": list(signature.methods),
        "properties": list(signature.properties),
        "extends": _type_ref_payload(signature.extends),
        "instance_of": _type_ref_payload(signature.instance_of),
        "language": signature.language,
        "extras": {key: serialize_cache_value(item) for key, item in signature.extras},
    }


def signature_cache_key(signature: Signature) -> str:
    """Hash of the sorted-key JSON serialization of a normalized signature."""
    encoded = json.dumps(signature_payload(signature), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def regex_flags(pattern: "re.Pattern[str]") -> str:
    return "".join(letter for flag, letter in _REGEX_FLAG_LETTERS if pattern.flags & flag)


def name_tokens(name: str) -> List[str]:
    """Split CamelCase / snake_case / kebab-case names into lowercase tokens."""
    spaced = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", name)
    spaced = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1 \2", spaced)
    return [token for token in re.split(r"[^A-Za-z0-9]+", spaced.lower()) if token]


def match_name(candidate: str, signature: Signature) -> str | None:
    """Classify how ``candidate`` matches the signature name.

    Returns ``"exact"``, ``"insensitive"`` (case or separator differences only),
    ``"pattern"`` for a regex hit, ``"any"`` when the signature has no name, or
    ``None`` on a mismatch.
    """
    pattern = signature.name_pattern
    if pattern is not None:
        return "pattern" if pattern.search(candidate) else None
    name = signature.name_text
    if not name:
        return "any"
    if candidate == name:
        return "exact"
    if candidate.lower() == name.lower() or squash_name(candidate) == squash_name(name):
        return "insensitive"
    return None


def squash_name(name: str) -> str:
    """Lowercase ``name`` and drop every non-alphanumeric character."""
    return re.sub(r"[^a-z0-9]", "", name.lower())


def _normalize_name(value: Any) -> Union[str, "re.Pattern[str]", None]:
    if isinstance(value, re.Pattern):
        return value
    return _normalize_text(value)


def _normalize_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, (str, int, float)) or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


def _normalize_kind(value: Any) -> str | None:
    text = _normalize_text(value)
    if text is None:
        return None
    lowered = text.lower()
    if lowered not in TARGET_KINDS:
        logger.debug("Ignoring unknown signature type %r", text)
        return None
    return lowered


def _normalize_language(value: Any) -> str | None:
    text = _normalize_text(value)
    return text.lower() if text else None


def _normalize_type_ref(value: Any) -> Union[str, type, None]:
    if isinstance(value, type):
        return value
    return _normalize_text(value)


def _unique_names(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    items: Iterable[Any]
    if isinstance(value, str):
        items = [value]
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value, key=str) if isinstance(value, (set, frozenset)) else value
    else:
        return ()
    seen: Dict[str, None] = {}
    for item in items:
        text = _normalize_text(item) if isinstance(item, str) else None
        if text and text not in seen:
            seen[text] = None
    return tuple(seen)


def _type_ref_payload(value: Union[str, type, None]) -> str | None:
    if isinstance(value, type):
        return f"{value.__module__}.{value.__qualname__}"
    return value


__all__ = [
    "SignatureInput",
    "match_name",
    "name_tokens",
    "normalize_signature",
    "regex_flags",
    "signature_cache_key",
    "signature_payload",
    "squash_name",
]
