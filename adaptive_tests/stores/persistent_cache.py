"""On-disk JSON cache of resolution descriptors."""

from __future__ import annotations

import inspect
import json
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import CacheError
from ..models import CacheEntry, Fingerprint
from ..signature import regex_flags

_MAX_DEPTH = 8


class PersistentCache:
    """Stores cache entries as ``{cacheKey: entry}`` in a single JSON file.

    Loading is lazy and tolerant: a missing or corrupt file yields an empty
    cache and malformed entries are skipped. Writes rewrite the whole file
    atomically.
    """

    def __init__(self, path: Path | None) -> None:
        self._path = path
        self._entries: Dict[str, CacheEntry] = {}
        self._loaded = False
        self._dirty = False
        self._lock = threading.RLock()

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def loaded(self) -> bool:
        return self._loaded

    def ensure_loaded(self) -> None:
        """Read the backing file once. Raises :class:`CacheError` on unreadable data.

        The cache is marked loaded (and empty) even when reading fails.
        """
        with self._lock:
            if self._loaded:
                return
            self._loaded = True
            if self._path is None:
                return
            try:
                text = self._path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return
            except OSError as exc:
                raise CacheError(f"Cannot read cache file {self._path}: {exc}") from exc
            try:
                data = json.loads(text) if text.strip() else {}
            except json.JSONDecodeError as exc:
                raise CacheError(f"Cache file {self._path} is not valid JSON: {exc}") from exc
            if not isinstance(data, dict):
                raise CacheError(f"Cache file {self._path} must contain a JSON object")
            for key, raw in data.items():
                entry = _entry_from_dict(key, raw)
                if entry is not None:
                    self._entries[key] = entry

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def store(self, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[entry.cache_key] = entry
            self._dirty = True

    def discard(self, key: str) -> None:
        with self._lock:
            if self._entries.pop(key, None) is not None:
                self._dirty = True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._loaded = True
            self._dirty = True

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def persist(self) -> bool:
        """Rewrite the cache file if anything changed. Raises :class:`CacheError`."""
        with self._lock:
            if not self._dirty or self._path is None:
                return False
            payload = {key: _entry_to_dict(entry) for key, entry in sorted(self._entries.items())}
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                fd, temp_name = tempfile.mkstemp(
                    prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as handle:
                        json.dump(payload, handle, indent=2, sort_keys=True)
                    os.replace(temp_name, self._path)
                except BaseException:
                    Path(temp_name).unlink(missing_ok=True)
                    raise
            except (OSError, TypeError, ValueError) as exc:
                raise CacheError(f"Cannot write cache file {self._path}: {exc}") from exc
            self._dirty = False
            return True

    def remove_file(self) -> None:
        with self._lock:
            if self._path is None:
                return
            try:
                self._path.unlink(missing_ok=True)
            except OSError as exc:
                raise CacheError(f"Cannot remove cache file {self._path}: {exc}") from exc

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def serialize_cache_value(value: Any, _depth: int = 0, _seen: Optional[set] = None) -> Any:
    """Turn ``value`` into a JSON-representable descriptor.

    Behavior is not preserved: functions become ``{"__type": "Function"}``
    markers and classes are described by name and module only.
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, re.Pattern):
        return {"__type": "RegExp", "source": value.pattern, "flags": regex_flags(value)}
    if inspect.ismodule(value):
        return {"__type": "Module", "name": value.__name__}
    if inspect.isclass(value):
        return {"__type": "Class", "name": value.__qualname__, "module": value.__module__}
    if inspect.isroutine(value):
        return {"__type": "Function", "name": getattr(value, "__name__", None)}
    if isinstance(value, Path):
        return str(value)

    seen = _seen if _seen is not None else set()
    if id(value) in seen:
        return {"__type": "Circular"}
    if _depth >= _MAX_DEPTH:
        return {"__type": "Truncated"}
    seen.add(id(value))
    try:
        if isinstance(value, dict):
            return {
                str(key): serialize_cache_value(item, _depth + 1, seen)
                for key, item in value.items()
            }
        if isinstance(value, (list, tuple, set, frozenset)):
            items = sorted(value, key=repr) if isinstance(value, (set, frozenset)) else value
            return [serialize_cache_value(item, _depth + 1, seen) for item in items]
        attributes = getattr(value, "__dict__", None)
        payload: Dict[str, Any] = {"__type": type(value).__name__}
        if isinstance(attributes, dict):
            for key, item in attributes.items():
                if not key.startswith("_"):
                    payload[key] = serialize_cache_value(item, _depth + 1, seen)
        return payload
    finally:
        seen.discard(id(value))


def _entry_to_dict(entry: CacheEntry) -> Dict[str, Any]:
    return {
        "cacheKey": entry.cache_key,
        "candidatePath": entry.candidate_path,
        "fingerprint": entry.fingerprint.to_dict(),
        "score": entry.score,
        "resolvedDescriptor": serialize_cache_value(entry.resolved_descriptor),
        "timestamp": entry.timestamp,
        "ttlMs": entry.ttl_ms,
        "hits": entry.hits,
    }


def _entry_from_dict(key: Any, raw: Any) -> Optional[CacheEntry]:
    if not isinstance(key, str) or not isinstance(raw, dict):
        return None
    fingerprint = raw.get("fingerprint")
    if not isinstance(fingerprint, dict) or not isinstance(fingerprint.get("hash"), str):
        return None
    candidate_path = raw.get("candidatePath")
    descriptor = raw.get("resolvedDescriptor")
    if not isinstance(candidate_path, str) or not isinstance(descriptor, dict):
        return None
    numbers = [raw.get("score"), raw.get("timestamp"), raw.get("ttlMs")]
    if not all(isinstance(item, (int, float)) and not isinstance(item, bool) for item in numbers):
        return None
    hits = raw.get("hits", 0)
    return CacheEntry(
        cache_key=key,
        candidate_path=candidate_path,
        fingerprint=Fingerprint(
            mtime_ns=_as_int(fingerprint.get("mtime_ns")),
            size=_as_int(fingerprint.get("size")),
            hash=fingerprint["hash"],
        ),
        score=float(numbers[0]),
        resolved_descriptor=descriptor,
        timestamp=float(numbers[1]),
        ttl_ms=float(numbers[2]),
        hits=hits if isinstance(hits, int) and not isinstance(hits, bool) else 0,
    )


def _as_int(value: Any) -> int:
    return value if isinstance(value, int) and not isinstance(value, bool) else 0


__all__ = ["PersistentCache", "serialize_cache_value"]
