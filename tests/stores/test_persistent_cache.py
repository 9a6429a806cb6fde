"""Tests for adaptive_tests.stores.persistent_cache."""

from __future__ import annotations

import json
import re
from pathlib import Path

import pytest

from adaptive_tests.errors import CacheError
from adaptive_tests.models import CacheEntry, Fingerprint
from adaptive_tests.stores import PersistentCache, serialize_cache_value


def _entry(key: str = "key") -> CacheEntry:
    return CacheEntry(
        cache_key=key,
        candidate_path="/repo/src/calculator.py",
        fingerprint=Fingerprint(mtime_ns=123, size=45, hash="deadbeef"),
        score=57.5,
        resolved_descriptor={"name": "Calculator", "kind": "class", "access": {"type": "named", "name": "Calculator"}},
        timestamp=1_700_000_000.0,
        ttl_ms=86_400_000.0,
    )


def test_persist_round_trips_entries(tmp_path: Path) -> None:
    path = tmp_path / ".adaptive-tests-cache.json"
    cache = PersistentCache(path)
    cache.ensure_loaded()
    cache.store(_entry())

    assert cache.persist() is True
    assert cache.persist() is False

    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw["key"]["candidatePath"] == "/repo/src/calculator.py"
    assert raw["key"]["ttlMs"] == 86_400_000.0
    assert raw["key"]["fingerprint"]["hash"] == "deadbeef"

    reloaded = PersistentCache(path)
    reloaded.ensure_loaded()
    entry = reloaded.get("key")
    assert entry is not None
    assert entry.score == 57.5
    assert entry.fingerprint == Fingerprint(mtime_ns=123, size=45, hash="deadbeef")
    assert entry.access is not None and entry.access.name == "Calculator"


def test_missing_file_loads_empty(tmp_path: Path) -> None:
    cache = PersistentCache(tmp_path / "absent.json")

    cache.ensure_loaded()

    assert cache.loaded
    assert len(cache) == 0


def test_corrupt_file_raises_cache_error_once_and_stays_empty(tmp_path: Path) -> None:
    path = tmp_path / "cache.json"
    path.write_text("{not json", encoding="utf-8")
    cache = PersistentCache(path)

    with pytest.raises(CacheError):
        cache.ensure_loaded()

    cache.ensure_loaded()
    assert len(cache) == 0


def test_non_object_root_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "cache.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")

    with pytest.raises(CacheError):
        PersistentCache(path).ensure_loaded()


def test_malformed_entries_are_skipped(tmp_path: Path) -> None:
    path = tmp_path / "cache.json"
    cache = PersistentCache(path)
    cache.store(_entry("good"))
    cache.persist()
    raw = json.loads(path.read_text(encoding="utf-8"))
    raw["bad"] = {"candidatePath": 3}
    raw["no-score"] = dict(raw["good"], score="high")
    path.write_text(json.dumps(raw), encoding="utf-8")

    reloaded = PersistentCache(path)
    reloaded.ensure_loaded()

    assert reloaded.keys() == ["good"]


def test_persist_leaves_no_temporary_files(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "cache.json"
    cache = PersistentCache(path)
    cache.store(_entry())

    cache.persist()

    assert sorted(item.name for item in path.parent.iterdir()) == ["cache.json"]


def test_discard_clear_and_remove_file(tmp_path: Path) -> None:
    path = tmp_path / "cache.json"
    cache = PersistentCache(path)
    cache.store(_entry("a"))
    cache.store(_entry("b"))
    cache.discard("a")
    cache.persist()
    assert list(json.loads(path.read_text(encoding="utf-8"))) == ["b"]

    cache.clear()
    cache.remove_file()

    assert not path.exists()
    assert len(cache) == 0


def test_disabled_cache_never_touches_disk() -> None:
    cache = PersistentCache(None)
    cache.store(_entry())

    assert cache.persist() is False
    cache.remove_file()


def test_serialize_cache_value_describes_live_values() -> None:
    class Widget:
        def __init__(self) -> None:
            self.name = "gear"
            self._secret = "hidden"
            self.pattern = re.compile("^a+", re.MULTILINE)

    def helper() -> None:
        pass

    payload = serialize_cache_value(
        {"cls": Widget, "fn": helper, "obj": Widget(), "items": {"b", "a"}, "path": Path("x/y")}
    )

    assert payload["cls"]["__type"] == "Class"
    assert payload["cls"]["name"].endswith("Widget")
    assert payload["fn"] == {"__type": "Function", "name": "helper"}
    assert payload["obj"] == {
        "__type": "Widget",
        "name": "gear",
        "pattern": {"__type": "RegExp", "source": "^a+", "flags": "m"},
    }
    assert payload["items"] == ["a", "b"]
    assert payload["path"] == "x/y"
    json.dumps(payload)


def test_serialize_cache_value_guards_cycles_and_depth() -> None:
    cyclic: dict = {}
    cyclic["self"] = cyclic

    nested: list = []
    current = nested
    for _ in range(12):
        inner: list = []
        current.append(inner)
        current = inner

    assert serialize_cache_value(cyclic) == {"self": {"__type": "Circular"}}
    assert "Truncated" in json.dumps(serialize_cache_value(nested))
