"""Cache-aware resolution of ranked candidates."""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .concurrency import CancellationToken, SingleFlight
from .config import DiscoveryConfig
from .errors import CacheError, DiscoveryError, LoadError, UnsafeCandidateError, ValidationError
from .evaluator import CandidateEvaluator
from .loader import ModuleLoader
from .logging import get_logger
from .models import CacheEntry, Candidate, Fingerprint, ResolutionAttempt, ResolvedTarget, Signature
from .plugins.base import ResolutionContext
from .plugins.registry import PluginRegistry
from .scanner import file_stem, fingerprint_file, hash_bytes, relative_posix
from .signature import signature_cache_key
from .stores import PersistentCache, RuntimeCache, serialize_cache_value
from .stores.runtime_cache import is_expired

logger = get_logger("assembler")


class ResultAssembler:
    """Runs the cache check, safety re-check, load, validate and store steps.

    The runtime cache may hold live values; the persistent cache only holds
    descriptors, which are re-validated and re-loaded before being trusted.
    Every cache hit re-reads the candidate file and repeats the safety check.
    """

    def __init__(
        self,
        config: DiscoveryConfig,
        *,
        registry: PluginRegistry,
        evaluator: CandidateEvaluator | None = None,
        loader: ModuleLoader | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.root = config.root.resolve()
        self.registry = registry
        self.evaluator = evaluator or CandidateEvaluator(config.security)
        self.loader = loader or ModuleLoader()
        self._clock = clock
        self.single_flight = SingleFlight()
        self.runtime = RuntimeCache(config.cache.max_runtime_entries, clock=clock)
        cache_file = Path(config.cache.file)
        if not cache_file.is_absolute():
            cache_file = self.root / cache_file
        self.persistent = PersistentCache(cache_file if config.cache.enabled else None)
        self._stats: Dict[str, int] = {
            "runtime_hits": 0,
            "persistent_hits": 0,
            "misses": 0,
            "invalidated": 0,
            "stored": 0,
        }
        self._stats_lock = threading.Lock()

    @property
    def cache_enabled(self) -> bool:
        return self.config.cache.enabled

    def get_cache_key(self, signature: Signature) -> str:
        return signature_cache_key(signature)

    def ensure_cache_loaded(self) -> None:
        if not self.cache_enabled:
            return
        try:
            self.persistent.ensure_loaded()
        except CacheError as exc:
            self._log_cache_failure(exc)

    def is_cache_entry_expired(self, entry: CacheEntry) -> bool:
        return is_expired(entry, self._clock())

    def is_path_safe_for_load(self, path: str | Path) -> bool:
        """Only regular files under the engine root are loaded from cache entries."""
        try:
            resolved = Path(path).resolve()
        except (OSError, RuntimeError):
            return False
        if resolved != self.root and self.root not in resolved.parents:
            return False
        return resolved.is_file()

    # ------------------------------------------------------------------
    # Cache lookup

    def try_get_cached_target(self, key: str, signature: Signature) -> Optional[ResolvedTarget]:
        """Return a still-valid cached target or ``None``.

        A hit whose file changed, expired, or now fails the safety check is
        dropped from both stores.
        """
        if not self.cache_enabled:
            return None

        cached = self.runtime.get(key)
        if cached is not None:
            data = self._current_bytes(cached.entry)
            if data is not None and self._still_valid(cached.entry, data):
                self._count("runtime_hits")
                return cached.target
            self._invalidate(key)
            return None

        self.ensure_cache_loaded()
        entry = self.persistent.get(key)
        if entry is None:
            self._count("misses")
            return None
        if self.is_cache_entry_expired(entry):
            logger.debug("Cache entry for %s expired", entry.candidate_path)
            self._invalidate(key)
            return None
        data = self._current_bytes(entry)
        if data is None or not self._still_valid(entry, data):
            self._invalidate(key)
            return None

        target = self._reload_from_descriptor(entry, signature, data)
        if target is None:
            self._invalidate(key)
            return None
        self._count("persistent_hits")
        entry.hits += 1
        self.runtime.store(key, entry, target)
        return target

    def _current_bytes(self, entry: CacheEntry) -> Optional[bytes]:
        if not self.is_path_safe_for_load(entry.candidate_path):
            logger.debug("Cached path %s is outside %s or missing", entry.candidate_path, self.root)
            return None
        try:
            return Path(entry.candidate_path).read_bytes()
        except OSError:
            return None

    def _still_valid(self, entry: CacheEntry, data: bytes) -> bool:
        if hash_bytes(data) != entry.fingerprint.hash:
            logger.debug("Cached file %s changed since it was resolved", entry.candidate_path)
            return False
        language = str(entry.resolved_descriptor.get("language") or "")
        token = self.evaluator.blocked_token(data.decode("utf-8", errors="replace"), language)
        if token is not None:
            logger.warning(
                "Cached target in %s now contains blocked pattern %r; ignoring cache",
                entry.candidate_path,
                token,
            )
            return False
        return True

    def _reload_from_descriptor(
        self, entry: CacheEntry, signature: Signature, data: bytes
    ) -> Optional[ResolvedTarget]:
        descriptor = entry.resolved_descriptor
        path = Path(entry.candidate_path)
        plugin = self.registry.get_plugin_for_path(path)
        if plugin is None:
            return None
        metadata = plugin.parse_file(path, data)
        if metadata is None:
            return None
        access = entry.access
        name = descriptor.get("name")
        entity = next(
            (
                item
                for item in metadata.entities
                if item.name == name and (access is None or item.access == access)
            ),
            None,
        )
        if entity is None:
            return None
        candidate = Candidate(
            path=str(path),
            relative_path=relative_posix(path, self.root),
            file_name=file_stem(path),
            language=metadata.language,
            entity=entity,
            metadata=metadata,
            score=entry.score,
        )
        attempt = self._resolve_with_plugin(plugin, candidate, signature, data)
        if not attempt.ok:
            logger.debug("Cached descriptor for %s no longer resolves: %s", path, attempt.error)
            return None
        target = attempt.target
        if target.kind != descriptor.get("kind"):
            return None
        return target

    def _invalidate(self, key: str) -> None:
        self._count("invalidated")
        self.runtime.discard(key)
        self.persistent.discard(key)
        self.save_cache_to_disk()

    # ------------------------------------------------------------------
    # Resolution

    def resolve_candidate(
        self,
        candidate: Candidate,
        signature: Signature,
        cancel: Optional[CancellationToken] = None,
    ) -> ResolutionAttempt:
        """Safety-check, load and validate one candidate. Never raises per-candidate errors."""
        if cancel is not None:
            cancel.raise_if_cancelled()
        path = Path(candidate.path)
        try:
            data = path.read_bytes()
        except OSError as exc:
            return ResolutionAttempt(candidate, error=LoadError(candidate.path, str(exc)))

        token = self.evaluator.blocked_token(data.decode("utf-8", errors="replace"), candidate.language)
        if token is not None:
            logger.warning("Refusing to load %s: blocked pattern %r", candidate.relative_path, token)
            return ResolutionAttempt(candidate, error=UnsafeCandidateError(candidate.path, token))

        reason = self.evaluator.metadata_mismatch(candidate.entity, signature)
        if reason is not None:
            error = ValidationError(candidate.path, reason, entity=candidate.entity.name)
            return ResolutionAttempt(candidate, error=error)

        plugin = self.registry.get_plugin(candidate.language)
        if plugin is None:
            error = LoadError(candidate.path, f"no plugin registered for {candidate.language}")
            return ResolutionAttempt(candidate, error=error)
        return self._resolve_with_plugin(plugin, candidate, signature, data)

    def _resolve_with_plugin(
        self, plugin: Any, candidate: Candidate, signature: Signature, data: bytes
    ) -> ResolutionAttempt:
        resolve = getattr(plugin, "resolve_target", None)
        if not callable(resolve):
            error = LoadError(candidate.path, f"plugin '{candidate.language}' cannot resolve targets")
            return ResolutionAttempt(candidate, error=error)
        context = ResolutionContext(loader=self.loader, evaluator=self.evaluator, source=data)
        try:
            target = resolve(candidate, signature, context)
        except DiscoveryError as exc:
            if isinstance(exc, LoadError):
                logger.warning("%s", exc.message)
            else:
                logger.debug("%s", exc.message)
            return ResolutionAttempt(candidate, error=exc)
        if target is None:
            error = ValidationError(
                candidate.path, "no export satisfies the signature", entity=candidate.entity.name
            )
            return ResolutionAttempt(candidate, error=error)
        fingerprint = _fingerprint(Path(candidate.path), data)
        return ResolutionAttempt(candidate, target=target, fingerprint=fingerprint)

    def store_resolution(self, key: str, attempt: ResolutionAttempt) -> None:
        """Record a successful attempt in both caches (persistent write is best-effort)."""
        if not self.cache_enabled or attempt.target is None or attempt.fingerprint is None:
            return
        target = attempt.target
        candidate = attempt.candidate
        descriptor = {
            "name": candidate.entity.name,
            "kind": target.kind,
            "language": target.language,
            "fullName": target.full_name,
            "access": target.access.to_dict(),
            "relativePath": candidate.relative_path,
            "value": serialize_cache_value(target.value),
        }
        entry = CacheEntry(
            cache_key=key,
            candidate_path=candidate.path,
            fingerprint=attempt.fingerprint,
            score=candidate.score,
            resolved_descriptor=descriptor,
            timestamp=self._clock(),
            ttl_ms=self.config.cache.ttl_ms,
        )
        self.runtime.store(key, entry, target)
        self.persistent.store(entry)
        self._count("stored")
        self.save_cache_to_disk()

    def save_cache_to_disk(self) -> bool:
        if not self.cache_enabled:
            return False
        try:
            return self.persistent.persist()
        except CacheError as exc:
            self._log_cache_failure(exc)
            return False

    def clear(self) -> None:
        self.runtime.clear()
        self.persistent.clear()
        try:
            self.persistent.remove_file()
        except CacheError as exc:
            self._log_cache_failure(exc)

    def stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            stats = dict(self._stats)
        return {
            **stats,
            "runtime": self.runtime.stats(),
            "persistent_entries": len(self.persistent),
            "loader": self.loader.stats(),
        }

    def _count(self, name: str) -> None:
        with self._stats_lock:
            self._stats[name] += 1

    def _log_cache_failure(self, exc: CacheError) -> None:
        if self.config.cache.log_warnings:
            logger.warning("%s", exc.message)
        else:
            logger.debug("%s", exc.message)


def _fingerprint(path: Path, data: bytes) -> Fingerprint:
    try:
        return fingerprint_file(path, data)
    except OSError:
        return Fingerprint(mtime_ns=0, size=len(data), hash=hash_bytes(data))


__all__ = ["ResultAssembler"]
